import asyncio

import DuoChat.api as _api
from DuoChat.config import config
from DuoChat.core.logging import auto_configure
from DuoChat.core.server import create_services


def api(port=8766, host=None, db_path=None):
    """
    Start the HTTP api alone, without the websocket gateway.

    Presence events are not delivered in this mode since no socket can
    be connected.

    Args:
        port (int): Port number for the api server (default: 8766).
        host (str): Interface to bind (defaults to config.DEFAULT_HOST)
        db_path (str): SQLite file (defaults to config.SQLITE_DB_FILE)
    """
    auto_configure()
    services = create_services(db_path=db_path)
    asyncio.run(services.presence.reset())
    try:
        _api.run(services, host=host or config.DEFAULT_HOST, api_port=port)
    finally:
        services.close()
