"""
Server startup module for DuoChat.

The websocket gateway and the HTTP API run in one asyncio event loop and
share one ``ChatServices`` instance, so the API sees the same sessions
and its broadcasts reach live sockets.
"""

import asyncio
import logging

import uvicorn

from DuoChat.api import create_app
from DuoChat.config import config
from DuoChat.core.logging import auto_configure
from DuoChat.core.server import ChatServices, ConnectionGateway, create_services

logger = logging.getLogger(__name__)


async def serve(
    services: ChatServices,
    host: str = config.DEFAULT_HOST,
    port: int = config.DEFAULT_SERVER_PORT,
    api_port: int = None,
    srv_only: bool = False
) -> None:
    """
    Run the gateway (and, unless ``srv_only``, the HTTP API) until cancelled.

    Args:
        services: Shared component graph
        host: Interface for both listeners
        port: Websocket port
        api_port: HTTP port (defaults to ``port + 1``)
        srv_only: Serve the websocket gateway only
    """
    await services.presence.reset()

    gateway = ConnectionGateway(services)
    await gateway.start(host, port)
    try:
        if srv_only:
            await asyncio.Event().wait()
        else:
            http = uvicorn.Server(uvicorn.Config(
                create_app(services),
                host=host,
                port=api_port or port + 1,
                log_config=None,
            ))
            logger.info("HTTP api starting on http://%s:%s", host, api_port or port + 1)
            await http.serve()
    finally:
        await gateway.stop()


def server(port=8765, srv_only=False, host=None, db_path=None):
    """
    Start the chat server and HTTP api on the specified port.

    Args:
        port (int): Websocket port; the api listens on port + 1
        srv_only (bool): If True, start the websocket server only
        host (str): Interface to bind (defaults to config.DEFAULT_HOST)
        db_path (str): SQLite file (defaults to config.SQLITE_DB_FILE)
    """
    auto_configure()
    services = create_services(db_path=db_path)
    try:
        asyncio.run(serve(services, host or config.DEFAULT_HOST, port, srv_only=srv_only))
    except KeyboardInterrupt:
        logger.info("Closed by user.")
    finally:
        services.close()
