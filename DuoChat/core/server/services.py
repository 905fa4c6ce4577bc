"""
Wiring of the server components.

Both transports (the websocket gateway and the HTTP API) are built on
one ``ChatServices`` instance so they share the session registry and
channel hub.
"""

import logging
import time
from dataclasses import dataclass, field

from DuoChat.config import config
from DuoChat.core.server.auth import JWTAuthenticator
from DuoChat.core.server.chat_manager import ChatLifecycleManager
from DuoChat.core.server.files import LocalFileStorage
from DuoChat.core.server.pipeline import MessagePipeline
from DuoChat.core.server.presence import PresenceBroadcaster
from DuoChat.core.server.routing import ChannelHub
from DuoChat.core.server.session import SessionRegistry
from DuoChat.core.server.storage_sqlite import SQLiteEntityStore

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    store: SQLiteEntityStore
    authenticator: JWTAuthenticator
    registry: SessionRegistry
    hub: ChannelHub
    presence: PresenceBroadcaster
    chats: ChatLifecycleManager
    pipeline: MessagePipeline
    files: LocalFileStorage
    started_at: float = field(default_factory=time.time)

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def close(self) -> None:
        self.store.close()


def create_services(
    db_path: str = None,
    upload_dir: str = None,
    jwt_secret: str = None
) -> ChatServices:
    """
    Build the component graph.

    Args:
        db_path: SQLite file (defaults to config.SQLITE_DB_FILE)
        upload_dir: Upload directory (defaults to config.UPLOAD_DIR)
        jwt_secret: Signing secret (defaults to config.JWT_SECRET)
    """
    store = SQLiteEntityStore(db_path or config.SQLITE_DB_FILE)
    registry = SessionRegistry()
    hub = ChannelHub(registry)
    chats = ChatLifecycleManager(store)
    services = ChatServices(
        store=store,
        authenticator=JWTAuthenticator(secret=jwt_secret),
        registry=registry,
        hub=hub,
        presence=PresenceBroadcaster(registry, hub, store),
        chats=chats,
        pipeline=MessagePipeline(store, chats, hub, registry),
        files=LocalFileStorage(upload_dir),
    )
    logger.debug("Services created (db=%s)", store.db_path)
    return services


__all__ = ['ChatServices', 'create_services']
