"""
Server module for DuoChat.

Components, leaves first:

1. **Entity store** (`storage_sqlite.py`, protocol in `interfaces/`)
   - SQLiteEntityStore: users, chats, messages

2. **Authentication** (`auth/`)
   - JWTAuthenticator, AuthenticationMiddleware, password hashing

3. **Sessions and transport** (`session/`, `transport/`)
   - SessionRegistry: one live connection per user
   - WebSocketConnection: connection wrapper

4. **Routing** (`routing/`)
   - ChannelHub: personal and chat channels, broadcasts

5. **Messaging** (`presence.py`, `chat_manager.py`, `pipeline.py`)
   - PresenceBroadcaster, ChatLifecycleManager, MessagePipeline

6. **Gateway** (`gateway.py`)
   - ConnectionGateway: websocket entry point composing everything

Usage:

    from DuoChat.core.server import ConnectionGateway, create_services

    services = create_services()
    gateway = ConnectionGateway(services)
    await gateway.start("localhost", 8765)
"""

from .auth import AuthenticationMiddleware, JWTAuthenticator, hash_password, verify_password
from .chat_manager import ChatLifecycleManager
from .files import LocalFileStorage
from .gateway import ConnectionContext, ConnectionGateway
from .interfaces import AuthResult, Authenticator, EntityStore, FileStorage, TransportConnection
from .pipeline import MessageDraft, MessagePipeline
from .presence import PresenceBroadcaster
from .routing import ChannelHub
from .services import ChatServices, create_services
from .session import SessionRegistry
from .storage_sqlite import SQLiteEntityStore
from .transport import WebSocketConnection

__all__ = [
    'AuthenticationMiddleware',
    'JWTAuthenticator',
    'hash_password',
    'verify_password',
    'ChatLifecycleManager',
    'LocalFileStorage',
    'ConnectionContext',
    'ConnectionGateway',
    'AuthResult',
    'Authenticator',
    'EntityStore',
    'FileStorage',
    'TransportConnection',
    'MessageDraft',
    'MessagePipeline',
    'PresenceBroadcaster',
    'ChannelHub',
    'ChatServices',
    'create_services',
    'SessionRegistry',
    'SQLiteEntityStore',
    'WebSocketConnection',
]
