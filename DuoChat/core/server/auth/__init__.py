"""
Authentication module for the server.

Issues and validates JWT credentials, hashes passwords with bcrypt and
extracts tokens from websocket handshakes. Tokens are accepted from the
``token`` query parameter, an ``Authorization: Bearer`` header or an
``authToken`` cookie, in that order.
"""

import datetime
import logging
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

import bcrypt
import jwt

from DuoChat.config import config
from DuoChat.core.server.interfaces import Authenticator, AuthResult

logger = logging.getLogger(__name__)


def hash_password(password: str, rounds: int = None) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds or config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, hashed_password: str) -> bool:
    """Verify a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        return False


class JWTAuthenticator:
    """
    JWT-based authenticator implementation.

    Tokens carry the user id in ``sub``; ``userId`` is accepted as well
    for tokens minted by older clients.
    """

    def __init__(
        self,
        secret: str = None,
        algorithm: str = None,
        expire_minutes: int = None,
        token_extractor=None
    ):
        """
        Initialize JWT authenticator.

        Args:
            secret: JWT secret key (defaults to config.JWT_SECRET)
            algorithm: JWT algorithm (defaults to config.JWT_ALGORITHM)
            expire_minutes: Token lifetime (defaults to config.JWT_EXPIRE_MINUTES)
            token_extractor: Optional custom token extractor
        """
        self._secret = secret or config.JWT_SECRET
        self._algorithm = algorithm or config.JWT_ALGORITHM
        self._expire_minutes = expire_minutes or config.JWT_EXPIRE_MINUTES
        self._token_extractor = token_extractor or DefaultTokenExtractor()

    def create_token(self, user_id: str) -> str:
        """Sign a token for ``user_id``."""
        issued = datetime.datetime.now(datetime.timezone.utc)
        payload = {
            "sub": user_id,
            "userId": user_id,
            "iat": issued,
            "exp": issued + datetime.timedelta(minutes=self._expire_minutes),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    async def authenticate(self, token: str) -> AuthResult:
        """
        Validate a JWT token.

        Args:
            token: JWT token string

        Returns:
            AuthResult with authentication status and user id
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm]
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Authentication failed: Token expired")
            return AuthResult(
                success=False,
                error_message="Token has expired",
                error_code="TOKEN_EXPIRED"
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Authentication failed: Invalid token - %s", e)
            return AuthResult(
                success=False,
                error_message="Invalid token",
                error_code="INVALID_TOKEN"
            )

        user_id = payload.get("sub") or payload.get("userId")
        if not user_id:
            return AuthResult(
                success=False,
                error_message="No user id in token payload",
                error_code="INVALID_PAYLOAD"
            )
        return AuthResult(success=True, user_id=str(user_id))

    def extract_token(self, transport_context: Any) -> Optional[str]:
        return self._token_extractor.extract(transport_context)


class DefaultTokenExtractor:
    """
    Token extractor for websocket handshakes.

    Supports extraction from:
    - URL query parameters (?token=xxx)
    - Authorization header (Bearer xxx)
    - Cookie headers (authToken=xxx)
    """

    def extract(self, websocket: Any) -> Optional[str]:
        return (
            self._extract_from_query(websocket)
            or self._extract_from_bearer(websocket)
            or self._extract_from_cookie(websocket)
        )

    def _extract_from_query(self, websocket: Any) -> Optional[str]:
        path = self._get_path(websocket)
        if not path:
            return None
        tokens = parse_qs(urlsplit(path).query).get("token", [])
        return tokens[0] if tokens else None

    def _extract_from_bearer(self, websocket: Any) -> Optional[str]:
        header = self._get_header(websocket, "Authorization")
        if header and header.lower().startswith("bearer "):
            return header[7:].strip() or None
        return None

    def _extract_from_cookie(self, websocket: Any) -> Optional[str]:
        cookie_header = self._get_header(websocket, "Cookie") or ""
        for cookie in cookie_header.split(";"):
            name, sep, value = cookie.strip().partition("=")
            if sep and name == "authToken":
                return value.strip() or None
        return None

    def _get_path(self, websocket: Any) -> Optional[str]:
        request = getattr(websocket, "request", None)
        if request is not None:
            path = getattr(request, "path", None)
            if path:
                return path
        return getattr(websocket, "path", None)

    def _get_header(self, websocket: Any, name: str) -> Optional[str]:
        request = getattr(websocket, "request", None)
        headers = getattr(request, "headers", None)
        if headers is None:
            return None
        return headers.get(name)


class AuthenticationMiddleware:
    """
    Middleware that wraps authentication logic for incoming connections.
    """

    def __init__(self, authenticator: Authenticator):
        self._authenticator = authenticator

    async def authenticate_connection(self, transport_context: Any) -> AuthResult:
        """
        Authenticate a connection from its handshake.

        Args:
            transport_context: Transport-specific context

        Returns:
            AuthResult with authentication status
        """
        token = self._authenticator.extract_token(transport_context)

        if not token:
            return AuthResult(
                success=False,
                error_message="Authentication error: No token provided",
                error_code="NO_TOKEN"
            )

        return await self._authenticator.authenticate(token)


__all__ = [
    'hash_password',
    'verify_password',
    'JWTAuthenticator',
    'DefaultTokenExtractor',
    'AuthenticationMiddleware',
]
