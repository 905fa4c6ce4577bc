"""
Application factory and shared plumbing for the DuoChat HTTP API.

Every route works on the ``ChatServices`` instance stored on
``app.state.services``; the websocket gateway is built on the same
instance, so presence and broadcasts are shared between transports.
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from DuoChat import __version__ as __main_version__
from DuoChat.config import config
from DuoChat.core.errors import ChatError, Unauthenticated
from DuoChat.core.models import User
from DuoChat.core.server.services import ChatServices

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "UNAUTHENTICATED": 401,
    "NOT_A_PARTICIPANT": 403,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "INVALID_PARTICIPANT": 400,
    "SELF_CHAT": 400,
    "DUPLICATE_KEY": 400,
    "STORAGE_ERROR": 500,
}

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class SignupRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    password: str = Field(min_length=6, max_length=128)


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=254)
    profilePicture: Optional[str] = Field(default=None, max_length=2048)


class LoginRequest(BaseModel):
    email: str
    password: str


class PrivateChatRequest(BaseModel):
    receiverId: Optional[str] = None


class SendMessageRequest(BaseModel):
    chatId: Optional[str] = None
    receiverId: Optional[str] = None
    content: Optional[str] = None
    messageType: str = "text"
    fileUrl: Optional[str] = None
    fileName: Optional[str] = None
    fileSize: Optional[int] = None


def get_services(request: Request) -> ChatServices:
    return request.app.state.services


async def get_current_user(request: Request) -> User:
    """Resolve the caller from the ``Authorization: Bearer`` header."""
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise Unauthenticated("No valid authentication token provided")
    services = get_services(request)
    result = await services.authenticator.authenticate(auth.split(" ", 1)[1].strip())
    if not result.success:
        raise Unauthenticated(result.error_message or "Invalid token")
    user = await services.store.get_user(result.user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("User not found or inactive")
    return user


def error_response(status_code: int, message: str, code: str = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if code:
        body["code"] = code
    return JSONResponse(status_code=status_code, content=body)


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    status = STATUS_BY_CODE.get(exc.code, 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(status, "Internal server error", exc.code)
    return error_response(status, exc.message, exc.code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return error_response(400, message, "VALIDATION_ERROR")


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


def create_app(services: ChatServices) -> FastAPI:
    """
    Build the FastAPI application around ``services``.

    Args:
        services: Component graph shared with the websocket gateway
    """
    from .routes_api import auth_router, chat_router, health_router, upload_router, users_router

    app = FastAPI(
        title="DuoChat api",
        version=__main_version__,
        description="api for DuoChat, a one-to-one real-time messaging server.",
        contact={"name": "DuoChat Team"}
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    for router in (health_router, auth_router, users_router, chat_router, upload_router):
        app.include_router(router)

    os.makedirs(services.files.root_dir, exist_ok=True)
    app.mount(
        services.files.url_prefix,
        StaticFiles(directory=services.files.root_dir),
        name="uploads",
    )
    return app


__all__ = [
    'STATUS_BY_CODE',
    'SignupRequest',
    'LoginRequest',
    'ProfileUpdateRequest',
    'PrivateChatRequest',
    'SendMessageRequest',
    'get_services',
    'get_current_user',
    'create_app',
]
