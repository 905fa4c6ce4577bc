"""
HTTP routes: auth, user discovery, chats and messages, uploads, health.

Responses follow ``{"success": bool, "message"?: str, "data"?: {...}}``.
Domain errors raised by the services are mapped to statuses by the
handler installed in ``create_app``.
"""

import datetime
import logging

import psutil
from fastapi import APIRouter, Depends, File, Request, UploadFile

from DuoChat import __version__ as __main_version__
from DuoChat.core.errors import Forbidden, NotFound, StorageError, Unauthenticated, ValidationError
from DuoChat.core.models import Page, User, now, to_iso
from DuoChat.core.server.auth import hash_password, verify_password
from DuoChat.core.server.files import UPLOAD_POLICIES, check_upload
from DuoChat.core.server.gateway import CLOSE_POLICY_VIOLATION
from DuoChat.core.server.pipeline import MessageDraft
from .routes_base import (
    LoginRequest,
    PrivateChatRequest,
    ProfileUpdateRequest,
    SendMessageRequest,
    SignupRequest,
    get_current_user,
    get_services,
)

logger = logging.getLogger(__name__)

health_router = APIRouter()
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/users", tags=["users"])
chat_router = APIRouter(prefix="/api/chat", tags=["chat"])
upload_router = APIRouter(prefix="/api/upload", tags=["upload"])

SEARCH_MIN_LENGTH = 2
SEARCH_MAX_LENGTH = 100
SEARCH_LIMIT = 20


# ------------------------------- health -------------------------------
@health_router.get("/health")
async def health(request: Request):
    """Liveness plus a store check and basic host metrics."""
    services = get_services(request)
    try:
        database = "connected" if await services.store.ping() else "unavailable"
    except StorageError:
        database = "unavailable"
    return {
        "success": database == "connected",
        "status": "ok" if database == "connected" else "degraded",
        "version": __main_version__,
        "timestamp": to_iso(now()),
        "uptime": str(datetime.timedelta(seconds=int(services.uptime))),
        "database": database,
        "onlineUsers": len(services.registry),
        "cpuUsage": f"{psutil.cpu_percent(interval=None)}%",
        "memoryUsage": f"{psutil.virtual_memory().percent}%",
    }


# -------------------------------- auth --------------------------------
@auth_router.post("/signup", status_code=201)
async def signup(payload: SignupRequest, request: Request):
    services = get_services(request)
    user = await services.store.create_user(
        name=payload.name.strip(),
        email=payload.email.strip(),
        password_hash=hash_password(payload.password),
    )
    logger.info("User %s signed up", user.id)
    return {
        "success": True,
        "message": "User registered successfully",
        "data": {"user": user.to_dict(), "token": services.authenticator.create_token(user.id)},
    }


@auth_router.post("/login")
async def login(payload: LoginRequest, request: Request):
    services = get_services(request)
    user = await services.store.get_user_by_email(payload.email.strip())
    if user is None or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid email or password")
    if not user.is_active:
        raise Unauthenticated("Account is deactivated")
    logger.info("User %s logged in", user.id)
    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": user.to_dict(), "token": services.authenticator.create_token(user.id)},
    }


@auth_router.get("/profile")
@auth_router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return {"success": True, "data": {"user": user.to_dict()}}


@auth_router.put("/profile")
async def update_profile(payload: ProfileUpdateRequest, request: Request,
                         user: User = Depends(get_current_user)):
    updated = await _update_user(request, user.id, payload)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": {"user": updated.to_dict()},
    }


@auth_router.post("/logout")
async def logout(request: Request, user: User = Depends(get_current_user)):
    services = get_services(request)
    await services.store.set_presence(user.id, False, now())
    return {"success": True, "message": "Logged out successfully"}


# -------------------------------- users -------------------------------
@users_router.get("")
async def list_users(request: Request, page: int = 1, limit: int = 10, search: str = "",
                     user: User = Depends(get_current_user)):
    services = get_services(request)
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    users, total = await services.store.list_users(
        exclude_id=user.id, search=search, offset=(page - 1) * limit, limit=limit
    )
    listing = Page(items=users, page=page, page_size=limit, total=total)
    return {
        "success": True,
        "data": {
            "users": [u.to_dict() for u in listing.items],
            "pagination": listing.pagination("totalUsers"),
        },
    }


@users_router.get("/search")
async def search_users(request: Request, query: str = "", user: User = Depends(get_current_user)):
    query = query.strip()
    if not SEARCH_MIN_LENGTH <= len(query) <= SEARCH_MAX_LENGTH:
        raise ValidationError(
            f"Search query must be between {SEARCH_MIN_LENGTH} and {SEARCH_MAX_LENGTH} characters"
        )
    users, _ = await get_services(request).store.list_users(
        exclude_id=user.id, search=query, offset=0, limit=SEARCH_LIMIT
    )
    return {"success": True, "data": {"users": [u.to_dict() for u in users]}}


@users_router.get("/contacts")
async def contacts(request: Request, user: User = Depends(get_current_user)):
    contact_list = await get_services(request).chats.contacts_for(user.id)
    return {"success": True, "data": {"contacts": contact_list}}


@users_router.get("/{user_id}")
async def get_user(user_id: str, request: Request, user: User = Depends(get_current_user)):
    found = await get_services(request).store.get_user(user_id)
    if found is None or not found.is_active:
        raise NotFound("User not found")
    return {"success": True, "data": {"user": found.to_dict()}}


def _require_self(user: User, user_id: str) -> None:
    if user.id != user_id:
        raise Forbidden("You can only modify your own account")


async def _update_user(request: Request, user_id: str, payload: ProfileUpdateRequest) -> User:
    updated = await get_services(request).store.update_user(
        user_id,
        name=payload.name.strip() if payload.name else None,
        email=payload.email.strip() if payload.email else None,
        profile_picture=payload.profilePicture,
    )
    if updated is None:
        raise NotFound("User not found")
    logger.info("User %s updated their profile", user_id)
    return updated


@users_router.put("/{user_id}")
async def update_user(user_id: str, payload: ProfileUpdateRequest, request: Request,
                      user: User = Depends(get_current_user)):
    _require_self(user, user_id)
    updated = await _update_user(request, user_id, payload)
    return {
        "success": True,
        "message": "User updated successfully",
        "data": {"user": updated.to_dict()},
    }


@users_router.delete("/{user_id}")
async def delete_user(user_id: str, request: Request, user: User = Depends(get_current_user)):
    """Soft-delete the caller's account and drop its live connection."""
    _require_self(user, user_id)
    services = get_services(request)
    if not await services.store.deactivate_user(user_id, now()):
        raise NotFound("User not found")
    connection = services.registry.get(user_id)
    if connection is not None:
        await connection.close(CLOSE_POLICY_VIOLATION, "Account deactivated")
    logger.info("User %s deactivated", user_id)
    return {"success": True, "message": "User deleted successfully"}


# -------------------------------- chat --------------------------------
@chat_router.post("/private")
async def create_private_chat(payload: PrivateChatRequest, request: Request,
                              user: User = Depends(get_current_user)):
    if not payload.receiverId:
        raise ValidationError("Receiver ID is required")
    view = await get_services(request).chats.find_or_create_private_chat(user.id, payload.receiverId)
    return {
        "success": True,
        "message": "Chat created/retrieved successfully",
        "data": {"chat": view.to_dict()},
    }


@chat_router.post("/message", status_code=201)
async def send_message(payload: SendMessageRequest, request: Request,
                       user: User = Depends(get_current_user)):
    draft = MessageDraft(
        chat_id=payload.chatId,
        receiver_id=payload.receiverId,
        content=payload.content,
        message_type=payload.messageType,
        file_url=payload.fileUrl,
        file_name=payload.fileName,
        file_size=payload.fileSize,
    )
    view = await get_services(request).pipeline.send(user.id, draft)
    return {
        "success": True,
        "message": "Message sent successfully",
        "data": {"message": view.to_dict()},
    }


@chat_router.get("/user-chats")
async def user_chats(request: Request, user: User = Depends(get_current_user)):
    views = await get_services(request).chats.list_for_user(user.id)
    return {"success": True, "data": {"chats": [v.to_dict() for v in views]}}


@chat_router.get("/{chat_id}/messages")
async def chat_messages(chat_id: str, request: Request, page: int = 1, limit: int = 50,
                        user: User = Depends(get_current_user)):
    listing = await get_services(request).pipeline.list_for_chat(chat_id, user.id, page, limit)
    return {
        "success": True,
        "data": {
            "messages": [m.to_dict() for m in listing.items],
            "pagination": listing.pagination(),
        },
    }


@chat_router.put("/{chat_id}/mark-read")
async def mark_read(chat_id: str, request: Request, user: User = Depends(get_current_user)):
    count = await get_services(request).pipeline.mark_chat_read(chat_id, user.id)
    return {
        "success": True,
        "message": "Messages marked as read",
        "data": {"modifiedCount": count},
    }


@chat_router.delete("/message/{message_id}")
async def delete_message(message_id: str, request: Request, user: User = Depends(get_current_user)):
    await get_services(request).pipeline.soft_delete(message_id, user.id)
    return {"success": True, "message": "Message deleted successfully"}


@chat_router.delete("/{chat_id}")
async def deactivate_chat(chat_id: str, request: Request, user: User = Depends(get_current_user)):
    await get_services(request).chats.deactivate(chat_id, user.id)
    return {"success": True, "message": "Chat deleted successfully"}


# ------------------------------- upload -------------------------------
@upload_router.post("/{category}")
async def upload_file(category: str, request: Request, file: UploadFile = File(...),
                      user: User = Depends(get_current_user)):
    policy = UPLOAD_POLICIES.get(category)
    if policy is None:
        raise NotFound(f"Unknown upload category: {category}")
    data = await file.read(policy.max_bytes + 1)
    check_upload(category, file.content_type, len(data))

    stored = await get_services(request).files.store(data, file.filename or "", category)
    logger.info("User %s uploaded %s", user.id, stored.id)
    return {
        "success": True,
        "message": f"{category.capitalize()} uploaded successfully",
        "data": {
            "fileUrl": stored.url,
            "fileName": stored.name,
            "fileSize": stored.size,
            "messageType": category,
            "fileId": stored.id,
        },
    }


@upload_router.delete("/{file_id}")
async def delete_file(file_id: str, request: Request, user: User = Depends(get_current_user)):
    if not await get_services(request).files.delete(file_id):
        raise NotFound("File not found")
    return {"success": True, "message": "File deleted successfully"}
