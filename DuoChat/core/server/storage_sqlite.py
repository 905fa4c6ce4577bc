"""SQLite persistence layer for DuoChat.

Holds users, chats (with their participants) and messages. The store
knows nothing about authorization or broadcasting; it only guarantees:

  - user emails are unique
  - at most one *active* private chat exists per unordered user pair,
    enforced by a partial unique index on the canonical pair key

All public methods are coroutines. The actual sqlite3 work runs in a
worker thread under a re-entrant lock, so the event loop never blocks
on disk and callers from FastAPI threads are safe too.

The DB file location is controlled by Config.SQLITE_DB_FILE.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from DuoChat.core.errors import DuplicateKey, StorageError
from DuoChat.core.models import (
    Chat, ChatType, FileRef, Message, MessageType, User, new_id, now, pair_key,
)

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  email TEXT UNIQUE NOT NULL,
  password_hash TEXT NOT NULL,
  profile_picture TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  is_online INTEGER NOT NULL DEFAULT 0,
  last_seen REAL,
  created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS chats (
  id TEXT PRIMARY KEY,
  chat_type TEXT NOT NULL, -- private / group
  pair_key TEXT,           -- sorted "a:b" for private chats
  chat_name TEXT,
  created_by TEXT NOT NULL,
  last_message_id TEXT,
  last_message_time REAL NOT NULL,
  is_active INTEGER NOT NULL DEFAULT 1,
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_active_private_pair
  ON chats(pair_key) WHERE chat_type = 'private' AND is_active = 1;

CREATE TABLE IF NOT EXISTS chat_participants (
  chat_id TEXT NOT NULL,
  user_id TEXT NOT NULL,
  position INTEGER NOT NULL,
  PRIMARY KEY(chat_id, user_id),
  FOREIGN KEY(chat_id) REFERENCES chats(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_participants_user ON chat_participants(user_id);

CREATE TABLE IF NOT EXISTS messages (
  id TEXT PRIMARY KEY,
  chat_id TEXT NOT NULL,
  sender_id TEXT NOT NULL,
  receiver_id TEXT NOT NULL,
  message_type TEXT NOT NULL,
  content TEXT,
  file_url TEXT,
  file_name TEXT,
  file_size INTEGER,
  is_delivered INTEGER NOT NULL DEFAULT 0,
  delivered_at REAL,
  is_read INTEGER NOT NULL DEFAULT 0,
  read_at REAL,
  is_deleted INTEGER NOT NULL DEFAULT 0,
  deleted_at REAL,
  created_at REAL NOT NULL,
  FOREIGN KEY(chat_id) REFERENCES chats(id)
);

CREATE INDEX IF NOT EXISTS idx_messages_chat_time ON messages(chat_id, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_unread ON messages(chat_id, receiver_id, is_read);
"""


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


def _row_to_user(r: sqlite3.Row) -> User:
    return User(
        id=str(r["id"]),
        name=str(r["name"]),
        email=str(r["email"]),
        password_hash=str(r["password_hash"]),
        profile_picture=r["profile_picture"],
        is_active=bool(r["is_active"]),
        is_online=bool(r["is_online"]),
        last_seen=r["last_seen"],
        created_at=float(r["created_at"]),
    )


def _row_to_message(r: sqlite3.Row) -> Message:
    file_ref = None
    if r["file_url"] is not None:
        file_ref = FileRef(url=r["file_url"], name=r["file_name"], size=r["file_size"])
    return Message(
        id=str(r["id"]),
        sender_id=str(r["sender_id"]),
        receiver_id=str(r["receiver_id"]),
        chat_id=str(r["chat_id"]),
        message_type=MessageType(r["message_type"]),
        content=r["content"],
        file=file_ref,
        is_delivered=bool(r["is_delivered"]),
        delivered_at=r["delivered_at"],
        is_read=bool(r["is_read"]),
        read_at=r["read_at"],
        is_deleted=bool(r["is_deleted"]),
        deleted_at=r["deleted_at"],
        created_at=float(r["created_at"]),
    )


class SQLiteEntityStore:
    """SQLite-backed entity store for users, chats and messages."""

    def __init__(self, db_path: str):
        self.db_path = str(Path(db_path))
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        logger.info("SQLite store ready at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            try:
                return fn(*args)
            except sqlite3.Error as e:
                self._conn.rollback()
                logger.error("Storage failure in %s: %s", fn.__name__, e)
                raise StorageError(f"Storage failure: {e}") from e

    # --------------------------- users ---------------------------
    def _create_user_locked(self, name: str, email: str, password_hash: str,
                            profile_picture: Optional[str]) -> User:
        user = User(
            id=new_id(),
            name=name,
            email=email.lower(),
            password_hash=password_hash,
            profile_picture=profile_picture,
        )
        try:
            self._conn.execute(
                """
                INSERT INTO users(id, name, email, password_hash, profile_picture,
                                  is_active, is_online, last_seen, created_at)
                VALUES(?,?,?,?,?,1,0,NULL,?)
                """,
                (user.id, user.name, user.email, user.password_hash,
                 user.profile_picture, user.created_at),
            )
        except sqlite3.IntegrityError:
            self._conn.rollback()
            raise DuplicateKey("User already exists with this email", field="email")
        self._conn.commit()
        return user

    async def create_user(self, name: str, email: str, password_hash: str,
                          profile_picture: Optional[str] = None) -> User:
        return await self._call(self._create_user_locked, name, email, password_hash, profile_picture)

    def _get_user_locked(self, user_id: str) -> Optional[User]:
        row = self._conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
        return None if row is None else _row_to_user(row)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._call(self._get_user_locked, user_id)

    def _get_user_by_email_locked(self, email: str) -> Optional[User]:
        row = self._conn.execute(
            "SELECT * FROM users WHERE email=?", (email.lower(),)
        ).fetchone()
        return None if row is None else _row_to_user(row)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self._call(self._get_user_by_email_locked, email)

    def _get_users_locked(self, user_ids: List[str]) -> Dict[str, User]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        cur = self._conn.execute(
            f"SELECT * FROM users WHERE id IN ({_placeholders(len(ids))})", ids
        )
        return {str(r["id"]): _row_to_user(r) for r in cur.fetchall()}

    async def get_users(self, user_ids: List[str]) -> Dict[str, User]:
        return await self._call(self._get_users_locked, user_ids)

    def _list_users_locked(self, exclude_id: Optional[str], search: str,
                           offset: int, limit: int) -> Tuple[List[User], int]:
        where = ["is_active=1"]
        params: List[Any] = []
        if exclude_id:
            where.append("id<>?")
            params.append(exclude_id)
        search = (search or "").strip()
        if search:
            where.append("(name LIKE ? OR email LIKE ?)")
            like = f"%{search}%"
            params.extend([like, like])
        clause = " AND ".join(where)

        total = int(self._conn.execute(
            f"SELECT COUNT(*) AS n FROM users WHERE {clause}", params
        ).fetchone()["n"])
        cur = self._conn.execute(
            f"""
            SELECT * FROM users WHERE {clause}
            ORDER BY created_at DESC, rowid DESC
            LIMIT ? OFFSET ?
            """,
            params + [int(limit), int(offset)],
        )
        return [_row_to_user(r) for r in cur.fetchall()], total

    async def list_users(self, exclude_id: Optional[str] = None, search: str = "",
                         offset: int = 0, limit: int = 20) -> Tuple[List[User], int]:
        return await self._call(self._list_users_locked, exclude_id, search, offset, limit)

    def _update_user_locked(self, user_id: str, name: Optional[str], email: Optional[str],
                            profile_picture: Optional[str]) -> Optional[User]:
        fields: List[str] = []
        params: List[Any] = []
        if name:
            fields.append("name=?")
            params.append(name)
        if email:
            fields.append("email=?")
            params.append(email.lower())
        if profile_picture is not None:
            fields.append("profile_picture=?")
            params.append(profile_picture)
        if fields:
            try:
                self._conn.execute(
                    f"UPDATE users SET {', '.join(fields)} WHERE id=? AND is_active=1",
                    params + [user_id],
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise DuplicateKey("Email already in use", field="email")
            self._conn.commit()
        user = self._get_user_locked(user_id)
        return user if user is not None and user.is_active else None

    async def update_user(self, user_id: str, name: Optional[str] = None,
                          email: Optional[str] = None,
                          profile_picture: Optional[str] = None) -> Optional[User]:
        """
        Change profile fields of an active user; None leaves a field as is.

        Returns:
            The updated user, or None if there is no active user with that id
        """
        return await self._call(self._update_user_locked, user_id, name, email, profile_picture)

    def _deactivate_user_locked(self, user_id: str, at: float) -> bool:
        cur = self._conn.execute(
            "UPDATE users SET is_active=0, is_online=0, last_seen=? WHERE id=? AND is_active=1",
            (at, user_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    async def deactivate_user(self, user_id: str, at: float) -> bool:
        """Soft-delete a user. Returns False if it was absent or already inactive."""
        return await self._call(self._deactivate_user_locked, user_id, at)

    def _set_presence_locked(self, user_id: str, is_online: bool, last_seen: float) -> None:
        self._conn.execute(
            "UPDATE users SET is_online=?, last_seen=? WHERE id=?",
            (1 if is_online else 0, last_seen, user_id),
        )
        self._conn.commit()

    async def set_presence(self, user_id: str, is_online: bool, last_seen: float) -> None:
        await self._call(self._set_presence_locked, user_id, is_online, last_seen)

    def _reset_presence_locked(self) -> int:
        cur = self._conn.execute("UPDATE users SET is_online=0 WHERE is_online=1")
        self._conn.commit()
        return cur.rowcount

    async def reset_presence(self) -> int:
        """Mark every stored user offline. Used at process start."""
        return await self._call(self._reset_presence_locked)

    # --------------------------- chats ---------------------------
    def _load_chat_locked(self, row: sqlite3.Row) -> Chat:
        cur = self._conn.execute(
            "SELECT user_id FROM chat_participants WHERE chat_id=? ORDER BY position",
            (row["id"],),
        )
        return Chat(
            id=str(row["id"]),
            participants=tuple(str(r["user_id"]) for r in cur.fetchall()),
            created_by=str(row["created_by"]),
            chat_type=ChatType(row["chat_type"]),
            chat_name=row["chat_name"],
            last_message_id=row["last_message_id"],
            last_message_time=float(row["last_message_time"]),
            is_active=bool(row["is_active"]),
            created_at=float(row["created_at"]),
            updated_at=float(row["updated_at"]),
        )

    def _get_chat_locked(self, chat_id: str) -> Optional[Chat]:
        row = self._conn.execute("SELECT * FROM chats WHERE id=?", (chat_id,)).fetchone()
        return None if row is None else self._load_chat_locked(row)

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        return await self._call(self._get_chat_locked, chat_id)

    def _find_or_create_private_chat_locked(self, user_a: str, user_b: str,
                                            created_by: str) -> Chat:
        key = pair_key(user_a, user_b)
        ts = now()
        chat_id = new_id()
        cur = self._conn.execute(
            """
            INSERT OR IGNORE INTO chats(id, chat_type, pair_key, chat_name, created_by,
                                        last_message_id, last_message_time, is_active,
                                        created_at, updated_at)
            VALUES(?, 'private', ?, NULL, ?, NULL, ?, 1, ?, ?)
            """,
            (chat_id, key, created_by, ts, ts, ts),
        )
        if cur.rowcount == 1:
            self._conn.executemany(
                "INSERT INTO chat_participants(chat_id, user_id, position) VALUES(?,?,?)",
                [(chat_id, user_a, 0), (chat_id, user_b, 1)],
            )
            logger.info("Created private chat %s for pair %s", chat_id, key)
        self._conn.commit()

        row = self._conn.execute(
            "SELECT * FROM chats WHERE pair_key=? AND chat_type='private' AND is_active=1",
            (key,),
        ).fetchone()
        if row is None:
            raise StorageError(f"Private chat for pair {key} vanished after upsert")
        return self._load_chat_locked(row)

    async def find_or_create_private_chat(self, user_a: str, user_b: str,
                                          created_by: str) -> Chat:
        return await self._call(self._find_or_create_private_chat_locked, user_a, user_b, created_by)

    def _update_chat_last_message_locked(self, chat_id: str, message_id: str,
                                         timestamp: float) -> Optional[Chat]:
        self._conn.execute(
            """
            UPDATE chats SET last_message_id=?, last_message_time=?, updated_at=?
            WHERE id=?
            """,
            (message_id, timestamp, now(), chat_id),
        )
        self._conn.commit()
        return self._get_chat_locked(chat_id)

    async def update_chat_last_message(self, chat_id: str, message_id: str,
                                       timestamp: float) -> Optional[Chat]:
        return await self._call(self._update_chat_last_message_locked, chat_id, message_id, timestamp)

    def _list_chats_for_user_locked(self, user_id: str) -> List[Chat]:
        cur = self._conn.execute(
            """
            SELECT c.* FROM chats c
            JOIN chat_participants p ON p.chat_id = c.id
            WHERE p.user_id=? AND c.is_active=1
            ORDER BY c.last_message_time DESC, c.rowid DESC
            """,
            (user_id,),
        )
        return [self._load_chat_locked(r) for r in cur.fetchall()]

    async def list_chats_for_user(self, user_id: str) -> List[Chat]:
        return await self._call(self._list_chats_for_user_locked, user_id)

    def _deactivate_chat_locked(self, chat_id: str) -> bool:
        cur = self._conn.execute(
            "UPDATE chats SET is_active=0, updated_at=? WHERE id=? AND is_active=1",
            (now(), chat_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    async def deactivate_chat(self, chat_id: str) -> bool:
        return await self._call(self._deactivate_chat_locked, chat_id)

    # ------------------------- messages -------------------------
    def _insert_message_locked(self, m: Message) -> Message:
        self._conn.execute(
            """
            INSERT INTO messages(id, chat_id, sender_id, receiver_id, message_type, content,
                                 file_url, file_name, file_size, is_delivered, delivered_at,
                                 is_read, read_at, is_deleted, deleted_at, created_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                m.id, m.chat_id, m.sender_id, m.receiver_id, m.message_type.value, m.content,
                m.file.url if m.file else None,
                m.file.name if m.file else None,
                m.file.size if m.file else None,
                1 if m.is_delivered else 0, m.delivered_at,
                1 if m.is_read else 0, m.read_at,
                1 if m.is_deleted else 0, m.deleted_at,
                m.created_at,
            ),
        )
        self._conn.commit()
        return m

    async def insert_message(self, message: Message) -> Message:
        return await self._call(self._insert_message_locked, message)

    def _get_message_locked(self, message_id: str) -> Optional[Message]:
        row = self._conn.execute("SELECT * FROM messages WHERE id=?", (message_id,)).fetchone()
        return None if row is None else _row_to_message(row)

    async def get_message(self, message_id: str) -> Optional[Message]:
        """Fetch a message by id, soft-deleted ones included."""
        return await self._call(self._get_message_locked, message_id)

    def _get_messages_locked(self, message_ids: List[str]) -> Dict[str, Message]:
        ids = [i for i in dict.fromkeys(message_ids) if i]
        if not ids:
            return {}
        cur = self._conn.execute(
            f"SELECT * FROM messages WHERE id IN ({_placeholders(len(ids))})", ids
        )
        return {str(r["id"]): _row_to_message(r) for r in cur.fetchall()}

    async def get_messages(self, message_ids: List[str]) -> Dict[str, Message]:
        return await self._call(self._get_messages_locked, message_ids)

    def _count_messages_locked(self, chat_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM messages WHERE chat_id=? AND is_deleted=0",
            (chat_id,),
        ).fetchone()
        return int(row["n"])

    async def count_messages(self, chat_id: str) -> int:
        return await self._call(self._count_messages_locked, chat_id)

    def _list_messages_locked(self, chat_id: str, offset: int, limit: int) -> List[Message]:
        cur = self._conn.execute(
            """
            SELECT * FROM messages
            WHERE chat_id=? AND is_deleted=0
            ORDER BY created_at DESC, rowid DESC
            LIMIT ? OFFSET ?
            """,
            (chat_id, int(limit), int(offset)),
        )
        rows = cur.fetchall()
        # Return chronological order
        rows.reverse()
        return [_row_to_message(r) for r in rows]

    async def list_messages(self, chat_id: str, offset: int, limit: int) -> List[Message]:
        """Page through non-deleted messages, newest page first, each page chronological."""
        return await self._call(self._list_messages_locked, chat_id, offset, limit)

    def _mark_read_locked(self, chat_id: str, receiver_id: str, read_at: float,
                          message_ids: Optional[List[str]]) -> List[str]:
        sql = """
            SELECT id FROM messages
            WHERE chat_id=? AND receiver_id=? AND is_read=0 AND is_deleted=0
        """
        params: List[Any] = [chat_id, receiver_id]
        if message_ids is not None:
            ids = [i for i in dict.fromkeys(message_ids) if i]
            if not ids:
                return []
            sql += f" AND id IN ({_placeholders(len(ids))})"
            params.extend(ids)
        changed = [str(r["id"]) for r in self._conn.execute(sql, params).fetchall()]
        if not changed:
            return []
        self._conn.execute(
            f"UPDATE messages SET is_read=1, read_at=? WHERE id IN ({_placeholders(len(changed))})",
            [read_at] + changed,
        )
        self._conn.commit()
        return changed

    async def mark_read(self, chat_id: str, receiver_id: str, read_at: float,
                        message_ids: Optional[List[str]] = None) -> List[str]:
        """
        Mark unread messages addressed to ``receiver_id`` as read.

        Returns:
            Ids of the messages that actually changed
        """
        return await self._call(self._mark_read_locked, chat_id, receiver_id, read_at, message_ids)

    def _soft_delete_message_locked(self, message_id: str, deleted_at: float) -> bool:
        cur = self._conn.execute(
            "UPDATE messages SET is_deleted=1, deleted_at=? WHERE id=? AND is_deleted=0",
            (deleted_at, message_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    async def soft_delete_message(self, message_id: str, deleted_at: float) -> bool:
        return await self._call(self._soft_delete_message_locked, message_id, deleted_at)

    def _ping_locked(self) -> bool:
        self._conn.execute("SELECT 1").fetchone()
        return True

    async def ping(self) -> bool:
        return await self._call(self._ping_locked)
