"""SQLite storage implementation (durable tier)."""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..errors import StaleSessionError, StorageNotInitializedError
from ..models import (
    CANCELLED,
    COMPLETED,
    MessageLogEntry,
    Session,
    User,
    WorkItem,
    WorkItemStatus,
)

# Columns update_work_item() may touch.
WORK_ITEM_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "called_at",
        "external_call_id",
        "assistant_id",
        "error",
        "duration_seconds",
        "recording_url",
        "transcript",
        "completed_at",
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime | None) -> str | None:
    """Serialize a timestamp so that string order equals time order."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class IStorage(Protocol):
    """Persistent storage for users, sessions, work items and the message log."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    # Users
    async def get_or_create_user(self, identity: str) -> User:
        """Return the user for an identity, creating it on first contact."""
        ...

    async def get_user(self, identity: str) -> User | None:
        """Get a user by identity."""
        ...

    async def get_user_by_id(self, user_id: str) -> User | None:
        """Get a user by ID."""
        ...

    async def increment_user_recordings(self, user_id: str) -> None:
        """Count one more finished recording for a user."""
        ...

    # Message log
    async def log_message(self, entry: MessageLogEntry) -> None:
        """Append an entry to the message log."""
        ...

    # Sessions
    async def create_session(
        self,
        user_id: str,
        identity: str,
        state: str,
        data: dict,
        expires_at: datetime,
    ) -> Session:
        """Cancel the user's active sessions and insert a new one."""
        ...

    async def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID regardless of its state."""
        ...

    async def get_active_session(
        self, identity: str, now: datetime
    ) -> Session | None:
        """Get the newest non-terminal, non-expired session of an identity."""
        ...

    async def update_session(
        self,
        session_id: str,
        expected_version: int,
        state: str,
        data: dict,
        expires_at: datetime,
    ) -> int:
        """Version-checked update. Returns the new version."""
        ...

    async def cancel_sessions(self, identity: str) -> int:
        """Mark every non-terminal session of an identity cancelled."""
        ...

    async def complete_session(
        self, session: Session, data: dict, work_item: WorkItem
    ) -> WorkItem:
        """Atomically complete a session and record its work item."""
        ...

    async def delete_expired_sessions(self, now: datetime) -> int:
        """Delete sessions whose expiry has passed."""
        ...

    # Work items
    async def get_work_item(self, item_id: str) -> WorkItem | None:
        """Get a work item by ID."""
        ...

    async def get_work_item_by_call_id(self, call_id: str) -> WorkItem | None:
        """Get the work item whose call has the given external ID."""
        ...

    async def list_due_work_items(self, now: datetime) -> list[WorkItem]:
        """Pending work items scheduled at or before now, oldest first."""
        ...

    async def claim_work_item(self, item_id: str, now: datetime) -> bool:
        """Move a work item from pending to calling. False if already claimed."""
        ...

    async def release_work_item(self, item_id: str) -> bool:
        """Move a claimed work item back to pending. False if it is not calling."""
        ...

    async def update_work_item(self, item_id: str, **fields: Any) -> None:
        """Update mutable work item fields."""
        ...

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        ...


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        # One connection means one transaction; writers take turns.
        self._write_lock = asyncio.Lock()

    @property
    def _connection(self) -> aiosqlite.Connection:
        if not self._conn:
            raise StorageNotInitializedError()
        return self._conn

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    # Users
    async def get_or_create_user(self, identity: str) -> User:
        """Return the user for an identity, creating it on first contact."""
        conn = self._connection

        async with self._write_lock:
            await conn.execute(
                """
                INSERT OR IGNORE INTO users (id, identity, created_at)
                VALUES (?, ?, ?)
                """,
                (str(uuid.uuid4()), identity, _ts(_utcnow())),
            )
            await conn.commit()

        user = await self.get_user(identity)
        if user is None:
            raise RuntimeError(f"User {identity} missing after insert")
        return user

    async def get_user(self, identity: str) -> User | None:
        """Get a user by identity."""
        cursor = await self._connection.execute(
            """
            SELECT id, identity, created_at, completed_dialogues, total_recordings
            FROM users
            WHERE identity = ?
            """,
            (identity,),
        )
        row = await cursor.fetchone()
        return self._row_to_user(row) if row else None

    async def get_user_by_id(self, user_id: str) -> User | None:
        """Get a user by ID."""
        cursor = await self._connection.execute(
            """
            SELECT id, identity, created_at, completed_dialogues, total_recordings
            FROM users
            WHERE id = ?
            """,
            (user_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_user(row) if row else None

    async def increment_user_recordings(self, user_id: str) -> None:
        """Count one more finished recording for a user."""
        conn = self._connection
        async with self._write_lock:
            await conn.execute(
                "UPDATE users SET total_recordings = total_recordings + 1 WHERE id = ?",
                (user_id,),
            )
            await conn.commit()

    # Message log
    async def log_message(self, entry: MessageLogEntry) -> None:
        """Append an entry to the message log."""
        conn = self._connection
        async with self._write_lock:
            await conn.execute(
                """
                INSERT INTO message_logs (id, identity, direction, text, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.id or str(uuid.uuid4()),
                    entry.identity,
                    entry.direction,
                    entry.text,
                    _ts(entry.timestamp),
                ),
            )
            await conn.commit()

    # Sessions
    async def create_session(
        self,
        user_id: str,
        identity: str,
        state: str,
        data: dict,
        expires_at: datetime,
    ) -> Session:
        """Cancel the user's active sessions and insert a new one."""
        conn = self._connection
        now = _utcnow()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            identity=identity,
            state=state,
            data=data,
            expires_at=expires_at,
            version=1,
            created_at=now,
        )

        async with self._write_lock:
            try:
                await conn.execute(
                    """
                    UPDATE sessions
                    SET state = ?, data = '{}', version = version + 1, updated_at = ?
                    WHERE user_id = ? AND state NOT IN (?, ?)
                    """,
                    (CANCELLED, _ts(now), user_id, COMPLETED, CANCELLED),
                )
                await conn.execute(
                    """
                    INSERT INTO sessions
                    (id, user_id, state, data, version, expires_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        session.id,
                        user_id,
                        state,
                        json.dumps(data),
                        session.version,
                        _ts(expires_at),
                        _ts(now),
                        _ts(now),
                    ),
                )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        return session

    async def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID regardless of its state."""
        cursor = await self._connection.execute(
            """
            SELECT s.id, s.user_id, u.identity, s.state, s.data, s.version,
                   s.expires_at, s.created_at
            FROM sessions s
            JOIN users u ON u.id = s.user_id
            WHERE s.id = ?
            """,
            (session_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def get_active_session(
        self, identity: str, now: datetime
    ) -> Session | None:
        """Get the newest non-terminal, non-expired session of an identity."""
        cursor = await self._connection.execute(
            """
            SELECT s.id, s.user_id, u.identity, s.state, s.data, s.version,
                   s.expires_at, s.created_at
            FROM sessions s
            JOIN users u ON u.id = s.user_id
            WHERE u.identity = ?
              AND s.state NOT IN (?, ?)
              AND s.expires_at > ?
            ORDER BY s.created_at DESC, s.rowid DESC
            LIMIT 1
            """,
            (identity, COMPLETED, CANCELLED, _ts(now)),
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def update_session(
        self,
        session_id: str,
        expected_version: int,
        state: str,
        data: dict,
        expires_at: datetime,
    ) -> int:
        """Version-checked update. Returns the new version."""
        conn = self._connection

        async with self._write_lock:
            try:
                cursor = await conn.execute(
                    """
                    UPDATE sessions
                    SET state = ?, data = ?, version = version + 1,
                        expires_at = ?, updated_at = ?
                    WHERE id = ? AND version = ? AND state NOT IN (?, ?)
                    """,
                    (
                        state,
                        json.dumps(data),
                        _ts(expires_at),
                        _ts(_utcnow()),
                        session_id,
                        expected_version,
                        COMPLETED,
                        CANCELLED,
                    ),
                )
                updated = cursor.rowcount
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        if updated == 0:
            raise StaleSessionError(session_id, expected_version)
        return expected_version + 1

    async def cancel_sessions(self, identity: str) -> int:
        """Mark every non-terminal session of an identity cancelled."""
        conn = self._connection

        async with self._write_lock:
            try:
                cursor = await conn.execute(
                    """
                    UPDATE sessions
                    SET state = ?, data = '{}', version = version + 1, updated_at = ?
                    WHERE user_id = (SELECT id FROM users WHERE identity = ?)
                      AND state NOT IN (?, ?)
                    """,
                    (CANCELLED, _ts(_utcnow()), identity, COMPLETED, CANCELLED),
                )
                cancelled = cursor.rowcount
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        return cancelled

    async def complete_session(
        self, session: Session, data: dict, work_item: WorkItem
    ) -> WorkItem:
        """Atomically complete a session and record its work item."""
        conn = self._connection
        work_item.session_id = session.id
        work_item.id = work_item.id or str(uuid.uuid4())

        async with self._write_lock:
            try:
                cursor = await conn.execute(
                    """
                    UPDATE sessions
                    SET state = ?, data = ?, version = version + 1, updated_at = ?
                    WHERE id = ? AND version = ? AND state NOT IN (?, ?)
                    """,
                    (
                        COMPLETED,
                        json.dumps(data),
                        _ts(_utcnow()),
                        session.id,
                        session.version,
                        COMPLETED,
                        CANCELLED,
                    ),
                )
                if cursor.rowcount == 0:
                    raise StaleSessionError(session.id, session.version)

                await conn.execute(
                    """
                    INSERT INTO work_items
                    (id, user_id, identity, session_id, storyteller_name,
                     storyteller_phone, form_data, scheduled_for, status, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        work_item.id,
                        work_item.user_id,
                        work_item.identity,
                        work_item.session_id,
                        work_item.storyteller_name,
                        work_item.storyteller_phone,
                        json.dumps(work_item.form_data),
                        _ts(work_item.scheduled_for),
                        work_item.status.value,
                        _ts(work_item.created_at),
                    ),
                )
                await conn.execute(
                    """
                    UPDATE users
                    SET completed_dialogues = completed_dialogues + 1
                    WHERE id = ?
                    """,
                    (session.user_id,),
                )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        return work_item

    async def delete_expired_sessions(self, now: datetime) -> int:
        """Delete sessions whose expiry has passed."""
        conn = self._connection

        async with self._write_lock:
            cursor = await conn.execute(
                "DELETE FROM sessions WHERE expires_at <= ?",
                (_ts(now),),
            )
            deleted = cursor.rowcount
            await conn.commit()

        return deleted

    # Work items
    async def get_work_item(self, item_id: str) -> WorkItem | None:
        """Get a work item by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM work_items WHERE id = ?",
            (item_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_work_item(row) if row else None

    async def get_work_item_by_call_id(self, call_id: str) -> WorkItem | None:
        """Get the work item whose call has the given external ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM work_items WHERE external_call_id = ?",
            (call_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_work_item(row) if row else None

    async def list_due_work_items(self, now: datetime) -> list[WorkItem]:
        """Pending work items scheduled at or before now, oldest first."""
        cursor = await self._connection.execute(
            """
            SELECT * FROM work_items
            WHERE status = ? AND scheduled_for <= ?
            ORDER BY scheduled_for ASC
            """,
            (WorkItemStatus.PENDING.value, _ts(now)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_work_item(row) for row in rows]

    async def claim_work_item(self, item_id: str, now: datetime) -> bool:
        """Move a work item from pending to calling. False if already claimed."""
        conn = self._connection

        async with self._write_lock:
            cursor = await conn.execute(
                """
                UPDATE work_items
                SET status = ?, called_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    WorkItemStatus.CALLING.value,
                    _ts(now),
                    item_id,
                    WorkItemStatus.PENDING.value,
                ),
            )
            claimed = cursor.rowcount == 1
            await conn.commit()

        return claimed

    async def release_work_item(self, item_id: str) -> bool:
        """Move a claimed work item back to pending. False if it is not calling."""
        conn = self._connection

        async with self._write_lock:
            cursor = await conn.execute(
                """
                UPDATE work_items
                SET status = ?, called_at = NULL
                WHERE id = ? AND status = ?
                """,
                (
                    WorkItemStatus.PENDING.value,
                    item_id,
                    WorkItemStatus.CALLING.value,
                ),
            )
            released = cursor.rowcount == 1
            await conn.commit()

        return released

    async def update_work_item(self, item_id: str, **fields: Any) -> None:
        """Update mutable work item fields."""
        unknown = set(fields) - WORK_ITEM_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update work item fields: {sorted(unknown)}")
        if not fields:
            return

        assignments = []
        params: list[Any] = []
        for name, value in fields.items():
            if isinstance(value, WorkItemStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = _ts(value)
            assignments.append(f"{name} = ?")
            params.append(value)
        params.append(item_id)

        conn = self._connection
        async with self._write_lock:
            await conn.execute(
                f"UPDATE work_items SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            await conn.commit()

    # Lifecycle
    async def clear(self) -> None:
        """Clear all data."""
        conn = self._connection

        tables = [
            "message_logs",
            "work_items",
            "sessions",
            "users",
        ]

        async with self._write_lock:
            for table in tables:
                await conn.execute(f"DELETE FROM {table}")
            await conn.commit()

    # Row mapping
    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> User:
        return User(
            id=row["id"],
            identity=row["identity"],
            created_at=_dt(row["created_at"]),
            completed_dialogues=row["completed_dialogues"],
            total_recordings=row["total_recordings"],
        )

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            identity=row["identity"],
            state=row["state"],
            data=json.loads(row["data"]),
            version=row["version"],
            expires_at=_dt(row["expires_at"]),
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_work_item(row: aiosqlite.Row) -> WorkItem:
        return WorkItem(
            id=row["id"],
            user_id=row["user_id"],
            identity=row["identity"],
            session_id=row["session_id"],
            storyteller_name=row["storyteller_name"],
            storyteller_phone=row["storyteller_phone"],
            form_data=json.loads(row["form_data"]),
            scheduled_for=_dt(row["scheduled_for"]),
            status=WorkItemStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            called_at=_dt(row["called_at"]),
            external_call_id=row["external_call_id"],
            assistant_id=row["assistant_id"],
            error=row["error"],
            duration_seconds=row["duration_seconds"],
            recording_url=row["recording_url"],
            transcript=row["transcript"],
            completed_at=_dt(row["completed_at"]),
        )
