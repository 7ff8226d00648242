"""Notification persistence, unread counts and live pushes.

Rows are written first; the live push goes through an injected broadcaster
(normally live_channel.ConnectionHub). A failed push is logged and never
undoes or fails the write: the record is already durable and the client
reconciles on its next ``notification:sync``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, Protocol

from sqlalchemy import func
from sqlmodel import Session, select

import db as _db
from models import Notification
from schemas import NotificationRead

logger = logging.getLogger(__name__)

SYNC_EVENT = "notification:sync"
NEW_EVENT = "notification:new"
MARKED_READ_EVENT = "notification:marked-read"

DEFAULT_LIST_LIMIT = 50
# Largest value an integer id column holds (INTEGER on PostgreSQL).
MAX_ROW_ID = 2**31 - 1


class Broadcaster(Protocol):
    async def emit_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> None: ...


def _parse_metadata(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def to_read(row: Notification) -> NotificationRead:
    return NotificationRead(
        id=row.id,
        userId=row.user_id,
        taskId=row.task_id,
        type=row.type,
        title=row.title,
        message=row.message,
        metadata=_parse_metadata(row.metadata_json),
        isRead=bool(row.is_read),
        createdAt=row.created_at.isoformat() if row.created_at else None,
    )


def clean_ids(ids: Any) -> list[int]:
    """Keep the ids in *ids* (ints or integer strings) that fit an id column, in order."""
    if not isinstance(ids, (list, tuple, set)):
        return []
    cleaned: list[int] = []
    for raw in ids:
        if isinstance(raw, bool):
            continue
        if isinstance(raw, int):
            value = raw
        elif isinstance(raw, float) and raw.is_integer():
            value = int(raw)
        elif isinstance(raw, str):
            try:
                value = int(raw.strip())
            except ValueError:
                continue
        else:
            continue
        if 0 < value <= MAX_ROW_ID:
            cleaned.append(value)
    return cleaned


def get_unread_count(user_id: int) -> int:
    """Return the number of unread notifications for *user_id*."""
    with Session(_db.get_engine()) as session:
        count = session.exec(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
        ).one()
        return int(count or 0)


class NotificationService:
    """Creates notifications and keeps each user's live sessions in step."""

    def __init__(self, broadcaster: Broadcaster):
        self.broadcaster = broadcaster

    async def _emit(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        try:
            await self.broadcaster.emit_to_user(user_id, event, payload)
        except Exception as e:
            logger.warning("Live push %s to user %s failed: %s", event, user_id, e)

    async def create_notification(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        task_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> NotificationRead:
        """Persist an unread notification, then push it with the fresh unread count."""
        with Session(_db.get_engine()) as session:
            row = Notification(
                user_id=user_id,
                task_id=task_id,
                type=type,
                title=title,
                message=message,
                metadata_json=json.dumps(metadata) if metadata is not None else None,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            notification = to_read(row)

        unread = get_unread_count(user_id)
        await self._emit(
            user_id,
            NEW_EVENT,
            {"notification": notification.model_dump(mode="json"), "unreadCount": unread},
        )
        return notification

    async def notify_users(
        self,
        user_ids: Iterable[int],
        type: str,
        title: str,
        message: str,
        task_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[NotificationRead]:
        """Create one notification per user concurrently.

        Each recipient is independent: a failure for one is logged and the
        others still get theirs. Returns the notifications that were created.
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        results = await asyncio.gather(
            *(
                self.create_notification(
                    uid, type, title, message, task_id=task_id, metadata=metadata
                )
                for uid in ids
            ),
            return_exceptions=True,
        )
        created: list[NotificationRead] = []
        for uid, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.warning("Could not notify user %s (%s): %s", uid, type, result)
                continue
            created.append(result)
        return created

    def list_notifications(self, user_id: int, limit: Any = DEFAULT_LIST_LIMIT) -> list[NotificationRead]:
        """Return the newest notifications first, at most *limit* of them."""
        try:
            limit_value = int(limit)
        except (TypeError, ValueError):
            limit_value = DEFAULT_LIST_LIMIT
        if limit_value <= 0:
            limit_value = DEFAULT_LIST_LIMIT
        with Session(_db.get_engine()) as session:
            rows = session.exec(
                select(Notification)
                .where(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())  # type: ignore[attr-defined]
                .limit(limit_value)
            ).all()
            return [to_read(r) for r in rows]

    def get_unread_count(self, user_id: int) -> int:
        return get_unread_count(user_id)

    async def mark_as_read(self, user_id: int, ids: Any) -> int:
        """Mark the given notifications of *user_id* read and return the unread count.

        Ids that are not positive integers are dropped; ids belonging to other
        users are never touched. With nothing left to mark, the current count
        is still recomputed, pushed and returned.
        """
        cleaned = clean_ids(ids)
        if cleaned:
            with Session(_db.get_engine()) as session:
                rows = session.exec(
                    select(Notification).where(
                        Notification.user_id == user_id,
                        Notification.id.in_(cleaned),  # type: ignore[attr-defined]
                    )
                ).all()
                for row in rows:
                    row.is_read = True
                    session.add(row)
                session.commit()

        unread = get_unread_count(user_id)
        await self._emit(user_id, MARKED_READ_EVENT, {"ids": cleaned, "unreadCount": unread})
        return unread

    async def mark_all_as_read(self, user_id: int) -> int:
        with Session(_db.get_engine()) as session:
            rows = session.exec(
                select(Notification).where(
                    Notification.user_id == user_id,
                    Notification.is_read == False,  # noqa: E712
                )
            ).all()
            for row in rows:
                row.is_read = True
                session.add(row)
            session.commit()
        logger.debug("Marked %d notifications read for user %s.", len(rows), user_id)

        await self._emit(user_id, MARKED_READ_EVENT, {"ids": "all", "unreadCount": 0})
        return 0
