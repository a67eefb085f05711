"""
obsidian_pm/features/notifications/service.py

Per-user notification feed shared by the billing reconciler and the
deadline generator.

Deduplication works at two levels:
- find_recent_notification(): the (user, title, link, since) lookup callers
  run before inserting
- the (user_id, title, link, created_day) unique constraint, which turns the
  remaining read-then-insert race into a no-op insert
"""

from datetime import datetime
from typing import List, Optional
import logging
from sqlalchemy import select, insert, and_
from sqlalchemy.exc import IntegrityError

from obsidian_pm.core.clock import local_today, normalize_now, start_of_day_utc
from obsidian_pm.core.database import get_db_session, notifications
from obsidian_pm.models.notification import Notification, NotificationKind


logger = logging.getLogger("obsidian")


def _row_to_notification(row) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        kind=NotificationKind(row.kind),
        title=row.title,
        message=row.message,
        link=row.link,
        is_read=bool(row.is_read),
        created_at=row.created_at,
    )


def create_notification(
    user_id: str,
    kind: NotificationKind,
    title: str,
    message: str,
    link: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Notification]:
    """
    Insert a notification.

    Returns:
        The created Notification, or None when an identical one
        (same user, title and link) already exists for that calendar day.
    """
    created_at = normalize_now(now)
    created_day = local_today(created_at)

    try:
        with get_db_session() as session:
            result = session.execute(
                insert(notifications).values(
                    user_id=user_id,
                    kind=NotificationKind(kind).value,
                    title=title,
                    message=message,
                    link=link,
                    is_read=False,
                    created_at=created_at,
                    created_day=created_day,
                )
            )
            notification_id = result.inserted_primary_key[0]
    except IntegrityError:
        logger.info(
            "notification.duplicate",
            extra={"user_id": user_id, "title": title, "link": link},
        )
        return None

    return Notification(
        id=notification_id,
        user_id=user_id,
        kind=NotificationKind(kind),
        title=title,
        message=message,
        link=link,
        is_read=False,
        created_at=created_at,
    )


def find_recent_notification(
    user_id: str,
    title: str,
    link: Optional[str],
    since: datetime,
) -> Optional[Notification]:
    """Return the newest notification matching (user, title, link) created at or after `since`."""
    link_clause = notifications.c.link.is_(None) if link is None else notifications.c.link == link
    with get_db_session() as session:
        row = session.execute(
            select(notifications)
            .where(
                and_(
                    notifications.c.user_id == user_id,
                    notifications.c.title == title,
                    link_clause,
                    notifications.c.created_at >= normalize_now(since),
                )
            )
            .order_by(notifications.c.created_at.desc())
            .limit(1)
        ).first()
        return _row_to_notification(row) if row else None


def notify_once_per_day(
    user_id: str,
    kind: NotificationKind,
    title: str,
    message: str,
    link: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Notification]:
    """Create the notification unless the same one was already issued today."""
    current = normalize_now(now)
    since = start_of_day_utc(local_today(current))
    if find_recent_notification(user_id, title, link, since):
        return None
    return create_notification(user_id, kind, title, message, link=link, now=current)


def list_notifications(user_id: str, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    query = select(notifications).where(notifications.c.user_id == user_id)
    if unread_only:
        query = query.where(notifications.c.is_read.is_(False))
    query = query.order_by(notifications.c.created_at.desc(), notifications.c.id.desc()).limit(limit)

    with get_db_session() as session:
        rows = session.execute(query).all()
        return [_row_to_notification(row) for row in rows]
