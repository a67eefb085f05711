"""
obsidian_pm/features/users/service.py

Users are created lazily on their first authenticated request.
"""

from typing import Optional
from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from obsidian_pm.core.clock import utc_now
from obsidian_pm.core.database import get_db_session, users
from obsidian_pm.models.user import User, fallback_display_name


def clean_display_name(user_id: str, display_name: Optional[str]) -> str:
    cleaned = " ".join((display_name or "").split())
    return cleaned or fallback_display_name(user_id)


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.user_id == user_id)).first()
    if row is None:
        return None
    return User(
        user_id=row.user_id,
        display_name=clean_display_name(row.user_id, row.display_name),
        status=row.status,
        created_at=row.created_at,
    )


def get_or_create_user(user_id: str, display_name: Optional[str] = None) -> User:
    """Return the user, inserting the row on first sight (safe under concurrent first requests)."""
    user = get_user(user_id)
    if user is not None:
        return user

    created = User(user_id=user_id, display_name=clean_display_name(user_id, display_name), created_at=utc_now())
    try:
        with get_db_session() as session:
            session.execute(insert(users).values(**created.model_dump()))
    except IntegrityError:
        return get_user(user_id)
    return created
