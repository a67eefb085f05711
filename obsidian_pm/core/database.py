"""
Datastore access: one SQLAlchemy engine per process, short-lived sessions,
and the Core table definitions.

PostgreSQL in deployment; tests point TEST_DATABASE_URL (or init_engine) at a
throwaway SQLite file.
"""
from contextlib import contextmanager
from typing import Iterator, Optional
import os

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, MetaData, String, Table, Text, UniqueConstraint, Boolean, create_engine, false, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import func

from obsidian_pm.core.config import settings
from obsidian_pm.core.logging import log_event


metadata = MetaData()

_engine: Optional[Engine] = None
_sessions: Optional[sessionmaker] = None


def resolve_database_url() -> Optional[str]:
    """TEST_DATABASE_URL, then DATABASE_URL from the process env, then settings."""
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)bind the module engine and session factory to `database_url`."""
    global _engine, _sessions

    url = database_url or resolve_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured (set it in the environment or .env)")

    if url.startswith("sqlite"):
        # Sessions are used from FastAPI's threadpool
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, pool_size=10, max_overflow=20, pool_pre_ping=True, pool_recycle=1800)

    if _engine is not None:
        _engine.dispose()
    _engine = engine
    _sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine


def get_engine() -> Engine:
    return _engine if _engine is not None else init_engine()


@contextmanager
def get_db_session() -> Iterator[Session]:
    """
    Unit of work: commits when the block exits cleanly, rolls back and
    re-raises otherwise.

        with get_db_session() as session:
            session.execute(insert(notifications).values(...))
    """
    if _sessions is None:
        init_engine()
    session = _sessions()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables; existing ones are left untouched."""
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Drop every table this module defines. Tests and local resets only."""
    metadata.drop_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        log_event("warning", "db.unreachable", error_code="db_unreachable", extra={"error": e})
        return False
    return True


# Users table
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

# Entitlements: one row per user, mutated only by the billing reconciler
entitlements = Table(
    'entitlements',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('tier', String(20), nullable=False, server_default='free'),  # 'free' | 'paid'
    Column('billing_customer_ref', String(255), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Webhooks for cancellation resolve the user by customer reference
    Index('idx_entitlements_customer_ref', 'billing_customer_ref'),
)

# Projects table
projects = Table(
    'projects',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('name', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Project milestones (schedule items)
project_milestones = Table(
    'project_milestones',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('project_id', String(100), ForeignKey('projects.id'), nullable=False),
    Column('title', Text, nullable=False),
    Column('due_date', Date, nullable=True),
    Column('status', String(20), nullable=False, server_default='pending'),  # 'pending' | 'done'
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Composite index for the pending-by-project scan
    Index('idx_project_milestones_project_status', 'project_id', 'status'),
)

# Notifications feed
notifications = Table(
    'notifications',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('kind', String(20), nullable=False),  # 'info' | 'warning' | 'success' | 'error'
    Column('title', Text, nullable=False),
    Column('message', Text, nullable=False),
    Column('link', String(500), nullable=True),
    Column('is_read', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('created_day', Date, nullable=False),
    # One notification per (user, title, link) per calendar day
    UniqueConstraint('user_id', 'title', 'link', 'created_day', name='uq_notifications_user_title_link_day'),
    Index('idx_notifications_user_created', 'user_id', 'created_at'),
)

# Verified billing webhook events (audit log, not a processing cursor)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(255), unique=True, nullable=False, index=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=True, index=True),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, server_default=false()),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
)
