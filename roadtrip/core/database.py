"""
Database configuration and table definitions.

This module provides:
- SQLAlchemy Core table definitions for every engine collection
- Engine management with pooling defaults
- Test database support (TEST_DATABASE_URL, in-memory SQLite)
"""
from typing import Optional
from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean,
    JSON, Text, Index, ForeignKey, PrimaryKeyConstraint, select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func
import logging
import os

from roadtrip.core.config import settings


logger = logging.getLogger(__name__)

metadata = MetaData()

# Connection pooling configuration (server databases only)
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine
_engine = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine with pooling suited to the backend."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    return create_engine(
        url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=echo,
    )


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Initialize the global SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    return _engine


def get_engine() -> Engine:
    """Get the current SQLAlchemy engine."""
    if _engine is None:
        init_engine()
    return _engine


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        eng = engine or get_engine()
        with eng.connect() as conn:
            conn.execute(select(1))
        return True
    except (SQLAlchemyError, ValueError) as e:
        logger.warning("Database connection check failed: %s", e)
        return False


# Users
users = Table(
    'app_users',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('email', String(254), nullable=False, unique=True),
    Column('first_name', String(100), nullable=True),
    Column('last_name', String(100), nullable=True),
    Column('role', String(20), nullable=False, server_default='user'),
    Column('is_admin', Boolean, nullable=False, server_default='false'),
    # Lookup hint only; ownership is subscriptions.user_id
    Column('active_subscription_id', String(36), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_app_users_created_at', 'created_at'),
)


# Subscriptions: several rows per user over time (reactivation inserts)
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(36), ForeignKey('app_users.id', ondelete='CASCADE'), nullable=False),
    Column('plan', String(20), nullable=False),
    Column('status', String(20), nullable=False),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('trial_ends_at', DateTime(timezone=True), nullable=True),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('cancel_reason', Text, nullable=True),
    Column('auto_renew', Boolean, nullable=False, server_default='true'),
    Column('payment_info', JSON, nullable=False),
    Column('payment_history', JSON, nullable=False),
    Column('features', JSON, nullable=False),
    Column('usage_stats', JSON, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    # Current-subscription lookup: (user_id, status, end_date)
    Index('idx_subscriptions_user_status_end', 'user_id', 'status', 'end_date'),
    Index('idx_subscriptions_plan_status', 'plan', 'status'),
)


def _owned_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column('id', String(36), primary_key=True),
        Column('user_id', String(36), ForeignKey('app_users.id', ondelete='CASCADE'), nullable=False),
        Column('subscription_id', String(36), nullable=True),
        Column('data', JSON, nullable=False),
        Column('created_at', DateTime(timezone=True), nullable=False),
        # Counting pattern: (user_id, created_at) for lifetime and rolling windows
        Index(f'idx_{name}_user_created', 'user_id', 'created_at'),
    )


trips = _owned_table('trips')
ai_interactions = _owned_table('ai_interactions')
favorites = _owned_table('favorites')
payments = _owned_table('payments')


# One row per (user, resource kind); bumping `version` serializes reservations
quota_guards = Table(
    'quota_guards',
    metadata,
    Column('user_id', String(36), ForeignKey('app_users.id', ondelete='CASCADE'), nullable=False),
    Column('kind', String(50), nullable=False),
    Column('version', Integer, nullable=False, server_default='0'),
    Column('updated_at', DateTime(timezone=True), nullable=True),
    PrimaryKeyConstraint('user_id', 'kind', name='pk_quota_guards'),
)
