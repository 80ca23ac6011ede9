"""Database module: async SQLAlchemy engine, sessions and ORM models."""

from .connection import (
    close_database,
    dialect_insert,
    get_async_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_sqlalchemy_engine,
)
from .orm import Base, EngineWeight, SystemAdaptation, TradeOutcomeRecord


__all__ = [
    "Base",
    "EngineWeight",
    "SystemAdaptation",
    "TradeOutcomeRecord",
    "close_database",
    "dialect_insert",
    "get_async_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_sqlalchemy_engine",
]
