"""SQLAlchemy ORM models for the weight and adaptation stores.

Tables:
- engine_weights: learned per-source weight with win/loss counters
- system_adaptations: global risk parameters nudged by the learning loop
- trade_outcomes: durable outcome queue; processed_at marks consumption

Usage:
    from conviction.database.orm import EngineWeight
    from conviction.database.connection import get_session

    async with get_session() as session:
        weight = await session.get(EngineWeight, "fsi")
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, plain JSON elsewhere
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# LEARNING STORES
# =============================================================================


class EngineWeight(Base):
    """Learned weight for one signal source."""
    __tablename__ = "engine_weights"

    source_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("weight >= 0.1 AND weight <= 2.0", name="weight_range"),
        CheckConstraint("wins >= 0 AND losses >= 0", name="counts_non_negative"),
    )


class SystemAdaptation(Base):
    """Global tunable parameter (stop padding, conviction threshold, allocation cap)."""
    __tablename__ = "system_adaptations"

    param_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TradeOutcomeRecord(Base):
    """A closed trade waiting for (or done with) learning-loop consumption."""
    __tablename__ = "trade_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Caller-supplied dedupe key; resubmitting the same close is a no-op
    outcome_key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    ticker: Mapped[str] = mapped_column(String(20), nullable=False)
    pnl_percent: Mapped[float] = mapped_column(Float, nullable=False)
    contributing_source_ids: Mapped[list[str]] = mapped_column(JsonType, nullable=False)
    sector: Mapped[str | None] = mapped_column(String(100))
    predicted_confidence: Mapped[int | None] = mapped_column(Integer)
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_trade_outcomes_pending", "processed_at", "id"),
        Index("idx_trade_outcomes_sector", "sector"),
        Index("idx_trade_outcomes_closed_at", "closed_at"),
    )
