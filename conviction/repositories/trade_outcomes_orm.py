"""Trade outcome repository using SQLAlchemy ORM.

The table doubles as the durable outcome queue: a row is written once on
submission and claimed once by the learning loop by stamping
``processed_at``.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from conviction.core.logging import get_logger
from conviction.database.connection import dialect_insert
from conviction.database.orm import TradeOutcomeRecord

logger = get_logger("repositories.trade_outcomes_orm")


async def submit_outcome(
    session: AsyncSession,
    outcome_key: str,
    ticker: str,
    pnl_percent: float,
    contributing_source_ids: list[str],
    closed_at: datetime,
    sector: str | None = None,
    predicted_confidence: int | None = None,
) -> tuple[int, bool]:
    """Store an outcome unless its key already exists.

    Returns:
        Tuple of (outcome id, created). ``created`` is False for a resubmission.
    """
    stmt = dialect_insert(session, TradeOutcomeRecord).values(
        outcome_key=outcome_key,
        ticker=ticker.upper(),
        pnl_percent=pnl_percent,
        contributing_source_ids=contributing_source_ids,
        sector=sector,
        predicted_confidence=predicted_confidence,
        closed_at=closed_at,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["outcome_key"])
    result = await session.execute(stmt)
    created = bool(result.rowcount)

    outcome_id = await session.scalar(
        select(TradeOutcomeRecord.id).where(TradeOutcomeRecord.outcome_key == outcome_key)
    )
    if not created:
        logger.info(f"Duplicate outcome submission {outcome_key} ignored")
    return outcome_id, created


async def get_outcome(session: AsyncSession, outcome_id: int) -> TradeOutcomeRecord | None:
    result = await session.execute(
        select(TradeOutcomeRecord).where(TradeOutcomeRecord.id == outcome_id)
    )
    return result.scalar_one_or_none()


async def claim_outcome(session: AsyncSession, outcome_id: int) -> bool:
    """Mark an outcome processed if nobody has yet.

    Must run in the same transaction as the weight/parameter upserts so a
    rollback releases the claim. Returns False when already processed.
    """
    result = await session.execute(
        update(TradeOutcomeRecord)
        .where(
            TradeOutcomeRecord.id == outcome_id,
            TradeOutcomeRecord.processed_at.is_(None),
        )
        .values(processed_at=func.now())
    )
    return result.rowcount == 1


async def pending_outcome_ids(session: AsyncSession, limit: int = 200) -> list[int]:
    """Ids of unprocessed outcomes, oldest first."""
    result = await session.execute(
        select(TradeOutcomeRecord.id)
        .where(TradeOutcomeRecord.processed_at.is_(None))
        .order_by(TradeOutcomeRecord.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def sector_performance(
    session: AsyncSession, since: datetime | None = None
) -> dict[str, tuple[int, int, float]]:
    """Win/total/average-pnl per sector over processed outcomes.

    Returns:
        Dict of sector -> (wins, total, avg_pnl)
    """
    stmt = (
        select(
            TradeOutcomeRecord.sector,
            func.sum(case((TradeOutcomeRecord.pnl_percent > 0, 1), else_=0)).label("wins"),
            func.count().label("total"),
            func.avg(TradeOutcomeRecord.pnl_percent).label("avg_pnl"),
        )
        .where(
            TradeOutcomeRecord.sector.is_not(None),
            TradeOutcomeRecord.processed_at.is_not(None),
        )
        .group_by(TradeOutcomeRecord.sector)
    )
    if since is not None:
        stmt = stmt.where(TradeOutcomeRecord.closed_at >= since)

    result = await session.execute(stmt)
    return {
        row.sector: (int(row.wins or 0), int(row.total), float(row.avg_pnl or 0.0))
        for row in result.all()
    }


async def calibration_samples(
    session: AsyncSession, limit: int = 50
) -> list[tuple[int, bool]]:
    """Most recent (predicted_confidence, won) pairs from processed outcomes."""
    result = await session.execute(
        select(TradeOutcomeRecord.predicted_confidence, TradeOutcomeRecord.pnl_percent)
        .where(
            TradeOutcomeRecord.processed_at.is_not(None),
            TradeOutcomeRecord.predicted_confidence.is_not(None),
        )
        .order_by(TradeOutcomeRecord.processed_at.desc(), TradeOutcomeRecord.id.desc())
        .limit(limit)
    )
    return [(int(confidence), pnl > 0) for confidence, pnl in result.all()]
