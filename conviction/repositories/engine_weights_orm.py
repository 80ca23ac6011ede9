"""Engine weight repository using SQLAlchemy ORM.

Every write is a single INSERT ... ON CONFLICT DO UPDATE whose SET clause
computes the nudged weight from the stored row and clamps it in SQL, so
concurrent outcomes touching the same source compose instead of losing
updates.

Usage:
    from conviction.repositories import engine_weights_orm

    async with get_session() as session:
        await engine_weights_orm.nudge_weight(session, "fsi", win=True)
        await session.commit()
"""

from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conviction.core.logging import get_logger
from conviction.database.connection import dialect_insert
from conviction.database.orm import EngineWeight
from conviction.engine.config import DEFAULT_LEARNING_CONFIG, LearningConfig

logger = get_logger("repositories.engine_weights_orm")


def _clamped(expr, lower: float, upper: float):
    return case((expr > upper, upper), (expr < lower, lower), else_=expr)


async def list_weights(session: AsyncSession) -> list[EngineWeight]:
    """All learned weights ordered by source id."""
    result = await session.execute(select(EngineWeight).order_by(EngineWeight.source_id))
    return list(result.scalars().all())


async def get_weight(session: AsyncSession, source_id: str) -> EngineWeight | None:
    """Get the stored weight row for one source."""
    result = await session.execute(
        select(EngineWeight).where(EngineWeight.source_id == source_id)
    )
    return result.scalar_one_or_none()


async def nudge_weight(
    session: AsyncSession,
    source_id: str,
    win: bool,
    config: LearningConfig = DEFAULT_LEARNING_CONFIG,
) -> None:
    """Multiply a source's weight by the win/loss factor and bump its counter.

    A source seen for the first time starts from ``config.default_weight``
    and receives the same nudge. Does not commit; the caller owns the
    transaction.
    """
    factor = config.win_multiplier if win else config.loss_multiplier
    initial = min(config.max_weight, max(config.min_weight, config.default_weight * factor))

    stmt = dialect_insert(session, EngineWeight).values(
        source_id=source_id,
        weight=initial,
        wins=1 if win else 0,
        losses=0 if win else 1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["source_id"],
        set_={
            "weight": _clamped(
                EngineWeight.weight * factor, config.min_weight, config.max_weight
            ),
            "wins": EngineWeight.wins + (1 if win else 0),
            "losses": EngineWeight.losses + (0 if win else 1),
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)
    logger.debug(f"Nudged weight for {source_id} ({'win' if win else 'loss'})")
