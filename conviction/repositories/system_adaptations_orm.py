"""System adaptation repository using SQLAlchemy ORM.

Global risk parameters (stop-loss padding, conviction threshold, max
allocation cap) keyed by ``param_key``.
"""

from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conviction.core.logging import get_logger
from conviction.database.connection import dialect_insert
from conviction.database.orm import SystemAdaptation
from conviction.engine.config import DEFAULT_ADAPTATIONS

logger = get_logger("repositories.system_adaptations_orm")


async def list_adaptations(session: AsyncSession) -> list[SystemAdaptation]:
    """All adaptation parameters ordered by key."""
    result = await session.execute(
        select(SystemAdaptation).order_by(SystemAdaptation.param_key)
    )
    return list(result.scalars().all())


async def get_adaptation(session: AsyncSession, param_key: str) -> SystemAdaptation | None:
    result = await session.execute(
        select(SystemAdaptation).where(SystemAdaptation.param_key == param_key)
    )
    return result.scalar_one_or_none()


async def seed_defaults(session: AsyncSession) -> None:
    """Insert any missing default parameter; existing values are left alone."""
    for key, (value, description) in DEFAULT_ADAPTATIONS.items():
        stmt = dialect_insert(session, SystemAdaptation).values(
            param_key=key, value=value, description=description
        )
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["param_key"]))


async def adapt_param(
    session: AsyncSession,
    param_key: str,
    factor: float,
    lower: float,
    upper: float,
) -> None:
    """Multiply a parameter by ``factor`` and clamp it to [lower, upper] atomically.

    A missing row is created from its default in ``DEFAULT_ADAPTATIONS``.
    Does not commit.
    """
    default, description = DEFAULT_ADAPTATIONS.get(param_key, (1.0, None))
    initial = min(upper, max(lower, default * factor))
    nudged = SystemAdaptation.value * factor

    stmt = dialect_insert(session, SystemAdaptation).values(
        param_key=param_key, value=initial, description=description
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["param_key"],
        set_={
            "value": case((nudged > upper, upper), (nudged < lower, lower), else_=nudged),
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)
    logger.debug(f"Adapted {param_key} by x{factor}")
