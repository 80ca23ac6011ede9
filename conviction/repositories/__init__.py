"""Data access layer repositories.

Each repository module provides async functions taking an ``AsyncSession``;
the caller owns the transaction so a claim and its upserts commit together.

ORM-based repositories:
- engine_weights_orm: learned per-source weights (atomic clamped nudge)
- system_adaptations_orm: global risk parameters (atomic clamped nudge)
- trade_outcomes_orm: outcome queue, claims and learning aggregates
"""

from . import engine_weights_orm
from . import system_adaptations_orm
from . import trade_outcomes_orm

__all__ = [
    "engine_weights_orm",
    "system_adaptations_orm",
    "trade_outcomes_orm",
]
