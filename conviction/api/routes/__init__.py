"""API route modules."""

from . import diagnostics, evaluation, health, outcomes


__all__ = ["diagnostics", "evaluation", "health", "outcomes"]
