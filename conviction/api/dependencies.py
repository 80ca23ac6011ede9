"""API dependencies for the learning store and state provider."""

from __future__ import annotations

from fastapi import Depends

from conviction.engine.orchestrator import ConvictionEngine
from conviction.engine.state import LearningStore, StateProvider
from conviction.engine.stores import get_learning_store, get_state_provider


__all__ = ["get_engine", "get_state", "get_store"]


def get_store() -> LearningStore:
    """Process-wide learning store (overridden in tests)."""
    return get_learning_store()


def get_state() -> StateProvider:
    """Process-wide cached state provider (overridden in tests)."""
    return get_state_provider()


def get_engine(state: StateProvider = Depends(get_state)) -> ConvictionEngine:
    # Built per request so an overridden state provider takes effect
    return ConvictionEngine(state_provider=state)
