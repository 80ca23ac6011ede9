"""API request/response schemas."""

from .common import ErrorResponse, HealthResponse
from .diagnostics import AdaptationResponse, EngineWeightResponse
from .evaluation import EvaluationRequest, SignalInput
from .outcomes import OutcomeAccepted


__all__ = [
    "AdaptationResponse",
    "EngineWeightResponse",
    "ErrorResponse",
    "EvaluationRequest",
    "HealthResponse",
    "OutcomeAccepted",
    "SignalInput",
]
