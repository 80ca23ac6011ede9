"""Core infrastructure: settings, logging, exceptions."""

from .config import settings
from .exceptions import (
    AppException,
    JobError,
    PersistenceUnavailableError,
)


__all__ = [
    "AppException",
    "JobError",
    "PersistenceUnavailableError",
    "settings",
]
