"""Background jobs for the learning loop."""

from .registry import (
    get_job,
    list_job_names,
    register_job,
)
from .executor import execute_job


__all__ = [
    "execute_job",
    "get_job",
    "list_job_names",
    "register_job",
]
