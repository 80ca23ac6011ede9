"""Job execution with error handling."""

from __future__ import annotations

import inspect
import time
from typing import Any

from conviction.core.exceptions import AppException, JobError
from conviction.core.logging import get_logger

from .registry import get_job


logger = get_logger("jobs.executor")


async def execute_job(name: str, *args: Any, **kwargs: Any) -> str:
    """
    Execute a job by name.

    Args:
        name: Job name
        *args, **kwargs: Passed to the job function

    Returns:
        Job result message

    Raises:
        JobError: If the job is unknown or fails unexpectedly. Application
            errors (e.g. PersistenceUnavailableError) propagate unchanged so
            the Celery task can retry on them.
    """
    job_func = get_job(name)
    if job_func is None:
        raise JobError(message=f"Unknown job: {name}", error_code="UNKNOWN_JOB")

    start_time = time.monotonic()

    try:
        if inspect.iscoroutinefunction(job_func):
            result = await job_func(*args, **kwargs)
        else:
            result = job_func(*args, **kwargs)

        duration = time.monotonic() - start_time
        message = str(result) if result else "Completed"
        logger.info(f"Job {name} executed in {duration:.2f}s: {message}")
        return message

    except AppException:
        duration = time.monotonic() - start_time
        logger.warning(f"Job {name} failed after {duration:.2f}s", exc_info=True)
        raise

    except Exception as e:
        duration = time.monotonic() - start_time
        logger.exception(f"Job {name} failed after {duration:.2f}s")
        raise JobError(
            message=f"Job execution failed: {e!s}",
            error_code="JOB_EXECUTION_FAILED",
            details={"job_name": name, "duration_seconds": duration},
        ) from e
