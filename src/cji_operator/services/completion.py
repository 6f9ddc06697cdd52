"""Decide whether every job a request invoked has finished."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ..constants import JOB_FINISHED_CONDITIONS


def normalize_invoked(invoked: Iterable[str] | None) -> list[str]:
    """Treat an unset job list as empty and drop duplicates, keeping order."""
    return list(dict.fromkeys(invoked or []))


def job_finished(job: dict[str, Any]) -> bool:
    """A Job is finished once its first condition is Complete or Failed.

    The conditions list only appears when the Job succeeded or exhausted its
    backoff limit, so a Job without conditions is still running.
    """
    conditions = (job.get("status") or {}).get("conditions") or []
    return bool(conditions) and conditions[0].get("type") in JOB_FINISHED_CONDITIONS


def count_finished(live_jobs: Iterable[dict[str, Any]], invoked: Iterable[str]) -> int:
    invoked_names = set(invoked)
    return sum(
        1
        for job in live_jobs
        if (job.get("metadata") or {}).get("name") in invoked_names and job_finished(job)
    )


def evaluate(
    live_jobs: Iterable[dict[str, Any]], invoked: Iterable[str] | None, requested_count: int
) -> bool:
    invoked_names = normalize_invoked(invoked)
    if not invoked_names:
        return False

    finished = count_finished(live_jobs, invoked_names)
    if requested_count > 0:
        return finished == requested_count
    # Only the test job was eligible, and there is exactly one of it
    return finished > 0
