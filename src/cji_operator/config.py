"""Operator settings read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .constants import MANAGER_NAME

ENV_METRICS_PORT = "CJI_METRICS_PORT"
ENV_FIELD_MANAGER = "CJI_FIELD_MANAGER"
ENV_RETRY_DELAY = "CJI_RETRY_DELAY"
ENV_MAX_WORKERS = "CJI_MAX_WORKERS"
ENV_REQUEST_TIMEOUT = "CJI_REQUEST_TIMEOUT"
ENV_TEST_PULL_SECRET = "CJI_TEST_PULL_SECRET"
ENV_LOG_LEVEL = "CJI_LOG_LEVEL"


def _env_number(name: str, default: float, cast: type = float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class OperatorSettings:
    metrics_port: int = 8080
    field_manager: str = MANAGER_NAME
    retry_delay: float = 1.0
    max_workers: int = 4
    request_timeout: float = 30.0
    test_pull_secret: str = "quay-cloudservices-pull"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> OperatorSettings:
        """Build settings from ``CJI_*`` environment variables, falling back to defaults."""
        return cls(
            metrics_port=int(_env_number(ENV_METRICS_PORT, cls.metrics_port, int)),
            field_manager=os.getenv(ENV_FIELD_MANAGER) or cls.field_manager,
            retry_delay=float(_env_number(ENV_RETRY_DELAY, cls.retry_delay)),
            max_workers=int(_env_number(ENV_MAX_WORKERS, cls.max_workers, int)),
            request_timeout=float(_env_number(ENV_REQUEST_TIMEOUT, cls.request_timeout)),
            test_pull_secret=os.getenv(ENV_TEST_PULL_SECRET) or cls.test_pull_secret,
            log_level=(os.getenv(ENV_LOG_LEVEL) or cls.log_level).upper(),
        )
