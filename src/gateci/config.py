# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError

DEFAULT_GRACE_SECONDS = 10.0
DEFAULT_REPORT_RETRIES = 3


@dataclass(frozen=True)
class Settings:
    """
    Runtime knobs, read from the environment. CLI flags override them.

    GATECI_MAX_WORKERS     concurrency limit (default: cpu count - 1)
    GATECI_CANCEL_GRACE    seconds a cancelled job gets before it is killed
    GATECI_STATUS_URL      gate status receiver base URL (HTTP reporter)
    GATECI_STATUS_FILE     path to write the gate status JSON to
    GATECI_REPORT_RETRIES  retries per reporter on ReportingFailure
    """
    max_workers: Optional[int] = None
    cancel_grace: float = DEFAULT_GRACE_SECONDS
    status_url: Optional[str] = None
    status_file: Optional[str] = None
    report_retries: int = DEFAULT_REPORT_RETRIES

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        try:
            workers = env.get("GATECI_MAX_WORKERS")
            settings = cls(
                max_workers=int(workers) if workers else None,
                cancel_grace=float(env.get("GATECI_CANCEL_GRACE", DEFAULT_GRACE_SECONDS)),
                status_url=env.get("GATECI_STATUS_URL") or None,
                status_file=env.get("GATECI_STATUS_FILE") or None,
                report_retries=int(env.get("GATECI_REPORT_RETRIES", DEFAULT_REPORT_RETRIES)),
            )
        except ValueError as e:
            raise ConfigurationError("Invalid GATECI_* environment setting", details={"error": str(e)}) from e

        if settings.max_workers is not None and settings.max_workers < 1:
            raise ConfigurationError("GATECI_MAX_WORKERS must be >= 1", details={"got": settings.max_workers})
        if settings.cancel_grace < 0 or settings.report_retries < 0:
            raise ConfigurationError("GATECI_CANCEL_GRACE and GATECI_REPORT_RETRIES must not be negative")
        return settings
