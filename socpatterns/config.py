from __future__ import annotations

import os
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Settings:
    """Central configuration for a detection run.

    Windows and ratios that the job treats as fixed are plain defaults here;
    only the ones with an env var below are meant to be tuned per deployment.
    """

    database_url: str = "sqlite:///./soc_patterns.db"
    store_timeout_seconds: float = 30.0

    dormancy_threshold_days: int = 90
    reactivation_window_days: int = 7
    confidence_saturation_days: int = 180

    # Spike windows: recent vs trailing baseline, baseline excludes recent
    spike_recent_days: int = 7
    spike_baseline_days: int = 21
    spike_increase_ratio: float = 1.5
    spike_decrease_ratio: float = 0.5

    # Cost bounds for the dormancy scan. Actors that only show up outside the
    # first `dormant_scan_limit` incidents before the cutoff are never seen.
    dormant_scan_limit: int = 500
    dormant_candidate_limit: int = 50

    def with_dormancy_days(self, days: int) -> "Settings":
        if days <= 0:
            raise ValueError(f"dormancy threshold must be positive, got {days}")
        return replace(self, dormancy_threshold_days=days)


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.environ.get(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    return v if v else default


SETTINGS = Settings(
    database_url=_env_str("SOCPATTERNS_DATABASE_URL", "sqlite:///./soc_patterns.db"),
    store_timeout_seconds=_env_float("SOCPATTERNS_STORE_TIMEOUT", 30.0),
    dormancy_threshold_days=_env_int("SOCPATTERNS_DORMANCY_DAYS", 90),
    dormant_scan_limit=_env_int("SOCPATTERNS_DORMANT_SCAN_LIMIT", 500),
    dormant_candidate_limit=_env_int("SOCPATTERNS_DORMANT_CANDIDATE_LIMIT", 50),
)
