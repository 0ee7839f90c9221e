from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from socpatterns.config import Settings
from socpatterns.detection.temporal import DETECTORS
from socpatterns.persistence.patterns import PatternStore, PersistResult, persist_patterns
from socpatterns.schemas import DetectedPattern
from socpatterns.sources.incidents import IncidentSource
from socpatterns.utils.time import as_utc, to_iso_utc

logger = structlog.get_logger(__name__)

Detector = Callable[[IncidentSource, datetime, Settings], List[DetectedPattern]]


@dataclass(frozen=True)
class RunReport:
    now: datetime
    patterns: List[DetectedPattern]
    persist: PersistResult
    detector_failures: Dict[str, str] = field(default_factory=dict)

    def by_type(self) -> Dict[str, List[DetectedPattern]]:
        out: Dict[str, List[DetectedPattern]] = {}
        for p in self.patterns:
            out.setdefault(p.pattern_type, []).append(p)
        return out


def run_detectors(
    source: IncidentSource,
    now: datetime,
    settings: Settings,
    detectors: Optional[Dict[str, Detector]] = None,
) -> Tuple[List[DetectedPattern], Dict[str, str]]:
    """Run every detector against the same `now` and concatenate the output.

    Transient read failures are already absorbed inside each detector. Anything
    that still escapes, a ValidationError from a malformed pattern or a plain
    bug, drops that detector's output and the others still count.
    """
    detectors = DETECTORS if detectors is None else detectors
    patterns: List[DetectedPattern] = []
    failures: Dict[str, str] = {}
    for name, detect in detectors.items():
        log = logger.bind(detector=name)
        try:
            found = detect(source, now, settings)
        except ValidationError as e:
            failures[name] = f"malformed pattern: {e.error_count()} validation error(s)"
            log.error("detector_built_invalid_pattern", error=str(e), error_kind="structural")
            continue
        except Exception as e:
            failures[name] = f"{type(e).__name__}: {e}"
            log.exception("detector_crashed", error=str(e), error_kind="structural")
            continue
        patterns.extend(found)
    return patterns, failures


def run_detection(
    source: IncidentSource,
    store: Optional[PatternStore],
    now: datetime,
    settings: Settings,
    detectors: Optional[Dict[str, Detector]] = None,
) -> RunReport:
    """One full pass: detect, then reconcile with the store (skipped when `store` is None)."""
    now = as_utc(now)
    logger.info(
        "detection_run_started",
        now=to_iso_utc(now),
        dormancy_days=settings.dormancy_threshold_days,
        reactivation_window_days=settings.reactivation_window_days,
    )
    patterns, failures = run_detectors(source, now, settings, detectors)

    persist = PersistResult()
    if store is not None and patterns:
        persist = persist_patterns(store, patterns, now)

    logger.info(
        "detection_run_finished",
        patterns=len(patterns),
        inserted=persist.inserted,
        updated=persist.updated,
        failed=persist.failed,
    )
    return RunReport(now=now, patterns=patterns, persist=persist, detector_failures=failures)
