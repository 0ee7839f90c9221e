from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import structlog

from socpatterns.config import Settings
from socpatterns.schemas import (
    ACTIVITY_SPIKE,
    DORMANT_ACTOR,
    REACTIVATED_ACTOR,
    ActivitySpikeKey,
    DetectedPattern,
    DormantActorKey,
    ReactivatedActorKey,
    dormancy_confidence,
    spike_confidence,
)
from socpatterns.sources.incidents import IncidentSource, SourceError
from socpatterns.utils.time import days_between, run_day, to_iso_utc

logger = structlog.get_logger(__name__)


def _names(source: IncidentSource, actor_ids: List[str], detector: str) -> Dict[str, str]:
    try:
        return source.actor_names(actor_ids)
    except SourceError as e:
        # names are cosmetic; fall back to ids
        logger.warning("actor_names_unavailable", detector=detector, error=str(e), error_kind="transient")
        return {}


def detect_reactivated_actors(source: IncidentSource, now: datetime, settings: Settings) -> List[DetectedPattern]:
    """Actors silent for at least the dormancy threshold who showed up again this week.

    An actor qualifies when its most recent incident before the dormancy
    cutoff is followed by nothing until the reactivation cutoff, and that
    silence is at least `dormancy_threshold_days` long.
    """
    threshold = settings.dormancy_threshold_days
    reactivation_cutoff = now - timedelta(days=settings.reactivation_window_days)
    dormancy_cutoff = now - timedelta(days=threshold)

    try:
        recent_ids = source.distinct_actors(start=reactivation_cutoff)
    except SourceError as e:
        logger.warning("detector_query_failed", detector="reactivated_actor", error=str(e), error_kind="transient")
        return []

    if not recent_ids:
        logger.info("no_recent_actors", since=to_iso_utc(reactivation_cutoff))
        return []

    names = _names(source, recent_ids, "reactivated_actor")
    patterns: List[DetectedPattern] = []

    for actor_id in recent_ids:
        try:
            last_prior = source.latest(actor_id, before=dormancy_cutoff)
            if last_prior is None:
                continue  # first sighting, not a comeback
            if last_prior.discovered_at >= reactivation_cutoff:
                continue  # threshold shorter than the window: still inside the recent burst
            if source.exists_between(actor_id, last_prior.discovered_at, reactivation_cutoff):
                continue
        except SourceError as e:
            logger.warning(
                "actor_lookup_failed", detector="reactivated_actor", actor_id=actor_id, error=str(e), error_kind="transient"
            )
            continue

        # reactivation_cutoff is fixed, not "now", so re-check the boundary
        dormant_days = days_between(last_prior.discovered_at, reactivation_cutoff)
        if dormant_days < threshold:
            continue

        name = names.get(actor_id, actor_id)
        patterns.append(
            DetectedPattern(
                key=ReactivatedActorKey(actor_id=actor_id, run_date=run_day(now)),
                confidence=dormancy_confidence(dormant_days, settings.confidence_saturation_days),
                description=f"{name} reactivated after {dormant_days} days of dormancy",
                data={
                    "actor_id": actor_id,
                    "actor_name": name,
                    "dormant_days": dormant_days,
                    "last_seen_before": to_iso_utc(last_prior.discovered_at),
                    "reactivated_on": to_iso_utc(reactivation_cutoff),
                },
            )
        )

    logger.info("reactivated_actors_detected", count=len(patterns), candidates=len(recent_ids))
    return patterns


def detect_dormant_actors(source: IncidentSource, now: datetime, settings: Settings) -> List[DetectedPattern]:
    """Actors seen before the dormancy cutoff and not since."""
    dormancy_cutoff = now - timedelta(days=settings.dormancy_threshold_days)

    try:
        previously_active = source.distinct_actors(end=dormancy_cutoff, scan_limit=settings.dormant_scan_limit)
        recently_active = set(source.distinct_actors(start=dormancy_cutoff))
    except SourceError as e:
        logger.warning("detector_query_failed", detector="dormant_actor", error=str(e), error_kind="transient")
        return []

    dormant_ids = [a for a in previously_active if a not in recently_active]
    candidates = dormant_ids[: settings.dormant_candidate_limit]
    if len(dormant_ids) > len(candidates):
        logger.info("dormant_candidates_capped", found=len(dormant_ids), kept=len(candidates))

    names = _names(source, candidates, "dormant_actor")
    patterns: List[DetectedPattern] = []

    for actor_id in candidates:
        try:
            last_seen = source.latest(actor_id)
        except SourceError as e:
            logger.warning(
                "actor_lookup_failed", detector="dormant_actor", actor_id=actor_id, error=str(e), error_kind="transient"
            )
            continue
        if last_seen is None:
            continue

        dormant_days = days_between(last_seen.discovered_at, now)
        name = names.get(actor_id, actor_id)
        patterns.append(
            DetectedPattern(
                key=DormantActorKey(actor_id=actor_id, run_date=run_day(now)),
                confidence=dormancy_confidence(dormant_days, settings.confidence_saturation_days),
                description=f"{name} has been dormant for {dormant_days} days",
                data={
                    "actor_id": actor_id,
                    "actor_name": name,
                    "dormant_days": dormant_days,
                    "last_seen": to_iso_utc(last_seen.discovered_at),
                },
            )
        )

    logger.info("dormant_actors_detected", count=len(patterns), candidates=len(dormant_ids))
    return patterns


def _spike_ratio(recent: int, baseline: int, recent_days: int, baseline_days: int) -> Optional[float]:
    """(recent/recent_days) / (baseline/baseline_days), computed from integer counts so boundary ratios are exact."""
    if baseline == 0:
        return None
    return (recent * baseline_days) / (baseline * recent_days)


def detect_activity_spikes(source: IncidentSource, now: datetime, settings: Settings) -> List[DetectedPattern]:
    """Global surge or drop of the daily incident rate versus the trailing baseline."""
    recent_days = settings.spike_recent_days
    baseline_days = settings.spike_baseline_days
    recent_start = now - timedelta(days=recent_days)
    baseline_start = recent_start - timedelta(days=baseline_days)

    try:
        recent_count = source.count(start=recent_start, end=now)
        baseline_count = source.count(start=baseline_start, end=recent_start)
    except SourceError as e:
        logger.warning("detector_query_failed", detector="activity_spike", error=str(e), error_kind="transient")
        return []

    ratio = _spike_ratio(recent_count, baseline_count, recent_days, baseline_days)
    if ratio is None:
        logger.info("spike_baseline_empty", baseline_start=to_iso_utc(baseline_start))
        return []

    if ratio >= settings.spike_increase_ratio:
        direction = "increase"
        description = f"Activity increased {round((ratio - 1) * 100)}% compared to baseline"
    elif ratio <= settings.spike_decrease_ratio:
        direction = "decrease"
        description = f"Activity decreased {round((1 - ratio) * 100)}% compared to baseline"
    else:
        logger.info("activity_within_normal_range", ratio=round(ratio, 2))
        return []

    recent_rate = recent_count / recent_days
    baseline_rate = baseline_count / baseline_days
    return [
        DetectedPattern(
            key=ActivitySpikeKey(direction=direction, run_date=run_day(now)),
            confidence=spike_confidence(ratio),
            description=description,
            data={
                "direction": direction,
                "recent_avg": round(recent_rate, 1),
                "baseline_avg": round(baseline_rate, 1),
                "ratio": round(ratio, 2),
                "recent_count": recent_count,
                "baseline_count": baseline_count,
            },
        )
    ]


DETECTORS = {
    REACTIVATED_ACTOR: detect_reactivated_actors,
    DORMANT_ACTOR: detect_dormant_actors,
    ACTIVITY_SPIKE: detect_activity_spikes,
}
