from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from socpatterns.db import DetectedPatternRow
from socpatterns.schemas import DetectedPattern, StoredPattern
from socpatterns.utils.time import as_utc, day_bounds

logger = structlog.get_logger(__name__)


class PatternStoreError(RuntimeError):
    """Transient failure reading or writing detected patterns."""


class PatternStore:
    """Keyed-record store over the `detected_patterns` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_today(self, now: datetime, pattern_type: Optional[str] = None) -> List[StoredPattern]:
        start, end = day_bounds(now)
        stmt = select(DetectedPatternRow).where(
            DetectedPatternRow.last_detected >= start,
            DetectedPatternRow.last_detected < end,
        )
        if pattern_type is not None:
            stmt = stmt.where(DetectedPatternRow.pattern_type == pattern_type)
        try:
            with Session(self._engine) as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as e:
            raise PatternStoreError(f"pattern lookup failed: {e}") from e
        return [StoredPattern(id=r.id, pattern_key=r.pattern_key, detection_count=r.detection_count) for r in rows]

    def insert_batch(self, patterns: List[DetectedPattern], now: datetime) -> int:
        """Insert all rows in one transaction; nothing is written if any row fails."""
        if not patterns:
            return 0
        now = as_utc(now)
        rows = [
            DetectedPatternRow(
                pattern_type=p.pattern_type,
                pattern_key=p.pattern_key,
                data_json=json.dumps(p.payload()),
                confidence=p.confidence,
                first_detected=now,
                last_detected=now,
                detection_count=1,
                status="active",
            )
            for p in patterns
        ]
        try:
            with Session(self._engine) as session:
                session.add_all(rows)
                session.commit()
        except SQLAlchemyError as e:
            raise PatternStoreError(f"pattern insert failed: {e}") from e
        return len(rows)

    def update(self, pattern_id: int, fields: Dict[str, Any]) -> None:
        try:
            with Session(self._engine) as session:
                row = session.get(DetectedPatternRow, pattern_id)
                if row is None:
                    raise PatternStoreError(f"pattern {pattern_id} no longer exists")
                for name, value in fields.items():
                    setattr(row, name, value)
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            raise PatternStoreError(f"pattern update failed: {e}") from e


@dataclass(frozen=True)
class PersistResult:
    inserted: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.inserted + self.updated + self.failed


def persist_patterns(store: PatternStore, patterns: List[DetectedPattern], now: datetime) -> PersistResult:
    """Reconcile today's detections against what the store already holds.

    New keys are inserted in one batch with detection_count=1; known keys get
    their payload, confidence and last_detected refreshed and detection_count
    bumped. Insert and updates fail independently; rerunning the job for the
    same day is how a partial write is repaired.
    """
    if not patterns:
        return PersistResult()

    # later detections of the same key within a run win
    unique: Dict[Any, DetectedPattern] = {}
    for p in patterns:
        unique[p.key] = p

    try:
        existing = {s.pattern_key: s for s in store.get_today(now)}
    except PatternStoreError as e:
        logger.error("pattern_reconcile_failed", error=str(e), error_kind="transient", candidates=len(unique))
        return PersistResult(failed=len(unique))

    to_insert: List[DetectedPattern] = []
    to_update: List[Tuple[StoredPattern, DetectedPattern]] = []
    for p in unique.values():
        stored = existing.get(p.pattern_key)
        if stored is None:
            to_insert.append(p)
        else:
            to_update.append((stored, p))

    inserted = 0
    failed = 0
    if to_insert:
        try:
            inserted = store.insert_batch(to_insert, now)
        except PatternStoreError as e:
            failed += len(to_insert)
            logger.error("pattern_insert_failed", error=str(e), error_kind="transient", rows=len(to_insert))

    updated = 0
    for stored, p in to_update:
        try:
            store.update(
                stored.id,
                {
                    "data_json": json.dumps(p.payload()),
                    "confidence": p.confidence,
                    "last_detected": as_utc(now),
                    "detection_count": stored.detection_count + 1,
                },
            )
            updated += 1
        except PatternStoreError as e:
            failed += 1
            logger.error(
                "pattern_update_failed", pattern_key=p.pattern_key, error=str(e), error_kind="transient"
            )

    logger.info("patterns_persisted", inserted=inserted, updated=updated, failed=failed)
    return PersistResult(inserted=inserted, updated=updated, failed=failed)
