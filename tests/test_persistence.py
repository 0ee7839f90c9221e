"""Idempotent reconciliation of detected patterns with the store."""

import json
from datetime import date, timedelta

import pytest
from sqlmodel import Session, select

from conftest import NOW
from socpatterns.db import DetectedPatternRow
from socpatterns.persistence.patterns import PatternStore, PatternStoreError, persist_patterns
from socpatterns.schemas import ActivitySpikeKey, DetectedPattern, DormantActorKey, ReactivatedActorKey


def _pattern(actor="apt", confidence=0.5, days=90, run_date=date(2026, 3, 1)):
    return DetectedPattern(
        key=ReactivatedActorKey(actor_id=actor, run_date=run_date),
        confidence=confidence,
        description=f"{actor} reactivated after {days} days of dormancy",
        data={"actor_id": actor, "dormant_days": days},
    )


def _rows(engine):
    with Session(engine) as session:
        return session.exec(select(DetectedPatternRow).order_by(DetectedPatternRow.pattern_key)).all()


class TestPersistPatterns:
    def test_first_run_inserts(self, engine, store):
        patterns = [_pattern("a"), _pattern("b")]
        result = persist_patterns(store, patterns, NOW)
        assert (result.inserted, result.updated, result.failed) == (2, 0, 0)

        rows = _rows(engine)
        assert [r.pattern_key for r in rows] == ["reactivated_actor:a:2026-03-01", "reactivated_actor:b:2026-03-01"]
        assert all(r.detection_count == 1 and r.status == "active" for r in rows)
        assert json.loads(rows[0].data_json)["description"] == "a reactivated after 90 days of dormancy"

    def test_rerun_same_day_updates_without_duplicates(self, engine, store):
        persist_patterns(store, [_pattern("a"), _pattern("b")], NOW)
        later = NOW + timedelta(hours=3)
        result = persist_patterns(store, [_pattern("a", confidence=0.6, days=108), _pattern("b")], later)
        assert (result.inserted, result.updated) == (0, 2)

        rows = {r.pattern_key: r for r in _rows(engine)}
        assert len(rows) == 2
        a = rows["reactivated_actor:a:2026-03-01"]
        assert a.detection_count == 2
        assert a.confidence == pytest.approx(0.6)
        assert json.loads(a.data_json)["dormant_days"] == 108
        assert a.first_detected == NOW.replace(tzinfo=None)
        assert a.last_detected == later.replace(tzinfo=None)

    def test_next_day_starts_a_new_row(self, engine, store):
        persist_patterns(store, [_pattern("a")], NOW)
        tomorrow = NOW + timedelta(days=1)
        result = persist_patterns(store, [_pattern("a", run_date=date(2026, 3, 2))], tomorrow)
        assert result.inserted == 1
        assert len(_rows(engine)) == 2

    def test_duplicate_keys_in_one_batch_collapse(self, engine, store):
        result = persist_patterns(store, [_pattern("a", confidence=0.5), _pattern("a", confidence=0.7)], NOW)
        assert result.inserted == 1
        (row,) = _rows(engine)
        assert row.confidence == pytest.approx(0.7)

    def test_mixed_types_share_an_actor(self, engine, store):
        day = date(2026, 3, 1)
        patterns = [
            _pattern("apt"),
            DetectedPattern(key=DormantActorKey(actor_id="apt", run_date=day), confidence=0.7, description="d"),
            DetectedPattern(key=ActivitySpikeKey(direction="increase", run_date=day), confidence=0.3, description="s"),
        ]
        assert persist_patterns(store, patterns, NOW).inserted == 3

    def test_empty_input(self, store):
        result = persist_patterns(store, [], NOW)
        assert result.attempted == 0

    def test_row_with_zero_count_is_still_updated(self, engine, store):
        with Session(engine) as session:
            session.add(
                DetectedPatternRow(
                    pattern_type="reactivated_actor",
                    pattern_key="reactivated_actor:a:2026-03-01",
                    data_json="{}",
                    confidence=0.1,
                    first_detected=NOW,
                    last_detected=NOW,
                    detection_count=0,
                )
            )
            session.commit()

        result = persist_patterns(store, [_pattern("a")], NOW)
        assert (result.inserted, result.updated, result.failed) == (0, 1, 0)
        assert _rows(engine)[0].detection_count == 1


class TestPersistFailures:
    def test_insert_failure_does_not_block_updates(self, engine, store, monkeypatch):
        persist_patterns(store, [_pattern("known")], NOW)

        def broken_insert(patterns, now):
            raise PatternStoreError("disk I/O error")

        monkeypatch.setattr(store, "insert_batch", broken_insert)
        result = persist_patterns(store, [_pattern("known"), _pattern("new-1"), _pattern("new-2")], NOW)
        assert (result.inserted, result.updated, result.failed) == (0, 1, 2)
        assert _rows(engine)[0].detection_count == 2

    def test_update_failures_are_counted_per_row(self, engine, store, monkeypatch):
        persist_patterns(store, [_pattern("a"), _pattern("b")], NOW)
        real_update = store.update
        calls = []

        def flaky_update(pattern_id, fields):
            calls.append(pattern_id)
            if len(calls) == 1:
                raise PatternStoreError("locked")
            real_update(pattern_id, fields)

        monkeypatch.setattr(store, "update", flaky_update)
        result = persist_patterns(store, [_pattern("a"), _pattern("b")], NOW)
        assert (result.updated, result.failed) == (1, 1)

    def test_unreadable_store_reports_everything_failed(self, bare_engine):
        result = persist_patterns(PatternStore(bare_engine), [_pattern("a"), _pattern("b")], NOW)
        assert (result.inserted, result.updated, result.failed) == (0, 0, 2)

    def test_store_get_today_filters_by_type(self, store):
        persist_patterns(store, [_pattern("a")], NOW)
        assert len(store.get_today(NOW, pattern_type="reactivated_actor")) == 1
        assert store.get_today(NOW, pattern_type="dormant_actor") == []
