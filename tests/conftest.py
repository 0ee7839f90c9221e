"""Shared fixtures: a throwaway SQLite store per test and a fixed run clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path
from typing import Callable, Iterator, Optional

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session

from socpatterns.config import Settings
from socpatterns.db import IncidentRow, ThreatActorRow, init_db, make_engine
from socpatterns.persistence.patterns import PatternStore
from socpatterns.sources.incidents import IncidentSource

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

AddIncident = Callable[..., None]


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'patterns_test.db'}"


@pytest.fixture
def engine(db_url: str) -> Iterator[Engine]:
    eng = make_engine(db_url, timeout=5.0)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def bare_engine(tmp_path: Path) -> Iterator[Engine]:
    """Reachable database without any tables: every query fails."""
    eng = make_engine(f"sqlite:///{tmp_path / 'empty.db'}", timeout=1.0)
    yield eng
    eng.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def source(engine: Engine) -> IncidentSource:
    return IncidentSource(engine)


@pytest.fixture
def store(engine: Engine) -> PatternStore:
    return PatternStore(engine)


@pytest.fixture
def add_incident(engine: Engine) -> AddIncident:
    """add_incident(actor_id, at) writes one incident; `at` is a datetime."""
    seq = count(1)

    def _add(actor_id: Optional[str], at: datetime, title: str = "") -> None:
        with Session(engine) as session:
            session.add(
                IncidentRow(
                    incident_id=f"inc-{next(seq)}",
                    threat_actor_id=actor_id,
                    discovered_at=at,
                    title=title,
                )
            )
            session.commit()

    return _add


@pytest.fixture
def add_actor(engine: Engine) -> Callable[[str, str], None]:
    def _add(actor_id: str, name: str) -> None:
        with Session(engine) as session:
            session.add(ThreatActorRow(id=actor_id, name=name))
            session.commit()

    return _add


def days_ago(n: float, now: datetime = NOW) -> datetime:
    return now - timedelta(days=n)
