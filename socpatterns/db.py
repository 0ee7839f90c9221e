from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import Field, SQLModel, create_engine

from socpatterns.config import SETTINGS


class ThreatActorRow(SQLModel, table=True):
    """Display names for actors; incidents reference them by id."""

    __tablename__ = "threat_actors"

    id: str = Field(primary_key=True)
    name: str


class IncidentRow(SQLModel, table=True):
    """Incident as written by upstream ingestion. Read-only for detection."""

    __tablename__ = "incidents"

    id: Optional[int] = Field(default=None, primary_key=True)
    incident_id: str = Field(index=True, unique=True)
    threat_actor_id: Optional[str] = Field(default=None, index=True)
    discovered_at: datetime = Field(index=True)
    title: str = Field(default="")


class DetectedPatternRow(SQLModel, table=True):
    """One row per pattern_key; the key embeds the run-day."""

    __tablename__ = "detected_patterns"

    id: Optional[int] = Field(default=None, primary_key=True)
    pattern_type: str = Field(index=True)  # reactivated_actor, dormant_actor, activity_spike
    pattern_key: str = Field(index=True, unique=True)
    data_json: str
    confidence: float = Field(index=True)
    first_detected: datetime
    last_detected: datetime = Field(index=True)
    detection_count: int = Field(default=1)
    status: str = Field(default="active", index=True)  # active, resolved, dismissed


def make_engine(url: str | None = None, timeout: float | None = None) -> Engine:
    """Engine for the incident/pattern database.

    `timeout` bounds how long a statement waits on a locked SQLite file before
    failing with OperationalError.
    """
    url = url or SETTINGS.database_url
    timeout = SETTINGS.store_timeout_seconds if timeout is None else timeout
    connect_args = {"timeout": timeout} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def ping(engine: Engine) -> None:
    """Raise if the database cannot be reached at all."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
