"""Read access to the incident store.

All intervals are half-open `[start, end)` unless a method says otherwise;
either bound may be None for an open side. Incidents without an attributed
actor never leave this module.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from socpatterns.db import IncidentRow, ThreatActorRow
from socpatterns.schemas import Incident
from socpatterns.utils.time import as_utc


class SourceError(RuntimeError):
    """Transient failure reading from the incident store."""


class IncidentSource:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _filtered(
        self,
        stmt,
        start: Optional[datetime],
        end: Optional[datetime],
        actor_id: Optional[str],
        start_inclusive: bool = True,
    ):
        stmt = stmt.where(col(IncidentRow.threat_actor_id).is_not(None))
        if start is not None:
            start = as_utc(start)
            if start_inclusive:
                stmt = stmt.where(IncidentRow.discovered_at >= start)
            else:
                stmt = stmt.where(IncidentRow.discovered_at > start)
        if end is not None:
            stmt = stmt.where(IncidentRow.discovered_at < as_utc(end))
        if actor_id is not None:
            stmt = stmt.where(IncidentRow.threat_actor_id == actor_id)
        return stmt

    def query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        latest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[Incident]:
        stmt = self._filtered(select(IncidentRow.threat_actor_id, IncidentRow.discovered_at), start, end, actor_id)
        if latest_first:
            stmt = stmt.order_by(col(IncidentRow.discovered_at).desc())
        else:
            stmt = stmt.order_by(col(IncidentRow.discovered_at).asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with Session(self._engine) as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as e:
            raise SourceError(f"incident query failed: {e}") from e
        return [Incident(actor_id=a, discovered_at=as_utc(ts)) for a, ts in rows]

    def latest(self, actor_id: str, before: Optional[datetime] = None) -> Optional[Incident]:
        """Most recent incident for `actor_id` strictly before `before` (or ever)."""
        rows = self.query(end=before, actor_id=actor_id, latest_first=True, limit=1)
        return rows[0] if rows else None

    def exists_between(self, actor_id: str, after: datetime, before: datetime) -> bool:
        """Any incident for `actor_id` strictly inside the open interval (after, before)."""
        stmt = self._filtered(select(IncidentRow.id), after, before, actor_id, start_inclusive=False).limit(1)
        try:
            with Session(self._engine) as session:
                return session.exec(stmt).first() is not None
        except SQLAlchemyError as e:
            raise SourceError(f"incident existence check failed: {e}") from e

    def count(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> int:
        stmt = self._filtered(select(func.count(IncidentRow.id)), start, end, None)
        try:
            with Session(self._engine) as session:
                return int(session.exec(stmt).one())
        except SQLAlchemyError as e:
            raise SourceError(f"incident count failed: {e}") from e

    def distinct_actors(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        scan_limit: Optional[int] = None,
    ) -> List[str]:
        """Distinct actor ids among incidents in the interval, most recently active first.

        With `scan_limit`, only that many incidents (newest first) are looked
        at, so the result can miss actors whose activity is older.
        """
        incidents = self.query(start=start, end=end, latest_first=True, limit=scan_limit)
        seen: Dict[str, None] = {}
        for inc in incidents:
            seen.setdefault(inc.actor_id, None)
        return list(seen)

    def actor_names(self, actor_ids: Iterable[str]) -> Dict[str, str]:
        ids = sorted(set(actor_ids))
        if not ids:
            return {}
        stmt = select(ThreatActorRow).where(col(ThreatActorRow.id).in_(ids))
        try:
            with Session(self._engine) as session:
                return {row.id: row.name for row in session.exec(stmt)}
        except SQLAlchemyError as e:
            raise SourceError(f"actor name lookup failed: {e}") from e
