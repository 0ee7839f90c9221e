from __future__ import annotations

import argparse
from pathlib import Path
from typing import Dict, List

import structlog
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from socpatterns.config import SETTINGS
from socpatterns.db import IncidentRow, ThreatActorRow, init_db, make_engine
from socpatterns.io.ndjson import NDJSONError, read_ndjson
from socpatterns.logging_config import setup_logging
from socpatterns.utils.time import safe_parse_ts

logger = structlog.get_logger(__name__)


def load_actors(engine: Engine, records: List[Dict]) -> int:
    """Upsert actor display names by id."""
    n = 0
    with Session(engine) as session:
        for rec in records:
            actor_id = rec.get("id")
            name = rec.get("name")
            if not actor_id or not name:
                logger.warning("actor_record_skipped", record=rec)
                continue
            row = session.get(ThreatActorRow, str(actor_id)) or ThreatActorRow(id=str(actor_id), name=str(name))
            row.name = str(name)
            session.add(row)
            n += 1
        session.commit()
    return n


def load_incidents(engine: Engine, records: List[Dict]) -> int:
    """Insert incidents, skipping ones we already have by incident_id."""
    ids = [str(r["incident_id"]) for r in records if r.get("incident_id")]
    if not ids:
        return 0
    with Session(engine) as session:
        existing = set(session.exec(select(IncidentRow.incident_id).where(col(IncidentRow.incident_id).in_(ids))))
        created = 0
        for rec in records:
            incident_id = rec.get("incident_id")
            discovered_at = safe_parse_ts(rec.get("discovered_at"))
            if not incident_id or discovered_at is None:
                logger.warning("incident_record_skipped", incident_id=incident_id, reason="missing id or timestamp")
                continue
            if str(incident_id) in existing:
                continue
            actor_id = rec.get("threat_actor_id")
            session.add(
                IncidentRow(
                    incident_id=str(incident_id),
                    threat_actor_id=str(actor_id) if actor_id else None,
                    discovered_at=discovered_at,
                    title=str(rec.get("title") or ""),
                )
            )
            existing.add(str(incident_id))
            created += 1
        if created:
            session.commit()
    return created


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Load NDJSON incidents (and actor names) into the incident store.")
    p.add_argument("--db", default=SETTINGS.database_url, help="Database URL")
    p.add_argument("--incidents", required=True, help="NDJSON file: incident_id, threat_actor_id, discovered_at, title")
    p.add_argument("--actors", default=None, help="Optional NDJSON file: id, name")
    args = p.parse_args(argv)

    paths = [Path(args.incidents)] + ([Path(args.actors)] if args.actors else [])
    for path in paths:
        if not path.exists():
            print(f"Skip missing: {path}")
            return 1

    setup_logging()
    engine = make_engine(args.db)
    init_db(engine)

    try:
        if args.actors:
            actors_path = Path(args.actors)
            n = load_actors(engine, list(read_ndjson(actors_path)))
            print(f"actors: loaded={n} from {actors_path}")

        incidents_path = Path(args.incidents)
        created = load_incidents(engine, list(read_ndjson(incidents_path)))
    except NDJSONError as e:
        print(f"Bad input: {e}")
        return 1
    finally:
        engine.dispose()
    print(f"incidents: ingested={created} from {incidents_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
