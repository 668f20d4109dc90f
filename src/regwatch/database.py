"""SQLite persistence for scored events, snapshots, status and feedback using SQLModel."""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlmodel import Field, Session, SQLModel, create_engine, delete, select

from .models import Feedback, FeedbackIn, PersistedEvent, ScoredEvent
from .settings import get_db_path
from .time_utils import Clock, utc_now

DEFAULT_RETENTION_LIMIT = 5000


class EventRecord(SQLModel, table=True):
    seq: int | None = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)
    archived_at: str = Field(index=True)
    source: str = Field(index=True)
    source_id: str
    category: str = Field(index=True)
    score: int
    title: str
    payload_json: str


class FeedbackRecord(SQLModel, table=True):
    id: str = Field(primary_key=True)
    event_id: str = Field(index=True)
    helpful: bool
    created_at: str


class SourceStatusRecord(SQLModel, table=True):
    source: str = Field(primary_key=True)
    last_success: str | None = None
    last_error: str | None = None
    last_digest_sent: str | None = None
    error_times_json: str = "[]"


class SnapshotRecord(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value_json: str
    updated_at: str


@dataclass
class EventFilter:
    category: str | None = None
    source: str | None = None
    since: datetime | None = None
    limit: int = 50


def build_engine(path: Path | None = None):
    db_path = path or get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{db_path}")


def init_db(path: Path | None = None):
    engine = build_engine(path)
    SQLModel.metadata.create_all(engine)
    return engine


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class EventStore:
    """Append-only event archive plus small key/value tables.

    Writes are serialized with a lock so concurrent source runs sharing a
    store do not interleave retention trims.
    """

    def __init__(
        self,
        path: Path | None = None,
        retention_limit: int = DEFAULT_RETENTION_LIMIT,
        clock: Clock = utc_now,
    ) -> None:
        self.engine = init_db(path)
        self.retention_limit = retention_limit
        self._clock = clock
        self._lock = threading.Lock()

    # Events

    def append(self, event: ScoredEvent) -> PersistedEvent:
        persisted = PersistedEvent(
            **event.model_dump(),
            id=uuid.uuid4().hex,
            archived_at=self._clock().astimezone(timezone.utc),
        )
        record = EventRecord(
            id=persisted.id,
            archived_at=persisted.archived_at.isoformat(),
            source=persisted.source,
            source_id=persisted.source_id,
            category=persisted.category,
            score=persisted.score,
            title=persisted.title,
            payload_json=persisted.model_dump_json(),
        )
        with self._lock, Session(self.engine) as session:
            session.add(record)
            session.commit()
            self._trim(session)
        return persisted

    def _trim(self, session: Session) -> None:
        cutoff = session.exec(
            select(EventRecord.seq).order_by(EventRecord.seq.desc()).offset(self.retention_limit).limit(1)
        ).first()
        if cutoff is None:
            return
        session.execute(delete(EventRecord).where(EventRecord.seq <= cutoff))
        session.commit()

    def query(self, flt: EventFilter | None = None) -> list[PersistedEvent]:
        flt = flt or EventFilter()
        statement = select(EventRecord)
        if flt.category:
            statement = statement.where(EventRecord.category == flt.category)
        if flt.source:
            statement = statement.where(EventRecord.source == flt.source)
        if flt.since:
            statement = statement.where(EventRecord.archived_at >= flt.since.astimezone(timezone.utc).isoformat())
        statement = statement.order_by(EventRecord.archived_at.desc(), EventRecord.seq.desc()).limit(flt.limit)
        with Session(self.engine) as session:
            rows = list(session.exec(statement))
        return [PersistedEvent.model_validate_json(row.payload_json) for row in rows]

    def get(self, event_id: str) -> PersistedEvent | None:
        with Session(self.engine) as session:
            row = session.exec(select(EventRecord).where(EventRecord.id == event_id)).first()
        if row is None:
            return None
        return PersistedEvent.model_validate_json(row.payload_json)

    def count(self) -> int:
        with Session(self.engine) as session:
            return len(list(session.exec(select(EventRecord.seq))))

    # Snapshots

    def load_snapshot(self, key: str) -> Any | None:
        with Session(self.engine) as session:
            row = session.get(SnapshotRecord, key)
        if row is None:
            return None
        return json.loads(row.value_json)

    def save_snapshot(self, key: str, value: Any) -> None:
        now = self._clock().isoformat()
        with self._lock, Session(self.engine) as session:
            row = session.get(SnapshotRecord, key)
            if row is None:
                row = SnapshotRecord(key=key, value_json=json.dumps(value), updated_at=now)
            else:
                row.value_json = json.dumps(value)
                row.updated_at = now
            session.add(row)
            session.commit()

    # Source status

    def upsert_status(self, source: str, **fields: Any) -> dict:
        with self._lock, Session(self.engine) as session:
            row = session.get(SourceStatusRecord, source) or SourceStatusRecord(source=source)
            for name in ("last_success", "last_error", "last_digest_sent"):
                if name in fields:
                    setattr(row, name, _iso(fields[name]))
            if "error_times" in fields:
                row.error_times_json = json.dumps([ts.isoformat() for ts in fields["error_times"]])
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._status_row(row)

    def list_status(self) -> list[dict]:
        with Session(self.engine) as session:
            rows = list(session.exec(select(SourceStatusRecord).order_by(SourceStatusRecord.source)))
        return [self._status_row(row) for row in rows]

    @staticmethod
    def _status_row(row: SourceStatusRecord) -> dict:
        return {
            "source": row.source,
            "last_success": _dt(row.last_success),
            "last_error": _dt(row.last_error),
            "last_digest_sent": _dt(row.last_digest_sent),
            "error_times": [datetime.fromisoformat(ts) for ts in json.loads(row.error_times_json or "[]")],
        }

    # Feedback

    def add_feedback(self, feedback: FeedbackIn) -> Feedback:
        stored = Feedback(
            **feedback.model_dump(),
            id=uuid.uuid4().hex,
            created_at=self._clock(),
        )
        with self._lock, Session(self.engine) as session:
            session.add(
                FeedbackRecord(
                    id=stored.id,
                    event_id=stored.event_id,
                    helpful=stored.helpful,
                    created_at=stored.created_at.isoformat(),
                )
            )
            session.commit()
        return stored

    def feedback_for(self, event_id: str) -> list[Feedback]:
        with Session(self.engine) as session:
            rows = list(
                session.exec(
                    select(FeedbackRecord)
                    .where(FeedbackRecord.event_id == event_id)
                    .order_by(FeedbackRecord.created_at)
                )
            )
        return [
            Feedback(id=r.id, event_id=r.event_id, helpful=r.helpful, created_at=datetime.fromisoformat(r.created_at))
            for r in rows
        ]
