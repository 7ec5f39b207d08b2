"""
Record Store
============

Durable per-file state, kept in a local SQLite database through SQLAlchemy.

Each remote file has one row keyed by its stable remote id. Rows are created
and refreshed by the synchronizer (`upsert`) and moved to a terminal status
by the batch collector (`mark_processed` / `mark_error`). Rows are never
deleted.

Every public method opens its own short session, so a single `RecordStore`
can be shared between threads. Database errors are not caught here.
"""

from __future__ import annotations

import datetime as dt
import enum
import json
import threading
from pathlib import Path
from typing import Iterator

import structlog
from sqlalchemy import DateTime, Enum, String, Text, case, create_engine, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import ArticleMetadata, FileRecord, FileStatus

log = structlog.get_logger(__name__)

_ONE_TICK = dt.timedelta(microseconds=1)


class Base(DeclarativeBase):
    pass


class FileRow(Base):
    __tablename__ = "files"

    remote_id: Mapped[str] = mapped_column(String, primary_key=True)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    path: Mapped[str | None] = mapped_column(Text)
    content_hash: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[FileStatus] = mapped_column(
        Enum(FileStatus, native_enum=False, length=16), nullable=False
    )
    title: Mapped[str | None] = mapped_column(Text)
    authors: Mapped[str | None] = mapped_column(Text)  # JSON array
    summary: Mapped[str | None] = mapped_column(Text)
    target_paths: Mapped[str | None] = mapped_column(Text, index=True)  # JSON array
    last_error: Mapped[str | None] = mapped_column(Text)
    # Naive UTC; SQLite has no timezone support.
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)


class UpsertOutcome(enum.Enum):
    INSERTED = "inserted"
    UNCHANGED = "unchanged"
    RESET = "reset"


def _loads_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(item) for item in value] if isinstance(value, list) else []


def _to_record(row: FileRow) -> FileRecord:
    return FileRecord(
        remote_id=row.remote_id,
        name=row.file_name,
        path=row.path,
        content_hash=row.content_hash,
        status=row.status,
        title=row.title,
        authors=_loads_list(row.authors),
        summary=row.summary,
        target_paths=_loads_list(row.target_paths),
        last_error=row.last_error,
        updated_at=row.updated_at.replace(tzinfo=dt.timezone.utc),
    )


class RecordStore:
    """SQLite-backed store of `FileRecord` rows."""

    def __init__(self, url: str):
        engine_kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every thread sees its own empty DB.
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        self._clock_lock = threading.Lock()
        with self._sessions() as session:
            latest = session.scalar(select(func.max(FileRow.updated_at)))
        self._last_stamp: dt.datetime | None = latest

    @classmethod
    def for_work_dir(cls, work_dir: str | Path) -> "RecordStore":
        db_path = Path(work_dir).resolve() / "state.db"
        return cls(f"sqlite:///{db_path.as_posix()}")

    def close(self) -> None:
        self.engine.dispose()

    def _now(self) -> dt.datetime:
        """Return a naive UTC timestamp strictly later than the previous one."""
        with self._clock_lock:
            now = dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + _ONE_TICK
            self._last_stamp = now
            return now

    def _session(self) -> Session:
        return self._sessions()

    # --- Synchronizer side ---

    def upsert(
        self,
        remote_id: str,
        name: str,
        content_hash: str,
        path: str | None = None,
    ) -> UpsertOutcome:
        """
        Insert a new record as PENDING, or refresh an existing one.

        An unchanged hash only refreshes name, path and timestamp. A changed
        hash also resets the status to PENDING and clears ``last_error``,
        whatever the previous status was.
        """
        table = FileRow.__table__
        stmt = sqlite_insert(table).values(
            remote_id=remote_id,
            file_name=name,
            path=path,
            content_hash=content_hash,
            status=FileStatus.PENDING,
            updated_at=self._now(),
        )
        hash_changed = table.c.content_hash != stmt.excluded.content_hash
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.remote_id],
            set_={
                "file_name": stmt.excluded.file_name,
                "path": stmt.excluded.path,
                "content_hash": stmt.excluded.content_hash,
                "status": case(
                    (hash_changed, FileStatus.PENDING.name), else_=table.c.status
                ),
                "last_error": case((hash_changed, None), else_=table.c.last_error),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self._session() as session, session.begin():
            previous_hash = session.scalar(
                select(FileRow.content_hash).where(FileRow.remote_id == remote_id)
            )
            session.execute(stmt)

        if previous_hash is None:
            return UpsertOutcome.INSERTED
        if previous_hash == content_hash:
            return UpsertOutcome.UNCHANGED
        return UpsertOutcome.RESET

    # --- Scanner side ---

    def load_pending(self, limit: int) -> list[FileRecord]:
        """Return up to ``limit`` PENDING records, most recently updated first."""
        if limit <= 0:
            return []
        query = (
            select(FileRow)
            .where(FileRow.status == FileStatus.PENDING)
            .order_by(FileRow.updated_at.desc(), FileRow.remote_id)
            .limit(limit)
        )
        with self._session() as session:
            return [_to_record(row) for row in session.scalars(query)]

    # --- Collector side ---

    def set_status(self, remote_id: str, status: FileStatus) -> None:
        """Overwrite the status; ``last_error`` survives only for ERROR."""
        values: dict = {"status": status, "updated_at": self._now()}
        if status is not FileStatus.ERROR:
            values["last_error"] = None
        self._update(remote_id, values)

    def mark_processed(
        self, remote_id: str, metadata: ArticleMetadata, target_paths: list[str]
    ) -> None:
        self._update(
            remote_id,
            {
                "status": FileStatus.PROCESSED,
                "title": metadata.title,
                "authors": json.dumps(metadata.authors, ensure_ascii=False),
                "summary": metadata.summary,
                "target_paths": json.dumps(target_paths, ensure_ascii=False),
                "last_error": None,
                "updated_at": self._now(),
            },
        )

    def mark_error(self, remote_id: str, error: str) -> None:
        self._update(
            remote_id,
            {
                "status": FileStatus.ERROR,
                "last_error": error,
                "updated_at": self._now(),
            },
        )

    def _update(self, remote_id: str, values: dict) -> None:
        stmt = update(FileRow).where(FileRow.remote_id == remote_id).values(**values)
        with self._session() as session, session.begin():
            result = session.execute(stmt)
        if result.rowcount == 0:
            log.warning("Status update matched no record", remote_id=remote_id)

    # --- Queries ---

    def get(self, remote_id: str) -> FileRecord | None:
        with self._session() as session:
            row = session.get(FileRow, remote_id)
            return _to_record(row) if row is not None else None

    def find_by_target_prefix(self, pattern: str) -> list[FileRecord]:
        """Records whose stored target paths contain ``pattern``, by title."""
        query = (
            select(FileRow)
            .where(FileRow.target_paths.contains(pattern, autoescape=True))
            .order_by(FileRow.title, FileRow.remote_id)
        )
        with self._session() as session:
            return [_to_record(row) for row in session.scalars(query)]

    def iter_records(self, status: FileStatus | None = None) -> Iterator[FileRecord]:
        query = select(FileRow).order_by(FileRow.remote_id)
        if status is not None:
            query = query.where(FileRow.status == status)
        with self._session() as session:
            records = [_to_record(row) for row in session.scalars(query)]
        yield from records

    def count_by_status(self) -> dict[FileStatus, int]:
        counts = {status: 0 for status in FileStatus}
        query = select(FileRow.status, func.count()).group_by(FileRow.status)
        with self._session() as session:
            for status, count in session.execute(query):
                counts[status] = count
        return counts
