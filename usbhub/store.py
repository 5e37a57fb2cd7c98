"""SQLAlchemy-backed persistence for connected clients and USB events.

Every public store method runs in its own session and transaction, so each
call is atomic on its own and callers never hold a transaction open across
awaits. Writes on one :class:`Database` are serialized with a thread lock;
when the engine shares a single connection (in-memory SQLite) reads take the
same lock so they never observe another thread's open transaction.
"""
from __future__ import annotations

import contextlib
import logging
import threading
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from usbhub.config import DEFAULT_EVENTS_LIMIT, MAX_EVENTS_LIMIT
from usbhub.models.db_models import Base, ConnectedClientRow, UsbEventRow
from usbhub.models.records import ConnectedClient, UsbEvent

logger = logging.getLogger(__name__)


def _is_sqlite_memory(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


class Database:
    """Engine and session factory shared by :class:`ClientStore` and :class:`EventStore`."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        engine_kwargs = {}
        if make_url(url).get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self._shared_connection = _is_sqlite_memory(url)
        if self._shared_connection:
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, echo=echo, **engine_kwargs)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._write_lock = threading.RLock()

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextlib.contextmanager
    def transaction(self, *, write: bool = True) -> Iterator[Session]:
        """Yield a session inside one transaction; commit on exit, roll back on error."""
        lock = self._write_lock if (write or self._shared_connection) else contextlib.nullcontext()
        with lock:
            with self._sessions.begin() as session:
                yield session


class ClientStore:
    """Durable table of connected client identities."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def upsert(self, client: ConnectedClient) -> ConnectedClient:
        """Insert or replace the row for ``client.connection_id``; latest call wins."""
        with self._db.transaction() as session:
            session.execute(
                delete(ConnectedClientRow).where(
                    ConnectedClientRow.connection_id == client.connection_id
                )
            )
            row = ConnectedClientRow.from_record(client)
            session.add(row)
            session.flush()
            return row.to_record()

    def remove(self, connection_id: str) -> bool:
        with self._db.transaction() as session:
            result = session.execute(
                delete(ConnectedClientRow).where(ConnectedClientRow.connection_id == connection_id)
            )
            return bool(result.rowcount)

    def list(self) -> List[ConnectedClient]:
        """Return every row, oldest connection first."""
        stmt = select(ConnectedClientRow).order_by(
            ConnectedClientRow.connected_at.asc(),
            ConnectedClientRow.id.asc(),
        )
        with self._db.transaction(write=False) as session:
            return [row.to_record() for row in session.scalars(stmt)]

    def clear(self) -> int:
        with self._db.transaction() as session:
            result = session.execute(delete(ConnectedClientRow))
            return int(result.rowcount or 0)


class EventStore:
    """Append-only log of normalized USB events."""

    def __init__(
        self,
        database: Database,
        *,
        default_limit: int = DEFAULT_EVENTS_LIMIT,
        max_limit: int = MAX_EVENTS_LIMIT,
    ) -> None:
        self._db = database
        self.max_limit = max(1, max_limit)
        self.default_limit = min(max(1, default_limit), self.max_limit)

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None or limit <= 0:
            return self.default_limit
        return min(limit, self.max_limit)

    def append_batch(self, events: Iterable[Optional[UsbEvent]]) -> List[UsbEvent]:
        """Persist ``events`` in one transaction and return them with ids assigned.

        Either every row is stored or, when any insert fails, none are and
        the database error propagates.
        """
        batch = [event for event in (events or ()) if event is not None]
        if not batch:
            return []
        with self._db.transaction() as session:
            rows = [UsbEventRow.from_record(event) for event in batch]
            session.add_all(rows)
            session.flush()
            stored = [row.to_record() for row in rows]
        logger.debug("Appended %d USB events (ids %s..%s)", len(stored), stored[0].id, stored[-1].id)
        return stored

    def recent(self, limit: Optional[int] = None) -> List[UsbEvent]:
        """Return the most recently inserted events, newest first."""
        stmt = select(UsbEventRow).order_by(UsbEventRow.id.desc()).limit(self.clamp_limit(limit))
        with self._db.transaction(write=False) as session:
            return [row.to_record() for row in session.scalars(stmt)]

    def delete_by_id(self, event_id: int) -> bool:
        with self._db.transaction() as session:
            result = session.execute(delete(UsbEventRow).where(UsbEventRow.id == event_id))
            return bool(result.rowcount)

    def count(self) -> int:
        with self._db.transaction(write=False) as session:
            return int(session.scalar(select(func.count()).select_from(UsbEventRow)) or 0)


__all__ = ["Database", "ClientStore", "EventStore"]
