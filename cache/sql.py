"""
cache/sql.py -- SQLAlchemy Core backend for the Cache contract.

One table, partitioned by bucket name. Each logical store (pending
authorizations, client tokens, token clients, clients, users) is a SQLCache
bound to its own bucket on a shared Engine, so a deployment has one durable
database file with several named partitions.

Every operation runs in its own transaction (engine.begin()), which
serializes writes per call. There is no transaction spanning two SQLCache
instances -- the token cache is written to tolerate that.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError

from cache.store import Cache, Clock, Codec, NotFound, StorageError, V

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entries = Table(
    "cache_entries",
    _metadata,
    Column("bucket", String(64), primary_key=True),
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("expire", Float),  # POSIX seconds, NULL = never
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure the schema exists.

    For file-backed SQLite URLs the parent directory is created first.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        database = make_url(db_url).database
        if database and database != ":memory:" and not database.startswith("file:"):
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _to_epoch(expire: Optional[datetime]) -> Optional[float]:
    return expire.timestamp() if expire is not None else None


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None


class SQLCache(Cache[V]):
    """Cache bound to one bucket of the cache_entries table."""

    def __init__(self, engine: Engine, bucket: str, codec: Codec[V], clock: Optional[Clock] = None) -> None:
        super().__init__(codec, clock)
        self.engine = engine
        self.bucket = bucket

    def _where(self, key: str):
        return (_entries.c.bucket == self.bucket) & (_entries.c.key == key)

    def _write(self, key: str, raw: str, expire: Optional[datetime]) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(_entries.delete().where(self._where(key)))
                conn.execute(
                    _entries.insert().values(bucket=self.bucket, key=key, value=raw, expire=_to_epoch(expire))
                )
        except SQLAlchemyError as exc:
            raise StorageError(f"write {self.bucket}/{key}: {exc}") from exc

    def _read(self, key: str) -> tuple[str, Optional[datetime]]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_entries.select().where(self._where(key))).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError(f"read {self.bucket}/{key}: {exc}") from exc
        if row is None:
            raise NotFound(key)
        return row.value, _from_epoch(row.expire)

    def _remove(self, key: str) -> bool:
        try:
            with self.engine.begin() as conn:
                return conn.execute(_entries.delete().where(self._where(key))).rowcount > 0
        except SQLAlchemyError as exc:
            raise StorageError(f"delete {self.bucket}/{key}: {exc}") from exc

    def keys(self) -> list[str]:
        now = self.now().timestamp()
        live = _entries.c.expire.is_(None) | (_entries.c.expire >= now)
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _entries.select().where((_entries.c.bucket == self.bucket) & live).order_by(_entries.c.key)
                ).fetchall()
        except SQLAlchemyError as exc:
            raise StorageError(f"keys {self.bucket}: {exc}") from exc
        return [row.key for row in rows]
