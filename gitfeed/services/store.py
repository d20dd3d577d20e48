"""
Key-value store backing the activity cache.

Entries live in namespaced buckets of one SQLite table. A single local
process owns the file, so no locking is done here.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from sqlalchemy import (
    Column,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

metadata = MetaData()

kv_entries = Table(
    "kv_entries",
    metadata,
    Column("bucket", String(32), primary_key=True),
    Column("key", String(512), primary_key=True),
    Column("value", Text, nullable=False),
)


class KeyValueStore:
    """Bucketed string store on SQLAlchemy Core."""

    def __init__(self, engine: Engine):
        self.engine = engine
        metadata.create_all(engine)

    def put(self, bucket: str, key: str, value: str) -> None:
        stmt = sqlite_insert(kv_entries).values(bucket=bucket, key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[kv_entries.c.bucket, kv_entries.c.key],
            set_={"value": stmt.excluded.value},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def get(self, bucket: str, key: str) -> Optional[str]:
        stmt = select(kv_entries.c.value).where(
            kv_entries.c.bucket == bucket, kv_entries.c.key == key
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def scan_prefix(self, bucket: str, prefix: str) -> List[Tuple[str, str]]:
        """Return (key, value) pairs whose key starts with ``prefix``, ordered by key."""
        stmt = (
            select(kv_entries.c.key, kv_entries.c.value)
            .where(kv_entries.c.bucket == bucket)
            .where(kv_entries.c.key.startswith(prefix, autoescape=True))
            .order_by(kv_entries.c.key)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        # LIKE ignores case in SQLite; keep exact prefix semantics
        return [(row.key, row.value) for row in rows if row.key.startswith(prefix)]

    def scan(self, bucket: str) -> List[Tuple[str, str]]:
        stmt = (
            select(kv_entries.c.key, kv_entries.c.value)
            .where(kv_entries.c.bucket == bucket)
            .order_by(kv_entries.c.key)
        )
        with self.engine.connect() as conn:
            return [(row.key, row.value) for row in conn.execute(stmt)]

    def count(self, bucket: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(kv_entries)
        if bucket is not None:
            stmt = stmt.where(kv_entries.c.bucket == bucket)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one()

    def clear(self, bucket: Optional[str] = None) -> None:
        stmt = delete(kv_entries)
        if bucket is not None:
            stmt = stmt.where(kv_entries.c.bucket == bucket)
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def close(self) -> None:
        self.engine.dispose()


def open_store(path: Union[str, Path]) -> KeyValueStore:
    """Open (creating if needed) the SQLite file at ``path``."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Opening cache store at {path}")
    return KeyValueStore(create_engine(f"sqlite:///{path}"))


def memory_store() -> KeyValueStore:
    """Private in-memory store, used by tests and when no file is wanted."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return KeyValueStore(engine)
