"""Usage counters: total requests served and total files converted.

Counts live in an external store (SQL table or Redis) and are never cached in
process memory, so several API instances can share them.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import redis
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from webpix import config as app_config
from webpix import db
from webpix.exceptions import StoreError

logger = logging.getLogger("webpix.counters")


class CounterStore(Protocol):
    def increment(self, key: str, delta: int = 1) -> None:
        ...

    def get(self, key: str) -> Optional[int]:
        ...


class SqlCounterStore:
    """Counters in the usage_counters table. Increments are single atomic upserts."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine or db.get_engine()

    def increment(self, key: str, delta: int = 1) -> None:
        engine = self.engine
        try:
            with db.session(engine) as conn:
                db.increment_counter(conn, db.dialect_kind(str(engine.url)), key, delta)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not increment counter {key}: {e}") from e

    def get(self, key: str) -> Optional[int]:
        try:
            with self.engine.connect() as conn:
                return db.read_counter(conn, key)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read counter {key}: {e}") from e


class RedisCounterStore:
    """Counters as plain Redis integer keys (INCRBY / GET)."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(redis.Redis.from_url(url))

    def increment(self, key: str, delta: int = 1) -> None:
        try:
            self._client.incrby(key, delta)
        except redis.RedisError as e:
            raise StoreError(f"Could not increment counter {key}: {e}") from e

    def get(self, key: str) -> Optional[int]:
        try:
            value = self._client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"Could not read counter {key}: {e}") from e
        return int(value) if value is not None else None


@dataclass(frozen=True)
class UsageTotals:
    total_requests: Optional[int]
    total_files: Optional[int]


class UsageCounters:
    def __init__(
        self,
        store: CounterStore,
        requests_key: str = app_config.REQUESTS_COUNTER_KEY,
        files_key: str = app_config.FILES_COUNTER_KEY,
    ):
        self.store = store
        self.requests_key = requests_key
        self.files_key = files_key

    def increment_usage(self, request_count: int = 1, file_count: int = 0) -> None:
        """Record a successful batch. Not idempotent: calling twice counts twice."""
        self.store.increment(self.requests_key, request_count)
        self.store.increment(self.files_key, file_count)
        logger.debug("Usage incremented: requests +%s, files +%s", request_count, file_count)

    def read_totals(self) -> UsageTotals:
        """Current totals; a field is None when the counter was never written."""
        return UsageTotals(
            total_requests=self.store.get(self.requests_key),
            total_files=self.store.get(self.files_key),
        )


def create_counter_store() -> CounterStore:
    if app_config.REDIS_URL:
        logger.info("Usage counters stored in Redis")
        return RedisCounterStore.from_url(app_config.REDIS_URL)
    logger.info("Usage counters stored in SQL (%s)", db.dialect_kind(app_config.DATABASE_URL))
    return SqlCounterStore()


# Singleton
_usage_counters: Optional[UsageCounters] = None


def get_usage_counters() -> UsageCounters:
    global _usage_counters
    if _usage_counters is None:
        _usage_counters = UsageCounters(create_counter_store())
    return _usage_counters
