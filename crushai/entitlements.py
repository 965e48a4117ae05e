"""
Entitlement storage.

A grant is an idempotent upsert keyed by ``(wallet, item_id)``; that primary key
is the only concurrency guard the payment paths rely on. Concurrent grants for
the same pair race to refresh the provenance signature and never produce a
second row.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import redis
from sqlalchemy.exc import SQLAlchemyError

from crushai.database import Database, init_redis
from crushai.errors import ValidationError
from crushai.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from crushai.models import Entitlement, utc_now

logger = logging.getLogger(__name__)

BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,88}$")

RETRY_ATTEMPTS = 3
RETRY_BASE_SECONDS = 0.12
RETRY_MAX_SECONDS = 1.2


def is_base58ish(value: Any) -> bool:
    return isinstance(value, str) and bool(BASE58_RE.match(value))


def _check_grant(wallet: Any, item_id: Any, tx_signature: Any) -> None:
    if not is_base58ish(wallet):
        raise ValidationError("invalid_wallet", "invalid wallet")
    if not item_id or not isinstance(item_id, str):
        raise ValidationError("invalid_item", "invalid itemId")
    if not is_base58ish(tx_signature):
        raise ValidationError("invalid_signature", "invalid txSignature")


class EntitlementStore(ABC):
    """Durable ``(wallet, item_id) -> provenance`` records."""

    durable = True

    @abstractmethod
    def grant(self, wallet: str, item_id: str, tx_signature: str) -> None:
        ...

    def grant_many(self, wallet: str, item_ids: Iterable[str], tx_signature: str) -> None:
        """Grant each id in turn; every grant is independently idempotent."""
        for item_id in item_ids:
            self.grant(wallet, str(item_id), tx_signature)

    @abstractmethod
    def has(self, wallet: str, item_id: str) -> bool:
        ...

    @abstractmethod
    def list(self, wallet: str) -> List[dict]:
        ...

    def health(self) -> dict:
        return {"status": "healthy", "durable": self.durable}


class SqlEntitlementStore(EntitlementStore):
    def __init__(self, database: Database, sleep: Callable[[float], None] = time.sleep):
        self.database = database
        self._sleep = sleep

    def _upsert(self, session, wallet: str, item_id: str, tx_signature: str) -> None:
        values = {"wallet": wallet, "item_id": item_id, "tx_signature": tx_signature, "created_at": utc_now()}
        dialect = self.database.dialect
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = insert(Entitlement).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Entitlement.wallet, Entitlement.item_id],
                set_={"tx_signature": stmt.excluded.tx_signature},
            )
            session.execute(stmt)
        else:
            session.merge(Entitlement(**values))

    def _with_retry(self, fn: Callable[[], Any]) -> Any:
        attempt = 0
        while True:
            try:
                return fn()
            except SQLAlchemyError as e:
                logger.warning(f"Entitlement write failed (attempt {attempt + 1}/{RETRY_ATTEMPTS}): {e}")
                if attempt + 1 >= RETRY_ATTEMPTS:
                    raise
                self._sleep(min(max(RETRY_BASE_SECONDS * (2**attempt), RETRY_BASE_SECONDS), RETRY_MAX_SECONDS))
                attempt += 1

    def grant(self, wallet: str, item_id: str, tx_signature: str) -> None:
        _check_grant(wallet, item_id, tx_signature)

        def write():
            with self.database.session_scope() as session:
                self._upsert(session, wallet, item_id, tx_signature)

        self._with_retry(write)

    def has(self, wallet: str, item_id: str) -> bool:
        if not is_base58ish(wallet) or not item_id or not isinstance(item_id, str):
            return False
        with self.database.session_scope() as session:
            return session.get(Entitlement, (wallet, item_id)) is not None

    def list(self, wallet: str) -> List[dict]:
        if not is_base58ish(wallet):
            return []
        with self.database.session_scope() as session:
            rows = (
                session.query(Entitlement)
                .filter(Entitlement.wallet == wallet)
                .order_by(Entitlement.created_at, Entitlement.item_id)
                .all()
            )
            return [row.to_dict() for row in rows]

    def health(self) -> dict:
        return {**self.database.health(), "durable": True}


class InMemoryEntitlementStore(EntitlementStore):
    """Non-persistent store: a degraded mode for development and tests."""

    durable = False

    def __init__(self):
        self._rows: Dict[Tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    def grant(self, wallet: str, item_id: str, tx_signature: str) -> None:
        _check_grant(wallet, item_id, tx_signature)
        with self._lock:
            existing = self._rows.get((wallet, item_id))
            created = existing["createdAt"] if existing else utc_now().isoformat()
            self._rows[(wallet, item_id)] = {"itemId": item_id, "txSignature": tx_signature, "createdAt": created}

    def has(self, wallet: str, item_id: str) -> bool:
        with self._lock:
            return (wallet, item_id) in self._rows

    def list(self, wallet: str) -> List[dict]:
        if not is_base58ish(wallet):
            return []
        with self._lock:
            return [dict(row) for (owner, _), row in self._rows.items() if owner == wallet]


@dataclass
class StorageConfig:
    """Concrete storage backends, resolved once at startup."""

    entitlements: EntitlementStore
    kv: KeyValueStore
    database: Optional[Database] = None
    redis_client: Optional[redis.Redis] = None

    @property
    def durable(self) -> bool:
        return self.entitlements.durable

    def close(self) -> None:
        if self.database is not None:
            self.database.close()
        if self.redis_client is not None:
            self.redis_client.close()


def resolve_storage(cfg: Mapping[str, Any]) -> StorageConfig:
    """Pick the entitlement and key-value backends from configuration."""

    database = None
    database_url = cfg.get("DATABASE_URL")
    if database_url:
        database = Database(database_url)
        entitlements: EntitlementStore = SqlEntitlementStore(database)
    else:
        logger.warning("DATABASE_URL not set - entitlements are held in memory and lost on restart")
        entitlements = InMemoryEntitlementStore()

    redis_client = None
    redis_url = cfg.get("REDIS_URL")
    if redis_url:
        redis_client = init_redis(redis_url)
    if redis_client is not None:
        kv: KeyValueStore = RedisKeyValueStore(redis_client)
    else:
        if redis_url:
            logger.warning("Redis unavailable - falling back to in-memory key-value store")
        kv = InMemoryKeyValueStore()

    return StorageConfig(entitlements=entitlements, kv=kv, database=database, redis_client=redis_client)
