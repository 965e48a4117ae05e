"""
Key-value and pub/sub collaborator.

Holds payment reference bindings, completion events and chat cooldowns. Redis
backs it in production; the in-memory store is for tests and single-process
development only.
"""

from __future__ import annotations

import copy
import json
import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


def reference_key(reference: str) -> str:
    return f"pay:ref:{reference}"


def completion_channel(reference: str) -> str:
    return f"pay:{reference}"


def completion_key(reference: str) -> str:
    return f"pay:done:{reference}"


def cooldown_key(wallet: str) -> str:
    return f"chat:cooldown:{wallet}"


class Subscription(ABC):
    """A live subscription to a single channel."""

    @abstractmethod
    def get(self, timeout: float) -> Optional[Any]:
        """Block up to ``timeout`` seconds for the next message."""

    @abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class KeyValueStore(ABC):
    """JSON values with optional expiry plus fire-and-forget pub/sub."""

    backend = "abstract"

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set ``key`` only if absent; ``True`` when this call created it."""

    @abstractmethod
    def publish(self, channel: str, message: Any) -> int:
        ...

    @abstractmethod
    def subscribe(self, channel: str) -> Subscription:
        ...

    def health(self) -> dict:
        return {"status": "healthy", "backend": self.backend}


# ============================================================================
# Redis
# ============================================================================


class _RedisSubscription(Subscription):
    def __init__(self, pubsub: "redis.client.PubSub", channel: str):
        self._pubsub = pubsub
        self._channel = channel

    def get(self, timeout: float) -> Optional[Any]:
        message = self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if not message or message.get("type") != "message":
            return None
        data = message.get("data")
        try:
            return json.loads(data)
        except (TypeError, ValueError):
            return {"ok": True}

    def close(self) -> None:
        try:
            self._pubsub.unsubscribe(self._channel)
        finally:
            self._pubsub.close()


class RedisKeyValueStore(KeyValueStore):
    backend = "redis"

    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding non-JSON value at {key}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.client.set(key, json.dumps(value), ex=ttl)

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return bool(self.client.set(key, json.dumps(value), ex=ttl, nx=True))

    def publish(self, channel: str, message: Any) -> int:
        return int(self.client.publish(channel, json.dumps(message)))

    def subscribe(self, channel: str) -> Subscription:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(channel)
        return _RedisSubscription(pubsub, channel)

    def health(self) -> dict:
        try:
            self.client.ping()
            return {"status": "healthy", "backend": self.backend}
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return {"status": "unhealthy", "backend": self.backend, "error": str(e)}


# ============================================================================
# In-memory
# ============================================================================


class _MemorySubscription(Subscription):
    def __init__(self, store: "InMemoryKeyValueStore", channel: str):
        self._store = store
        self._channel = channel
        self.queue: "queue.Queue[Any]" = queue.Queue()

    def get(self, timeout: float) -> Optional[Any]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._store._unsubscribe(self._channel, self)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store with TTL expiry. Not shared between workers."""

    backend = "memory"

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._subscribers: Dict[str, List[_MemorySubscription]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key)
            return copy.deepcopy(entry[0]) if entry else None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (copy.deepcopy(value), expires_at)

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (copy.deepcopy(value), expires_at)
            return True

    def publish(self, channel: str, message: Any) -> int:
        with self._lock:
            subscribers = list(self._subscribers.get(channel, ()))
        for subscription in subscribers:
            subscription.queue.put(copy.deepcopy(message))
        return len(subscribers)

    def subscribe(self, channel: str) -> Subscription:
        subscription = _MemorySubscription(self, channel)
        with self._lock:
            self._subscribers.setdefault(channel, []).append(subscription)
        return subscription

    def _unsubscribe(self, channel: str, subscription: _MemorySubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(channel, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(channel, None)
