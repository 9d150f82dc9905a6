"""
cache/store.py -- TTL-aware key/value cache contract and in-memory backend.

Every stateful component (client registry, user registry, token cache,
pending authorizations) is built over a Cache. Backends are interchangeable:
MemoryCache here, SQLCache in cache/sql.py.

Each cache instance holds exactly one value type, described by its Codec.
Values cross the cache boundary as codec-encoded text, so callers always get
a fresh copy back and a wrong value type is rejected at put() time rather
than discovered at get() time.

Usage:
    users = MemoryCache(dataclass_codec(User))
    users.put("alice", User(...))
    users.put_until(expiry, "bob", User(...))
    users.get("alice")        # -> User, or raises NotFound / Expired
    users.delete("alice")     # raises NotFound if absent
    users.keys()              # sorted live keys

Expiry semantics: get() on an entry whose expiry has passed evicts the entry
and raises Expired. Eviction is permanent, so the next get() raises NotFound.
"""

from __future__ import annotations

import dataclasses
import json
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

V = TypeVar("V")

Clock = Callable[[], datetime]

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CacheError(Exception):
    """Base class for cache faults."""


class NotFound(CacheError):
    """The key never existed, or was already removed."""


class Expired(CacheError):
    """The key existed but its expiry has passed. The entry has been evicted.

    value carries the stale value so callers can clean up related state.
    """

    def __init__(self, key: str, value: Any = None) -> None:
        super().__init__(key)
        self.key = key
        self.value = value


class StorageError(CacheError):
    """The backing store failed (I/O, database). Opaque to callers."""


class InvalidValueType(TypeError):
    """A value of the wrong type was handed to a typed cache."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Codecs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Codec(Generic[V]):
    """Text serialization for one cache value type."""

    value_type: type
    dumps: Callable[[Any], str]
    loads: Callable[[str], Any]

    def encode(self, value: V) -> str:
        if not isinstance(value, self.value_type):
            raise InvalidValueType(f"expected {self.value_type.__name__}, got {type(value).__name__}")
        return self.dumps(value)

    def decode(self, raw: str) -> V:
        return self.loads(raw)


STRING_CODEC: Codec[str] = Codec(str, json.dumps, json.loads)
STRING_LIST_CODEC: Codec[list] = Codec(list, json.dumps, json.loads)


def dataclass_codec(cls: type) -> Codec:
    """Build a JSON codec for a flat dataclass whose constructor accepts its own asdict()."""
    return Codec(
        cls,
        lambda value: json.dumps(dataclasses.asdict(value)),
        lambda raw: cls(**json.loads(raw)),
    )


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class Cache(ABC, Generic[V]):
    """TTL cache contract.

    Backends implement raw text storage (_write / _read / _remove / keys);
    expiry and typing are handled here so every backend behaves the same.
    Backends serialize their own mutations.
    """

    def __init__(self, codec: Codec[V], clock: Optional[Clock] = None) -> None:
        self.codec = codec
        self._clock: Clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def put(self, key: str, value: V) -> None:
        """Store value under key with no expiry."""
        self._write(key, self.codec.encode(value), None)

    def put_until(self, expire: datetime, key: str, value: V) -> None:
        """Store value under key until the absolute time `expire`."""
        self._write(key, self.codec.encode(value), expire)

    def get(self, key: str) -> V:
        """Return the value for key. Raises NotFound or Expired."""
        raw, expire = self._read(key)
        value = self.codec.decode(raw)
        if self._is_expired(expire):
            self._remove(key)
            raise Expired(key, value)
        return value

    def delete(self, key: str) -> None:
        """Remove key. Raises NotFound if absent."""
        if not self._remove(key):
            raise NotFound(key)

    def discard(self, key: str) -> bool:
        """Remove key if present. Returns whether anything was removed."""
        return self._remove(key)

    @abstractmethod
    def keys(self) -> list[str]:
        """Return the sorted list of keys whose entries have not expired."""

    @abstractmethod
    def _write(self, key: str, raw: str, expire: Optional[datetime]) -> None: ...

    @abstractmethod
    def _read(self, key: str) -> tuple[str, Optional[datetime]]:
        """Return (raw, expire) for key. Raises NotFound."""

    @abstractmethod
    def _remove(self, key: str) -> bool:
        """Remove key, returning False if it was absent."""

    def _is_expired(self, expire: Optional[datetime]) -> bool:
        return expire is not None and expire < self.now()


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


@dataclass
class _Entry:
    raw: str
    expire: Optional[datetime]


class MemoryCache(Cache[V]):
    """Dict-backed cache. State lives on the instance, never at module level."""

    def __init__(self, codec: Codec[V], clock: Optional[Clock] = None) -> None:
        super().__init__(codec, clock)
        self._data: dict[str, _Entry] = {}
        self._lock = threading.RLock()

    def _write(self, key: str, raw: str, expire: Optional[datetime]) -> None:
        with self._lock:
            self._data[key] = _Entry(raw, expire)

    def _read(self, key: str) -> tuple[str, Optional[datetime]]:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            raise NotFound(key)
        return entry.raw, entry.expire

    def _remove(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(k for k, e in self._data.items() if not self._is_expired(e.expire))
