from __future__ import annotations

import copy
import fnmatch
import functools
import gzip
import inspect
import math
import os
import pickle
import re
import sys
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from hashlib import blake2b
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Callable, Mapping, ParamSpec, Protocol, TypeVar

import orjson
import redis
from filelock import FileLock

from las import settings
from las.config import Settings
from las.exceptions import CacheLayerError
from las.utils.logger import logger

"""
Multi-level TTL cache for the plugin's server-side services.

Lookups walk three levels, fastest first:
- an in-process entry store with LRU eviction under a byte budget
- an optional object cache (Redis), the `wp_cache_*` analogue
- optional transients: gzip-compressed pickle files written atomically on disk

Hits in a lower level are promoted into the levels above it with the same
expiry, so a value never outlives the TTL it was stored with.
"""

P = ParamSpec("P")
R = TypeVar("R")

DEFAULT_GROUP = "default"
GZIP_COMPRESSION_LEVEL = 5
ATOMIC_WRITE_RETRY_COUNT = 5
ATOMIC_WRITE_RETRY_DELAY = 0.1
GZIP_MAGIC_BYTES = b"\x1f\x8b"
GENERATION_HISTORY = 100
LRU_TARGET_RATIO = 0.8
MAX_FILENAME_BYTES = 255

_MISSING: Any = object()
_KEY_STRIP = re.compile(r"[^a-z0-9_\-]")


# ─────────────────────────── Protocols and Interfaces ───────────────────────────


class Serializer(Protocol):
    """Protocol for object serialization."""

    def serialize(self, obj: Any) -> bytes: ...

    def deserialize(self, data: bytes) -> Any: ...


class CacheLayer(Protocol):
    """A storage level below the in-process store.

    `fetch` returns ``(value, expires_at)`` or None; expiry is judged by the
    manager so every level agrees on one clock.
    """

    name: str

    def fetch(self, key: str) -> tuple[Any, float | None] | None: ...

    def store(self, key: str, value: Any, expires_at: float | None, ttl: int) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def clear(self, prefix: str) -> int: ...


# ─────────────────────────── Key Builder ────────────────────────────────────────


def sanitize_key(key: Any) -> str:
    """Lowercase and keep only ``[a-z0-9_-]``, like WordPress ``sanitize_key``."""
    return _KEY_STRIP.sub("", str(key).lower())


class CacheKeyBuilder:
    """Turns a (group, key) pair into a canonical cache key.

    Canonical form is ``<prefix><group>.<key>``. Sanitized names never contain
    a dot, so a group prefix can't match a neighbouring group. Keys changed by
    sanitizing carry a digest of the raw key, so ``"Menu_Width"`` and
    ``"menu_width"`` stay distinct entries.
    """

    def __init__(self, prefix: str, max_length: int) -> None:
        self.prefix = prefix
        self.max_length = max_length

    def group_prefix(self, group: str) -> str:
        return f"{self.prefix}{sanitize_key(group) or DEFAULT_GROUP}."

    def build(self, key: Any, group: str = DEFAULT_GROUP) -> str:
        raw_key = str(key)
        clean_key = sanitize_key(raw_key)
        if clean_key and clean_key != raw_key:
            clean_key = f"{clean_key}-{blake2b(raw_key.encode('utf-8'), digest_size=8).hexdigest()}"
        full_key = f"{self.group_prefix(group)}{clean_key}"

        if not clean_key or len(full_key) > self.max_length:
            digest = blake2b(raw_key.encode("utf-8"), digest_size=16).hexdigest()
            full_key = f"{self.group_prefix(group)}{digest}"

        return full_key


class FunctionCallHasher:
    """Generates unique hashes for function calls."""

    @staticmethod
    def make_json_safe(obj: Any) -> Any:
        try:
            orjson.dumps(obj, option=orjson.OPT_NON_STR_KEYS)
            return obj
        except (TypeError, OverflowError):
            return repr(obj)

    @classmethod
    def hash_function_call(
        cls, function: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> str:
        """
        Generate a unique hash for a function call with its arguments.

        Returns:
            A 32-character hexadecimal digest
        """
        payload = {
            "fn": f"{function.__module__}.{function.__qualname__}",
            "args": [cls.make_json_safe(arg) for arg in args],
            "kwargs": {key: cls.make_json_safe(value) for key, value in kwargs.items()},
        }
        serialized = orjson.dumps(
            payload, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS
        )
        return blake2b(serialized, digest_size=16).hexdigest()


# ─────────────────────────── Storage Helpers ────────────────────────────────────


class PickleSerializer:
    """Pickle-based object serializer."""

    def serialize(self, obj: Any) -> bytes:
        return pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL)

    def deserialize(self, data: bytes) -> Any:
        return pickle.loads(data)


class AtomicFileWriter:
    """Provides atomic file write operations."""

    @staticmethod
    def write_atomically(path: Path, data: bytes) -> None:
        """
        Write to a temporary file in the target directory, then replace the
        target under a file lock.

        Raises:
            OSError: If the write operation fails
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        with NamedTemporaryFile(dir=path.parent, delete=False) as temp_file:
            temp_file.write(data)
            temp_file.flush()
            os.fsync(temp_file.fileno())
            temp_path = Path(temp_file.name)

        with FileLock(f"{path}.lock"):
            for attempt in range(ATOMIC_WRITE_RETRY_COUNT):
                try:
                    temp_path.replace(path)
                    return
                except PermissionError:
                    if attempt < ATOMIC_WRITE_RETRY_COUNT - 1:
                        time.sleep(ATOMIC_WRITE_RETRY_DELAY)

            # Final attempt without catching exceptions
            temp_path.replace(path)


class FileSystemStorage:
    """File system storage with optional gzip compression."""

    def __init__(self, compress: bool = True):
        self.compress = compress
        self._writer = AtomicFileWriter()

    def read(self, path: Path) -> bytes | None:
        """Read a file, handling both compressed and uncompressed content."""
        try:
            if not path.exists():
                return None

            with path.open("rb") as file:
                magic = file.read(2)
                file.seek(0)

                if magic == GZIP_MAGIC_BYTES:
                    with gzip.open(path, "rb") as gz_file:
                        return gz_file.read()
                return file.read()

        except (OSError, EOFError) as error:
            logger.warning(f"Failed to read cache file [{path.name}]: {error}")
            return None

    def write(self, path: Path, data: bytes) -> None:
        if self.compress:
            data = gzip.compress(data, compresslevel=GZIP_COMPRESSION_LEVEL)

        self._writer.write_atomically(path, data)

    def delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
            Path(f"{path}.lock").unlink(missing_ok=True)
        except OSError as error:
            logger.warning(f"Failed to delete file [{path.name}]: {error}")


# ─────────────────────────── Entries & Metrics ──────────────────────────────────


@dataclass
class CacheEntry:
    """A stored value with its expiry; ``expires_at=None`` never expires."""

    key: str
    value: Any
    group: str = DEFAULT_GROUP
    expires_at: float | None = None
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.time)
    size: int = 0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def touch(self, now: float) -> None:
        self.last_accessed = now


@dataclass
class CacheMetrics:
    """Hit/miss accounting for a CacheManager."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0
    queries_saved: int = 0
    generation_times: OrderedDict[str, float] = field(default_factory=OrderedDict)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def cache_efficiency(self) -> float:
        total = self.hits + self.misses
        beneficial = self.hits + self.queries_saved
        return beneficial / total * 100 if total > 0 else 0.0

    @property
    def average_generation_time(self) -> float:
        if not self.generation_times:
            return 0.0
        return sum(self.generation_times.values()) / len(self.generation_times)

    def record_generation(self, key: str, seconds: float) -> None:
        self.generation_times.pop(key, None)
        self.generation_times[key] = seconds
        while len(self.generation_times) > GENERATION_HISTORY:
            self.generation_times.popitem(last=False)

    def counters(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "queries_saved": self.queries_saved,
        }


# ─────────────────────────── External Layers ────────────────────────────────────


class RedisObjectCache:
    """Object-cache level backed by Redis.

    Values are pickled together with their absolute expiry; Redis' own `EX`
    is set as well so abandoned keys don't pile up on the server.
    """

    name = "object_cache"

    def __init__(
        self,
        client: redis.Redis | None = None,
        *,
        url: str | None = None,
        serializer: Serializer | None = None,
    ) -> None:
        self._client = client
        self._url = url or settings.REDIS_URL
        self._serializer = serializer or PickleSerializer()

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(self._url, socket_connect_timeout=2)
        return self._client

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as error:
            logger.debug(f"Redis ping failed: {error}")
            return False

    def fetch(self, key: str) -> tuple[Any, float | None] | None:
        try:
            raw = self.client.get(key)
        except redis.RedisError as error:
            raise CacheLayerError(f"redis get failed for {key}: {error}") from error
        if raw is None:
            return None
        try:
            value, expires_at = self._serializer.deserialize(raw)
        except (pickle.UnpicklingError, ValueError, TypeError, EOFError) as error:
            logger.warning(f"Corrupted object-cache entry [{key}] → dropping ({error})")
            self.delete(key)
            return None
        return value, expires_at

    def store(self, key: str, value: Any, expires_at: float | None, ttl: int) -> bool:
        data = self._serializer.serialize((value, expires_at))
        try:
            return bool(self.client.set(key, data, ex=ttl if ttl > 0 else None))
        except redis.RedisError as error:
            raise CacheLayerError(f"redis set failed for {key}: {error}") from error

    def delete(self, key: str) -> bool:
        try:
            self.client.delete(key)
        except redis.RedisError as error:
            raise CacheLayerError(f"redis delete failed for {key}: {error}") from error
        return True

    def clear(self, prefix: str) -> int:
        try:
            keys = list(self.client.scan_iter(match=f"{prefix}*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as error:
            raise CacheLayerError(f"redis clear failed for {prefix}: {error}") from error
        return len(keys)


class DiskTransientStore:
    """Transient level: one compressed pickle file per canonical key."""

    name = "transients"

    def __init__(self, root: str | Path, *, compress: bool | None = None) -> None:
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        if compress is None:
            compress = "DISKCACHE_NO_GZIP" not in os.environ
        self._storage = FileSystemStorage(compress=compress)
        self._serializer = PickleSerializer()
        self._suffix = ".pkl.gz" if compress else ".pkl"

    def _path(self, key: str) -> Path:
        """File for `key`; names that would not fit the filesystem (lock sibling
        included) keep the group prefix and hash the rest."""
        name = f"{key}{self._suffix}"
        if len(f"{name}.lock".encode("utf-8")) > MAX_FILENAME_BYTES:
            group_prefix, _, _ = key.rpartition(".")
            digest = blake2b(key.encode("utf-8"), digest_size=16).hexdigest()
            name = f"{group_prefix}.{digest}{self._suffix}"
            if len(f"{name}.lock".encode("utf-8")) > MAX_FILENAME_BYTES:
                name = f"{digest}{self._suffix}"
        return self.root / name

    def ping(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)

    def fetch(self, key: str) -> tuple[Any, float | None] | None:
        path = self._path(key)
        data = self._storage.read(path)
        if not data:
            return None
        try:
            value, expires_at = self._serializer.deserialize(data)
        except (pickle.UnpicklingError, ValueError, TypeError, EOFError) as error:
            logger.warning(f"Corrupted transient [{path.name}] → dropping ({error})")
            self._storage.delete(path)
            return None
        return value, expires_at

    def store(self, key: str, value: Any, expires_at: float | None, ttl: int) -> bool:
        try:
            self._storage.write(self._path(key), self._serializer.serialize((value, expires_at)))
        except (OSError, pickle.PicklingError, TypeError, AttributeError) as error:
            raise CacheLayerError(f"failed to write transient {key}: {error}") from error
        return True

    def delete(self, key: str) -> bool:
        self._storage.delete(self._path(key))
        return True

    def clear(self, prefix: str) -> int:
        removed = 0
        for path in self.root.glob(f"{prefix}*.pkl*"):
            if path.name.endswith(".lock"):
                continue
            self._storage.delete(path)
            removed += 1
        return removed


# ─────────────────────────── Cache Manager Facade ────────────────────────────────


class CacheManager:
    """
    TTL cache facade used by settings storage, security and the AJAX layer.

    Features:
    - get/set/delete/remember/clear/warm_up over memory + optional external levels
    - Bounded memory store with LRU eviction (byte budget)
    - Metrics: hits, misses, sets, deletes, evictions, expirations, generation time
    - Injectable clock so expiry can be exercised without sleeping

    Example:
        cache = CacheManager()
        cache.set("color", "#ff0000", 60, group="theme")
        css = cache.remember("admin_css", build_css, ttl=300, group=CacheManager.GROUP_CSS)
    """

    GROUP_SETTINGS = "settings"
    GROUP_CSS = "css"
    GROUP_PREVIEW = "preview"
    GROUP_TEMPLATES = "templates"
    GROUP_USER_STATE = "user_state"
    GROUP_PERFORMANCE = "performance"
    GROUP_SECURITY = "security"

    def __init__(
        self,
        *,
        default_ttl: int | None = None,
        max_key_length: int | None = None,
        memory_limit: int | None = None,
        prefix: str | None = None,
        enable_memory: bool | None = None,
        layers: list[CacheLayer] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the cache manager.

        Args:
            default_ttl: TTL used when callers pass none (or a malformed one)
            max_key_length: Canonical keys above this length get a hashed key part
            memory_limit: Byte budget of the in-process store
            prefix: Prefix for every canonical key
            enable_memory: Toggle the in-process store
            layers: External levels, fastest first
            clock: Time source in seconds
        """
        self.default_ttl = default_ttl if default_ttl is not None else settings.CACHE_TTL_DEFAULT
        self.memory_limit = memory_limit if memory_limit is not None else settings.CACHE_MEMORY_LIMIT
        self.enable_memory = (
            enable_memory if enable_memory is not None else settings.CACHE_ENABLE_MEMORY
        )
        self.keys = CacheKeyBuilder(
            prefix if prefix is not None else settings.CACHE_PREFIX,
            max_key_length if max_key_length is not None else settings.CACHE_MAX_KEY_LENGTH,
        )
        self.layers: list[CacheLayer] = list(layers or [])
        self._clock = clock

        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory_bytes = 0
        self._peak_memory = 0
        self._lock = threading.RLock()
        self._started = time.monotonic()
        self.metrics = CacheMetrics()

    @classmethod
    def from_settings(cls, cfg: Settings | None = None, **overrides: Any) -> CacheManager:
        """Build a manager with the external levels switched on in `cfg`."""
        cfg = cfg or settings
        layers: list[CacheLayer] = []
        if cfg.USE_REDIS:
            layers.append(RedisObjectCache(url=cfg.REDIS_URL))
        if cfg.CACHE_ENABLE_TRANSIENTS:
            layers.append(DiskTransientStore(cfg.CACHE_DIR / "transients"))
        overrides.setdefault("layers", layers)
        return cls(
            default_ttl=cfg.CACHE_TTL_DEFAULT,
            max_key_length=cfg.CACHE_MAX_KEY_LENGTH,
            memory_limit=cfg.CACHE_MEMORY_LIMIT,
            prefix=cfg.CACHE_PREFIX,
            enable_memory=cfg.CACHE_ENABLE_MEMORY,
            **overrides,
        )

    def __len__(self) -> int:
        return len(self._memory)

    def now(self) -> float:
        return self._clock()

    # ── public API ──────────────────────────────────────────────────────────

    def get(self, key: Any, group: str = DEFAULT_GROUP, default: Any = None) -> Any:
        """
        Return the cached value, or `default` when absent or expired.

        Args:
            key: Cache key
            group: Cache group
            default: Value returned on a miss

        Returns:
            Cached value or default
        """
        full_key = self.keys.build(key, group)
        with self._lock:
            value = self._lookup(full_key, group)
            if value is _MISSING:
                self.metrics.misses += 1
                return default
            self.metrics.hits += 1
            return value

    def set(
        self, key: Any, value: Any, ttl: Any = None, group: str = DEFAULT_GROUP
    ) -> bool:
        """
        Store `value` in every enabled level.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds; 0 means no expiry
            group: Cache group

        Returns:
            True when every level accepted the value
        """
        ttl = self._normalize_ttl(ttl)
        full_key = self.keys.build(key, group)
        expires_at = self.now() + ttl if ttl > 0 else None

        with self._lock:
            self.metrics.sets += 1
            success = True
            if self.enable_memory:
                self._store_in_memory(full_key, group, value, expires_at)
            for layer in self.layers:
                success = self._layer_store(layer, full_key, value, expires_at, ttl) and success
            return success

    def delete(self, key: Any, group: str = DEFAULT_GROUP) -> bool:
        """Remove the entry from every level. Idempotent, always True."""
        full_key = self.keys.build(key, group)
        with self._lock:
            self.metrics.deletes += 1
            self._drop_from_memory(full_key)
            for layer in self.layers:
                self._layer_call(layer, "delete", full_key)
        return True

    def remember(
        self,
        key: Any,
        compute: Callable[[], R],
        ttl: Any = None,
        group: str = DEFAULT_GROUP,
    ) -> R | None:
        """
        Return the cached value, or compute, store and return it.

        `compute` runs at most once per call. A None result is returned but
        not cached; exceptions propagate and nothing is stored.
        """
        full_key = self.keys.build(key, group)
        with self._lock:
            value = self._lookup(full_key, group)
            if value is not _MISSING:
                self.metrics.hits += 1
                return value
            self.metrics.misses += 1
            self.metrics.queries_saved += 1

        if not callable(compute):
            return None

        start = time.perf_counter()
        value = compute()
        self.metrics.record_generation(full_key, time.perf_counter() - start)

        if value is not None:
            self.set(key, value, ttl, group)
        return value

    def clear(self, group: str | None = None, pattern: str | None = None) -> bool:
        """
        Clear by group, by fnmatch pattern over canonical keys, or everything.

        Returns:
            True when everything was cleared, otherwise whether anything matched
        """
        with self._lock:
            if group is None and pattern is None:
                self._memory.clear()
                self._memory_bytes = 0
                for layer in self.layers:
                    self._layer_call(layer, "clear", self.keys.prefix)
                return True

            cleared = 0
            if group is not None:
                prefix = self.keys.group_prefix(group)
                cleared += self._drop_matching(lambda k: k.startswith(prefix))
                for layer in self.layers:
                    cleared += self._layer_call(layer, "clear", prefix) or 0

            if pattern is not None:
                cleared += self._drop_matching(lambda k: fnmatch.fnmatchcase(k, pattern))

            logger.debug(f"Cache clear group={group} pattern={pattern}: {cleared} entries")
            return cleared > 0

    def warm_up(
        self, keys_and_callbacks: Mapping[Any, Callable[[], Any]], group: str = DEFAULT_GROUP
    ) -> dict[Any, dict[str, Any]]:
        """
        Populate the cache eagerly.

        Args:
            keys_and_callbacks: key → zero-argument callable
            group: Cache group

        Returns:
            Per key: success, time_taken (seconds), cached (already present) and error if any
        """
        results: dict[Any, dict[str, Any]] = {}

        for key, callback in keys_and_callbacks.items():
            misses_before = self.metrics.misses
            start = time.perf_counter()
            error: str | None = None
            try:
                value = self.remember(key, callback, None, group)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Cache warm-up failed for {group}/{key}: {exc}")
                value, error = None, str(exc)

            result = {
                "success": error is None and value is not None,
                "time_taken": time.perf_counter() - start,
                "cached": self.metrics.misses == misses_before,
            }
            if error is not None:
                result["error"] = error
            results[key] = result

        warmed = sum(1 for r in results.values() if r["success"])
        logger.info(f"Cache warmed: {warmed}/{len(results)} keys in group '{group}'")
        return results

    def get_metrics(self) -> dict[str, Any]:
        """Counters plus derived rates, memory usage and runtime."""
        with self._lock:
            hit_rate = self.metrics.hit_rate
            return {
                **self.metrics.counters(),
                "hit_rate": hit_rate,
                "hit_rate_pct": f"{hit_rate:.2%}",
                "cache_efficiency": round(self.metrics.cache_efficiency, 2),
                "memory_usage": self._memory_bytes,
                "memory_usage_mb": round(self._memory_bytes / 1024 / 1024, 2),
                "peak_memory": self._peak_memory,
                "peak_memory_mb": round(self._peak_memory / 1024 / 1024, 2),
                "memory_limit": self.memory_limit,
                "memory_cache_count": len(self._memory),
                "runtime_seconds": round(time.monotonic() - self._started, 2),
                "average_generation_time": self.metrics.average_generation_time,
                "layers": [layer.name for layer in self.layers],
            }

    def optimize_memory(self) -> dict[str, int]:
        """Purge expired in-process entries, then LRU-evict down to budget."""
        with self._lock:
            before_count = len(self._memory)
            before_bytes = self._memory_bytes
            now = self.now()

            expired = [k for k, entry in self._memory.items() if entry.is_expired(now)]
            for full_key in expired:
                self._drop_from_memory(full_key)
            self.metrics.expirations += len(expired)

            cleaned = len(expired)
            if self._memory_bytes > self.memory_limit:
                cleaned += self._evict_lru(int(self.memory_limit * LRU_TARGET_RATIO))

            return {
                "entries_before": before_count,
                "entries_after": len(self._memory),
                "entries_cleaned": cleaned,
                "memory_before": before_bytes,
                "memory_after": self._memory_bytes,
                "memory_freed": before_bytes - self._memory_bytes,
            }

    def health(self) -> dict[str, dict[str, Any]]:
        """Reachability of every level, for health checks."""
        status: dict[str, dict[str, Any]] = {
            "memory": {
                "enabled": self.enable_memory,
                "ok": True,
                "entries": len(self._memory),
                "bytes": self._memory_bytes,
            }
        }
        for layer in self.layers:
            ping = getattr(layer, "ping", None)
            status[layer.name] = {"enabled": True, "ok": bool(ping()) if ping else True}
        return status

    def memoize(
        self, ttl: int | None = None, group: str = DEFAULT_GROUP
    ) -> Callable[[Callable[P, R]], Callable[P, R]]:
        """
        Decorator caching a function's result per argument set.

        Example:
            @cache.memoize(ttl=300, group=CacheManager.GROUP_PREVIEW)
            def render(settings: dict) -> str: ...
        """

        def decorator(function: Callable[P, R]) -> Callable[P, R]:
            signature = inspect.signature(function)

            @functools.wraps(function)
            def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                bound = signature.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                key = FunctionCallHasher.hash_function_call(
                    function, *bound.args, **bound.kwargs
                )
                return self.remember(key, lambda: function(*args, **kwargs), ttl, group)  # type: ignore[return-value]

            return wrapper

        return decorator

    # ── internals ───────────────────────────────────────────────────────────

    def _normalize_ttl(self, ttl: Any) -> int:
        if ttl is None or isinstance(ttl, bool):
            return self.default_ttl
        try:
            value = float(ttl)
        except (TypeError, ValueError):
            return self.default_ttl
        if math.isnan(value) or math.isinf(value) or value < 0:
            return self.default_ttl
        return int(value)

    def _lookup(self, full_key: str, group: str) -> Any:
        now = self.now()

        if self.enable_memory:
            entry = self._memory.get(full_key)
            if entry is not None:
                if entry.is_expired(now):
                    self._drop_from_memory(full_key)
                    self.metrics.expirations += 1
                else:
                    entry.touch(now)
                    self._memory.move_to_end(full_key)
                    return self._snapshot(entry.value)

        for index, layer in enumerate(self.layers):
            found = self._layer_call(layer, "fetch", full_key)
            if found is None:
                continue
            value, expires_at = found
            if expires_at is not None and now >= expires_at:
                self._layer_call(layer, "delete", full_key)
                self.metrics.expirations += 1
                continue

            remaining = 0 if expires_at is None else max(1, math.ceil(expires_at - now))
            for upper in self.layers[:index]:
                self._layer_store(upper, full_key, value, expires_at, remaining)
            if self.enable_memory:
                self._store_in_memory(full_key, group, value, expires_at)
            return value

        return _MISSING

    def _store_in_memory(
        self, full_key: str, group: str, value: Any, expires_at: float | None
    ) -> None:
        now = self.now()
        size = self._estimate_size(value)
        self._drop_from_memory(full_key)

        if self._memory_bytes + size > self.memory_limit:
            self._evict_lru(max(0, int(self.memory_limit * LRU_TARGET_RATIO) - size))

        self._memory[full_key] = CacheEntry(
            key=full_key,
            value=self._snapshot(value),
            group=sanitize_key(group) or DEFAULT_GROUP,
            expires_at=expires_at,
            created_at=now,
            last_accessed=now,
            size=size,
        )
        self._memory_bytes += size
        self._peak_memory = max(self._peak_memory, self._memory_bytes)

    def _drop_from_memory(self, full_key: str) -> bool:
        entry = self._memory.pop(full_key, None)
        if entry is None:
            return False
        self._memory_bytes -= entry.size
        return True

    def _drop_matching(self, predicate: Callable[[str], bool]) -> int:
        matched = [k for k in self._memory if predicate(k)]
        for full_key in matched:
            self._drop_from_memory(full_key)
        return len(matched)

    def _evict_lru(self, target_bytes: int) -> int:
        removed = 0
        while self._memory and self._memory_bytes > target_bytes:
            oldest_key = next(iter(self._memory))
            self._drop_from_memory(oldest_key)
            removed += 1
        self.metrics.evictions += removed
        if removed:
            logger.debug(f"Evicted {removed} LRU entries (now {self._memory_bytes} bytes)")
        return removed

    @staticmethod
    def _snapshot(value: Any) -> Any:
        """Copy held apart from the caller, matching what the pickling levels return."""
        try:
            return copy.deepcopy(value)
        except (TypeError, copy.Error, pickle.PicklingError) as error:
            logger.debug(f"Value of type {type(value).__name__} cached by reference: {error}")
            return value

    @staticmethod
    def _estimate_size(value: Any) -> int:
        try:
            return len(pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))
        except (pickle.PicklingError, TypeError, AttributeError):
            return sys.getsizeof(value)

    def _layer_store(
        self, layer: CacheLayer, full_key: str, value: Any, expires_at: float | None, ttl: int
    ) -> bool:
        return bool(self._layer_call(layer, "store", full_key, value, expires_at, ttl))

    @staticmethod
    def _layer_call(layer: CacheLayer, method: str, *args: Any) -> Any:
        try:
            return getattr(layer, method)(*args)
        except CacheLayerError as error:
            logger.warning(f"[{layer.name}] {method} failed: {error}")
            return None


__all__ = [
    "CacheEntry",
    "CacheKeyBuilder",
    "CacheLayer",
    "CacheManager",
    "CacheMetrics",
    "DiskTransientStore",
    "FunctionCallHasher",
    "RedisObjectCache",
    "sanitize_key",
]
