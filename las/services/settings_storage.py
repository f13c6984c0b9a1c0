from __future__ import annotations

import re
import time
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping
from typing import Any

import psutil

from las import settings
from las.services.options import OptionsStore
from las.utils.cache import CacheManager
from las.utils.file_manager import FileManager
from las.utils.logger import logger

OPTION_PREFIX = "las_"
CACHE_EXPIRATION = 3600
METRICS_HISTORY = 100
SLOW_OPERATION_MS = 1000

_VALID_KEY = re.compile(r"^[a-zA-Z0-9_-]+$")
_MISSING: Any = object()

DEFAULT_SETTINGS: dict[str, Any] = {
    "menu_background_color": "#23282d",
    "menu_text_color": "#ffffff",
    "menu_hover_color": "#0073aa",
    "menu_active_color": "#0073aa",
    "menu_font_size": "14",
    "menu_font_family": "default",
    "adminbar_background": "#23282d",
    "adminbar_text_color": "#ffffff",
    "adminbar_hover_color": "#0073aa",
    "adminbar_height": "32",
    "content_background": "#f1f1f1",
    "content_text_color": "#333333",
    "content_link_color": "#0073aa",
    "enable_live_preview": True,
    "enable_custom_css": False,
    "enable_responsive_design": True,
    "animation_speed": "normal",
    "cache_css": True,
    "minify_css": False,
    "custom_css": "",
    "admin_menu_detached": False,
    "admin_bar_detached": False,
}


class SettingsStorage:
    """
    Persistence for the plugin settings: options table behind a per-key cache.

    Every write refreshes the cached value and drops the caches derived from
    it (generated CSS for colour/font/custom-CSS keys, preview CSS always).

    Attributes:
        options: Backing option table
        cache: Cache facade; values live in group ``settings``
        performance_metrics: operation → last 100 measurements
    """

    def __init__(
        self,
        options: OptionsStore | None = None,
        cache: CacheManager | None = None,
    ) -> None:
        self.options = options if options is not None else OptionsStore()
        self.cache = cache if cache is not None else CacheManager.from_settings()
        self.performance_metrics: dict[str, deque[dict[str, Any]]] = defaultdict(
            lambda: deque(maxlen=METRICS_HISTORY)
        )
        self._batch_queue: dict[str, Any] = {}

    # ─── Bulk operations ───

    def save_settings(self, values: Mapping[str, Any]) -> bool:
        """
        Persist a mapping of settings.

        Invalid keys are skipped and make the call report failure.

        Returns:
            True only when every key was saved
        """
        if not isinstance(values, Mapping) or not values:
            return False

        start = time.perf_counter()
        success_count = 0

        for key, value in values.items():
            if not self.is_valid_setting_key(key):
                logger.warning(f"Skipping invalid setting key: {key!r}")
                continue
            if self._write_option(key, value):
                success_count += 1
            else:
                logger.error(f"Failed to save setting: {key}")

        self._record_performance_metric(
            "save_settings",
            start,
            settings_count=len(values),
            success_count=success_count,
        )
        return success_count == len(values)

    def load_settings(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        """Load settings, cache first, then the option table, then the defaults."""
        start = time.perf_counter()
        keys_to_load = list(keys) if keys else list(DEFAULT_SETTINGS)
        loaded: dict[str, Any] = {}
        cache_hits = cache_misses = 0

        for key in keys_to_load:
            cached = self.cache.get(key, CacheManager.GROUP_SETTINGS, _MISSING)
            if cached is not _MISSING:
                loaded[key] = cached
                cache_hits += 1
                continue

            value = self.options.get_option(self._option_name(key), DEFAULT_SETTINGS.get(key))
            loaded[key] = value
            cache_misses += 1
            self._set_cache(key, value)

        total = cache_hits + cache_misses
        self._record_performance_metric(
            "load_settings",
            start,
            settings_count=len(loaded),
            cache_hits=cache_hits,
            cache_misses=cache_misses,
            cache_hit_ratio=cache_hits / total if total else 0.0,
        )
        return loaded

    def reset_settings(self) -> bool:
        """Write every default back and drop all derived caches."""
        start = time.perf_counter()
        success_count = 0

        for key, default_value in DEFAULT_SETTINGS.items():
            option_name = self._option_name(key)
            self.options.update_option(option_name, default_value)
            if self.options.get_option(option_name) == default_value:
                success_count += 1

        self._clear_all_caches()
        self._record_performance_metric(
            "reset_settings",
            start,
            settings_count=len(DEFAULT_SETTINGS),
            success_count=success_count,
        )
        logger.info(f"Settings reset to defaults ({success_count}/{len(DEFAULT_SETTINGS)})")
        return success_count == len(DEFAULT_SETTINGS)

    def queue_batch_save(self, values: Mapping[str, Any]) -> None:
        if not isinstance(values, Mapping):
            return
        self._batch_queue.update(values)

    def process_batch_queue(self) -> bool:
        """Save everything queued so far. An empty queue is a no-op success."""
        if not self._batch_queue:
            return True
        queued, self._batch_queue = self._batch_queue, {}
        return self.save_settings(queued)

    @property
    def pending_batch(self) -> dict[str, Any]:
        return dict(self._batch_queue)

    # ─── Single keys ───

    def get_setting(self, key: str, default: Any = None) -> Any:
        cached = self.cache.get(key, CacheManager.GROUP_SETTINGS, _MISSING)
        if cached is not _MISSING:
            return cached

        fallback = default if default is not None else DEFAULT_SETTINGS.get(key)
        value = self.options.get_option(self._option_name(key), fallback)
        self._set_cache(key, value)
        return value

    def set_setting(self, key: str, value: Any) -> bool:
        if not self.is_valid_setting_key(key):
            return False
        return self._write_option(key, value)

    def delete_setting(self, key: str) -> bool:
        deleted = self.options.delete_option(self._option_name(key))
        if deleted:
            self.cache.delete(key, CacheManager.GROUP_SETTINGS)
            self._clear_related_caches(key)
        return deleted

    # ─── Defaults, export & import ───

    @staticmethod
    def get_default_settings() -> dict[str, Any]:
        return dict(DEFAULT_SETTINGS)

    @staticmethod
    def has_default_setting(key: str) -> bool:
        return key in DEFAULT_SETTINGS

    @staticmethod
    def is_valid_setting_key(key: Any) -> bool:
        return isinstance(key, str) and (
            key in DEFAULT_SETTINGS or bool(_VALID_KEY.match(key))
        )

    def export_settings(self) -> dict[str, Any]:
        """Snapshot for backup or migration to another site."""
        return {
            "version": settings.PLUGIN_VERSION,
            "timestamp": FileManager.get_timestamp(),
            "settings": self.load_settings(),
            "defaults": self.get_default_settings(),
        }

    def import_settings(self, data: Any) -> bool:
        """Import an export document; requires `version` and `settings`."""
        if not isinstance(data, Mapping) or "version" not in data:
            return False
        imported = data.get("settings")
        if not isinstance(imported, Mapping):
            return False

        valid = {k: v for k, v in imported.items() if self.is_valid_setting_key(k)}
        if not valid:
            return False

        logger.info(f"Importing {len(valid)} settings exported by version {data['version']}")
        return self.save_settings(valid)

    # ─── Metrics ───

    def get_performance_metrics(self) -> dict[str, list[dict[str, Any]]]:
        return {operation: list(entries) for operation, entries in self.performance_metrics.items()}

    def get_storage_stats(self) -> dict[str, Any]:
        """Option count and size plus a per-operation performance summary."""
        option_count = len(self.options.names(OPTION_PREFIX))
        total_size = self.options.size_of(OPTION_PREFIX)

        load_ratios = [
            m["cache_hit_ratio"] for m in self.performance_metrics.get("load_settings", ())
        ]
        summary = {}
        for operation, entries in self.performance_metrics.items():
            if not entries:
                continue
            times = [m["execution_time_ms"] for m in entries]
            summary[operation] = {
                "count": len(entries),
                "avg_execution_time_ms": sum(times) / len(times),
                "max_execution_time_ms": max(times),
                "min_execution_time_ms": min(times),
            }

        return {
            "option_count": option_count,
            "total_size_bytes": total_size,
            "average_size_bytes": round(total_size / option_count, 2) if option_count else 0,
            "cache_hit_ratio": sum(load_ratios) / len(load_ratios) if load_ratios else 0.0,
            "performance_metrics": summary,
        }

    # ─── Internals ───

    @staticmethod
    def _option_name(key: str) -> str:
        return f"{OPTION_PREFIX}{key}"

    def _set_cache(self, key: str, value: Any) -> None:
        self.cache.set(key, value, CACHE_EXPIRATION, CacheManager.GROUP_SETTINGS)

    def _write_option(self, key: str, value: Any) -> bool:
        option_name = self._option_name(key)
        changed = self.options.update_option(option_name, value)
        if not changed and self.options.get_option(option_name, _MISSING) != value:
            return False

        self._set_cache(key, value)
        self._clear_related_caches(key)
        return True

    def _clear_related_caches(self, key: str) -> None:
        if "_color" in key or "_font" in key or "custom_css" in key:
            self.cache.clear(group=CacheManager.GROUP_CSS)
        self.cache.clear(group=CacheManager.GROUP_PREVIEW)
        self.cache.delete("settings_summary", CacheManager.GROUP_SETTINGS)

    def _clear_all_caches(self) -> None:
        for key in DEFAULT_SETTINGS:
            self.cache.delete(key, CacheManager.GROUP_SETTINGS)
        self.cache.clear(group=CacheManager.GROUP_CSS)
        self.cache.clear(group=CacheManager.GROUP_PREVIEW)
        self.cache.delete("settings_summary", CacheManager.GROUP_SETTINGS)

    def _record_performance_metric(self, operation: str, start: float, **metrics: Any) -> None:
        elapsed_ms = (time.perf_counter() - start) * 1000
        self.performance_metrics[operation].append(
            {
                "timestamp": time.time(),
                "execution_time_ms": elapsed_ms,
                "memory_usage": psutil.Process().memory_info().rss,
                **metrics,
            }
        )
        if elapsed_ms > SLOW_OPERATION_MS:
            logger.warning(f"Slow settings operation: {operation} took {elapsed_ms:.0f}ms")
