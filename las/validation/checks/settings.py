from __future__ import annotations

from las.services.settings_storage import DEFAULT_SETTINGS
from las.utils.cache import CacheManager
from las.validation.context import ValidationContext
from las.validation.registry import registry

SUITE = "settings"


@registry.check(SUITE, "Storage", "defaults returned for unsaved keys")
def defaults_loaded(ctx: ValidationContext):
    storage = ctx.storage()
    loaded = storage.load_settings()
    assert loaded == DEFAULT_SETTINGS, "fresh storage should load the defaults"


@registry.check(SUITE, "Storage", "saved settings persist")
def save_and_reload(ctx: ValidationContext):
    storage = ctx.storage()
    assert storage.save_settings({"menu_text_color": "#eeeeee", "custom_flag": "on"})
    storage.cache.clear()
    loaded = storage.load_settings(["menu_text_color", "custom_flag"])
    assert loaded == {"menu_text_color": "#eeeeee", "custom_flag": "on"}, loaded


@registry.check(SUITE, "Storage", "invalid keys rejected")
def invalid_keys(ctx: ValidationContext):
    storage = ctx.storage()
    assert not storage.save_settings({"bad key!": 1, "menu_text_color": "#111111"})
    assert storage.get_setting("menu_text_color") == "#111111"
    assert not storage.save_settings({})
    assert not storage.set_setting("no spaces allowed", 1)


@registry.check(SUITE, "Cache", "related caches invalidated")
def related_invalidation(ctx: ValidationContext):
    storage = ctx.storage()
    cache = storage.cache
    cache.set("generated_css", "old", 600, CacheManager.GROUP_CSS)
    cache.set("preview_css", "old", 600, CacheManager.GROUP_PREVIEW)

    storage.set_setting("animation_speed", "fast")
    assert cache.get("generated_css", CacheManager.GROUP_CSS) == "old"
    assert cache.get("preview_css", CacheManager.GROUP_PREVIEW) is None

    storage.set_setting("menu_hover_color", "#222222")
    assert cache.get("generated_css", CacheManager.GROUP_CSS) is None


@registry.check(SUITE, "Batch", "batch queue saved on processing")
def batch_queue(ctx: ValidationContext):
    storage = ctx.storage()
    storage.queue_batch_save({"menu_font_size": "16"})
    storage.queue_batch_save({"adminbar_height": "40"})
    assert storage.get_setting("menu_font_size") == "14", "queued values must not be saved yet"
    assert storage.process_batch_queue()
    assert storage.get_setting("menu_font_size") == "16"
    assert storage.get_setting("adminbar_height") == "40"
    assert storage.pending_batch == {}


@registry.check(SUITE, "Migration", "export then import restores settings")
def export_import(ctx: ValidationContext):
    source = ctx.storage()
    source.save_settings({"content_background": "#fafafa"})
    exported = source.export_settings()
    assert {"version", "timestamp", "settings", "defaults"} <= exported.keys()

    target = ctx.storage()
    assert target.import_settings(exported)
    assert target.get_setting("content_background") == "#fafafa"
    assert not target.import_settings({"settings": {"a": 1}}), "version is required"


@registry.check(SUITE, "Storage", "reset restores defaults")
def reset(ctx: ValidationContext):
    storage = ctx.storage()
    storage.save_settings({"menu_background_color": "#000000"})
    assert storage.reset_settings()
    assert storage.get_setting("menu_background_color") == DEFAULT_SETTINGS["menu_background_color"]


@registry.check(SUITE, "Metrics", "operations recorded")
def performance_metrics(ctx: ValidationContext):
    storage = ctx.storage()
    storage.load_settings()
    storage.load_settings()
    metrics = storage.get_performance_metrics()
    assert len(metrics["load_settings"]) == 2
    assert metrics["load_settings"][1]["cache_hit_ratio"] == 1.0
