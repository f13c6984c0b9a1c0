from __future__ import annotations

from las.utils.cache import CacheManager, DiskTransientStore
from las.validation.context import ValidationContext
from las.validation.registry import registry

SUITE = "cache"


@registry.check(SUITE, "Basic", "set then get returns value")
def set_then_get(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("color", "#ff0000", 60, "theme")
    assert cache.get("color", "theme") == "#ff0000"


@registry.check(SUITE, "Basic", "missing key returns default")
def missing_key(ctx: ValidationContext):
    cache = ctx.cache()
    assert cache.get("nope", "theme", "fallback") == "fallback"
    assert cache.get("nope") is None


@registry.check(SUITE, "Basic", "delete removes entry")
def delete_removes(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("k", 1, 60)
    assert cache.delete("k") is True
    assert cache.get("k", default="gone") == "gone"
    assert cache.delete("k") is True, "delete must be idempotent"


@registry.check(SUITE, "TTL", "value visible before expiry")
def visible_before_expiry(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("color", "#ff0000", 60, "theme")
    ctx.clock.advance(59.9)
    assert cache.get("color", "theme") == "#ff0000"


@registry.check(SUITE, "TTL", "value expires at ttl")
def expires_at_ttl(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("color", "#ff0000", 60, "theme")
    ctx.clock.advance(61)
    value = cache.get("color", "theme", "#000000")
    assert value == "#000000", f"expected default after expiry, got {value!r}"


@registry.check(SUITE, "TTL", "zero ttl never expires")
def zero_ttl(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("forever", "x", 0)
    ctx.clock.advance(10 * 365 * 86400)
    assert cache.get("forever") == "x"


@registry.check(SUITE, "TTL", "malformed ttl falls back to default")
def malformed_ttl(ctx: ValidationContext):
    cache = ctx.cache(default_ttl=100)
    cache.set("neg", 1, -5)
    cache.set("text", 2, "soon")
    ctx.clock.advance(99)
    assert cache.get("neg") == 1 and cache.get("text") == 2
    ctx.clock.advance(2)
    assert cache.get("neg") is None and cache.get("text") is None


@registry.check(SUITE, "Remember", "remember computes once")
def remember_once(ctx: ValidationContext):
    cache = ctx.cache()
    calls = []

    def compute():
        calls.append(1)
        return "css"

    for _ in range(5):
        assert cache.remember("css", compute, 60) == "css"
    return len(calls) == 1, f"compute called {len(calls)} time(s)"


@registry.check(SUITE, "Remember", "remember recomputes after expiry")
def remember_after_expiry(ctx: ValidationContext):
    cache = ctx.cache()
    calls = []
    cache.remember("css", lambda: calls.append(1) or "v", 10)
    ctx.clock.advance(11)
    cache.remember("css", lambda: calls.append(1) or "v", 10)
    assert len(calls) == 2, f"expected 2 computations, got {len(calls)}"


@registry.check(SUITE, "Remember", "remember does not cache None")
def remember_none(ctx: ValidationContext):
    cache = ctx.cache()
    calls = []
    cache.remember("empty", lambda: calls.append(1))
    cache.remember("empty", lambda: calls.append(1))
    assert len(calls) == 2


@registry.check(SUITE, "Groups", "clear group leaves other groups")
def clear_group(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("a", 1, 60, "css")
    cache.set("b", 2, 60, "css")
    cache.set("a", 3, 60, "settings")
    cache.set("a", 4, 60, "css_extra")
    cache.clear(group="css")
    assert cache.get("a", "css") is None and cache.get("b", "css") is None
    assert cache.get("a", "settings") == 3
    assert cache.get("a", "css_extra") == 4, "group prefix must not leak into similar names"


@registry.check(SUITE, "Groups", "clear pattern")
def clear_pattern(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("user_1", 1, 60, "user_state")
    cache.set("user_2", 2, 60, "user_state")
    cache.set("other", 3, 60, "user_state")
    cache.clear(pattern="*user_state.user_*")
    assert cache.get("user_1", "user_state") is None
    assert cache.get("other", "user_state") == 3


@registry.check(SUITE, "Keys", "keys are sanitized and bounded")
def key_building(ctx: ValidationContext):
    cache = ctx.cache(max_key_length=60)
    built = cache.keys.build("Menu Color!", "Theme")
    assert built.startswith("las_fresh_theme.menucolor-"), built
    assert built != cache.keys.build("menucolor", "theme"), "sanitized keys must not collide"
    long_key = cache.keys.build("x" * 500, "theme")
    assert len(long_key) <= 60, f"{len(long_key)} chars"
    cache.set("x" * 500, "long", 60, "theme")
    assert cache.get("x" * 500, "theme") == "long"


@registry.check(SUITE, "Metrics", "hit rate equals hits over reads")
def hit_rate(ctx: ValidationContext):
    cache = ctx.cache()
    cache.set("k", "v", 60)
    for _ in range(3):
        cache.get("k")
    cache.get("missing")
    metrics = cache.get_metrics()
    assert (metrics["hits"], metrics["misses"]) == (3, 1), metrics
    assert abs(metrics["hit_rate"] - 0.75) < 1e-9
    return True, metrics["hit_rate_pct"]


@registry.check(SUITE, "Warm-up", "warm-up records failures per key")
def warm_up(ctx: ValidationContext):
    cache = ctx.cache()

    def broken():
        raise RuntimeError("boom")

    results = cache.warm_up({"ok": lambda: 1, "bad": broken}, CacheManager.GROUP_TEMPLATES)
    assert results["ok"]["success"] and not results["ok"]["cached"]
    assert not results["bad"]["success"] and "boom" in results["bad"]["error"]
    again = cache.warm_up({"ok": lambda: 1}, CacheManager.GROUP_TEMPLATES)
    assert again["ok"]["cached"], "second warm-up should hit the cache"


@registry.check(SUITE, "Memory", "lru eviction under memory limit")
def lru_eviction(ctx: ValidationContext):
    cache = ctx.cache(memory_limit=4096)
    for i in range(40):
        cache.set(f"blob_{i}", "x" * 400, 60)
    metrics = cache.get_metrics()
    assert metrics["memory_usage"] <= 4096, metrics["memory_usage"]
    assert metrics["evictions"] > 0
    assert cache.get("blob_39") is not None, "most recent entry must survive"


@registry.check(SUITE, "Layers", "transients survive a new manager")
def transient_layer(ctx: ValidationContext):
    root = ctx.workdir / "transients"
    first = ctx.cache(layers=[DiskTransientStore(root)])
    first.set("css", "body{}", 60, CacheManager.GROUP_CSS)

    second = ctx.cache(layers=[DiskTransientStore(root)])
    assert second.get("css", CacheManager.GROUP_CSS) == "body{}"
    ctx.clock.advance(61)
    assert second.get("css", CacheManager.GROUP_CSS) is None
    third = ctx.cache(layers=[DiskTransientStore(root)])
    assert third.get("css", CacheManager.GROUP_CSS) is None, "expired transient resurfaced"
