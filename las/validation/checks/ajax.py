from __future__ import annotations

import re

from las.validation.context import ValidationContext
from las.validation.registry import registry

SUITE = "ajax"

REQUEST_ID = re.compile(r"^las_[0-9a-f]{16}$")


@registry.check(SUITE, "Envelope", "success envelope carries meta")
def envelope_meta(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    reply = dispatcher.dispatch("las_load_settings", nonce=ctx.admin_nonce(dispatcher), user=ctx.admin)
    assert reply["success"] is True, reply
    meta = reply["meta"]
    assert {"timestamp", "execution_time_ms", "memory_usage", "request_id"} <= meta.keys()
    assert REQUEST_ID.match(meta["request_id"]), meta["request_id"]
    assert meta["memory_usage"] > 0


@registry.check(SUITE, "Gate", "unknown action rejected")
def unknown_action(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    reply = dispatcher.dispatch("las_drop_tables", user=ctx.admin)
    assert not reply["success"] and reply["code"] == "unknown_action", reply


@registry.check(SUITE, "Gate", "missing and invalid nonces rejected")
def nonce_required(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    missing = dispatcher.dispatch("las_save_settings", {"settings": {}}, user=ctx.admin)
    invalid = dispatcher.dispatch("las_save_settings", {"settings": {}}, nonce="deadbeef00", user=ctx.admin)
    assert missing["code"] == "missing_nonce" and missing["refresh_nonce"] is True
    assert invalid["code"] == "invalid_nonce"


@registry.check(SUITE, "Gate", "capability enforced")
def capability(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    nonce = dispatcher.security.create_nonce("las_ajax_nonce", ctx.subscriber)
    reply = dispatcher.dispatch("las_reset_settings", nonce=nonce, user=ctx.subscriber)
    assert reply["code"] == "insufficient_permissions", reply


@registry.check(SUITE, "Gate", "rate limit enforced")
def rate_limited(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    nonce = ctx.admin_nonce(dispatcher)
    codes = [
        dispatcher.dispatch("las_load_settings", nonce=nonce, user=ctx.admin).get("code")
        for _ in range(61)
    ]
    assert codes[:60] == [None] * 60 and codes[60] == "rate_limited", codes[-3:]


@registry.check(SUITE, "Settings", "save then load round-trip")
def save_load(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    nonce = ctx.admin_nonce(dispatcher)
    saved = dispatcher.dispatch(
        "las_save_settings",
        {"settings": '{"menu_text_color": "#ABCDEF", "menu_font_size": "16px"}'},
        nonce=nonce,
        user=ctx.admin,
    )
    assert saved["success"], saved
    loaded = dispatcher.dispatch("las_load_settings", {"keys": ["menu_text_color", "menu_font_size"]}, nonce=nonce, user=ctx.admin)
    assert loaded["data"]["settings"] == {"menu_text_color": "#abcdef", "menu_font_size": 0}, loaded["data"]


@registry.check(SUITE, "Settings", "invalid payload rejected")
def invalid_payload(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    reply = dispatcher.dispatch("las_save_settings", {"settings": "not json"}, nonce=ctx.admin_nonce(dispatcher), user=ctx.admin)
    assert reply["code"] == "invalid_data", reply


@registry.check(SUITE, "Preview", "preview css reflects setting")
def preview_css(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    reply = dispatcher.dispatch(
        "las_get_preview_css",
        {"setting": "menu_background_color", "value": "#123456"},
        nonce=ctx.admin_nonce(dispatcher),
        user=ctx.admin,
    )
    assert reply["success"], reply
    assert "background-color: #123456 !important" in reply["data"]["css"]


@registry.check(SUITE, "Nonce", "refresh works without nonce")
def refresh_nonce(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    reply = dispatcher.dispatch("las_refresh_nonce", user=ctx.admin)
    assert reply["success"], reply
    fresh = reply["data"]["nonce"]
    assert dispatcher.security.verify_nonce(fresh, "las_ajax_nonce", ctx.admin) == 1
    assert reply["data"]["expires_in"] == 43200


@registry.check(SUITE, "Health", "health check needs only a nonce")
def health(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    nonce = dispatcher.security.create_nonce("las_ajax_nonce", ctx.subscriber)
    reply = dispatcher.dispatch("las_health_check", nonce=nonce, user=ctx.subscriber)
    assert reply["success"] and reply["data"]["status"] == "ok", reply


@registry.check(SUITE, "Errors", "client errors logged and validated")
def log_error(ctx: ValidationContext):
    dispatcher = ctx.dispatcher()
    nonce = ctx.admin_nonce(dispatcher)
    short = dispatcher.dispatch("las_log_error", {"message": "x"}, nonce=nonce, user=ctx.admin)
    assert short["code"] == "invalid_error_message", short
    ok = dispatcher.dispatch(
        "las_log_error",
        {"message": "TypeError: foo is undefined", "line": "12", "source": "admin.js"},
        nonce=nonce,
        user=ctx.admin,
    )
    assert ok["success"] and ok["data"]["error_count_today"] == 1, ok
