from __future__ import annotations

from las.api.ajax import NONCE_ACTION
from las.services.security import User
from las.validation.context import ValidationContext
from las.validation.registry import registry

SUITE = "security"


@registry.check(SUITE, "Nonce", "fresh nonce verifies in current tick")
def nonce_fresh(ctx: ValidationContext):
    security = ctx.security()
    nonce = security.create_nonce(NONCE_ACTION, ctx.admin)
    assert len(nonce) == 10, nonce
    assert security.verify_nonce(nonce, NONCE_ACTION, ctx.admin) == 1


@registry.check(SUITE, "Nonce", "nonce ages into second tick then expires")
def nonce_ageing(ctx: ValidationContext):
    security = ctx.security()
    nonce = security.create_nonce(NONCE_ACTION, ctx.admin)
    half = security.nonce_lifetime / 2
    ctx.clock.advance(half)
    assert security.verify_nonce(nonce, NONCE_ACTION, ctx.admin) == 2
    ctx.clock.advance(half)
    assert security.verify_nonce(nonce, NONCE_ACTION, ctx.admin) == 0


@registry.check(SUITE, "Nonce", "nonce bound to action and user")
def nonce_binding(ctx: ValidationContext):
    security = ctx.security()
    nonce = security.create_nonce(NONCE_ACTION, ctx.admin)
    assert security.verify_nonce(nonce, "other_action", ctx.admin) == 0
    assert security.verify_nonce(nonce, NONCE_ACTION, ctx.subscriber) == 0
    assert security.verify_nonce("", NONCE_ACTION, ctx.admin) == 0


@registry.check(SUITE, "Nonce", "nonce details report codes")
def nonce_details(ctx: ValidationContext):
    security = ctx.security()
    missing = security.validate_nonce_with_details("", NONCE_ACTION, ctx.admin)
    invalid = security.validate_nonce_with_details("0123456789", NONCE_ACTION, ctx.admin)
    assert missing["error_code"] == "missing_nonce" and missing["should_refresh"]
    assert invalid["error_code"] == "invalid_nonce" and not invalid["valid"]


@registry.check(SUITE, "Capabilities", "roles map to capabilities")
def capabilities(ctx: ValidationContext):
    security = ctx.security()
    assert security.check_capability(ctx.admin, "manage_options")
    assert not security.check_capability(ctx.subscriber, "manage_options")
    assert security.check_capability(ctx.subscriber, "read")
    assert not security.check_capability(User.anonymous(), "read")


@registry.check(SUITE, "Sanitization", "colors normalized")
def colors(ctx: ValidationContext):
    security = ctx.security()
    cases = {
        "#FF0000": "#ff0000",
        "#abc": "#abc",
        "rgb(300, -1, 12)": "",
        "rgb(300, 20, 12)": "rgb(255, 20, 12)",
        "rgba(10, 20, 30, 1.5)": "rgba(10, 20, 30, 1)",
        "hsl(400, 50%, 50%)": "hsl(360, 50%, 50%)",
        "Transparent": "transparent",
        "javascript:alert(1)": "",
        "#12345": "",
    }
    wrong = {raw: security.sanitize_color(raw) for raw, expected in cases.items() if security.sanitize_color(raw) != expected}
    assert not wrong, f"unexpected results: {wrong}"


@registry.check(SUITE, "Sanitization", "dangerous css stripped")
def css(ctx: ValidationContext):
    security = ctx.security()
    cleaned = security.sanitize_css(
        "color: #fff; background: url(javascript:alert(1)); behavior: x; <script>x</script>font-size: 12px"
    )
    assert "javascript" not in cleaned and "behavior" not in cleaned and "<script" not in cleaned
    assert "color: #fff;" in cleaned and "font-size: 12px;" in cleaned, cleaned


@registry.check(SUITE, "Sanitization", "settings sanitized by key type")
def settings_by_type(ctx: ValidationContext):
    security = ctx.security()
    cleaned = security.sanitize_settings(
        {
            "menu_text_color": "#ABCDEF",
            "menu_font_size": "15.7",
            "enable_live_preview": "yes",
            "admin_menu_bg_type": "plaid",
            "site_logo": "ftp://example.com/logo.png",
            "footer_text<b>": "<b>Hi</b>  there",
        }
    )
    assert cleaned["menu_text_color"] == "#abcdef"
    assert cleaned["menu_font_size"] == 15
    assert cleaned["enable_live_preview"] is True
    assert cleaned["admin_menu_bg_type"] == "solid"
    assert cleaned["site_logo"] == ""
    assert cleaned["footer_textb"] == "Hi there", cleaned


@registry.check(SUITE, "Sanitization", "sql injection detected")
def sql_injection(ctx: ValidationContext):
    security = ctx.security()
    assert security.has_sql_injection("1 OR 1=1")
    assert security.has_sql_injection("'; DROP TABLE wp_options; --")
    assert not security.has_sql_injection("#23282d")


@registry.check(SUITE, "Rate limiting", "rate limit blocks then resets")
def rate_limit(ctx: ValidationContext):
    security = ctx.security()
    allowed = [security.check_rate_limit("las_save_settings", ctx.admin, limit=3) for _ in range(4)]
    assert allowed == [True, True, True, False], allowed
    ctx.clock.advance(60)
    assert security.check_rate_limit("las_save_settings", ctx.admin, limit=3)
