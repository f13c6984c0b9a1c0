"""
Tests for the AJAX dispatcher (las/api/ajax.py)

Tests cover:
- Response envelope and request id
- Gate order: unknown action, nonce, capability, rate limit
- Settings handlers (save, load, batch, reset)
- Preview CSS, nonce refresh, health check, client error logging
- Handler failures mapped to error codes
"""

import re

import pytest

from las import settings
from las.api.ajax import NONCE_ACTION, AjaxDispatcher
from las.exceptions import RequestError
from las.utils.logger import logger

REQUEST_ID = re.compile(r"^las_[0-9a-f]{16}$")


@pytest.fixture
def call(dispatcher, admin, admin_nonce):
    """Dispatch as the administrator with a valid nonce."""

    def _call(action, data=None, **kwargs):
        kwargs.setdefault("nonce", admin_nonce)
        kwargs.setdefault("user", admin)
        return dispatcher.dispatch(action, data, **kwargs)

    return _call


# ═══════════════════════════════════════════════════════════════════
# Envelope
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestEnvelope:
    """Test the reply shape shared by every action."""

    def test_success_envelope(self, call):
        reply = call("las_load_settings")

        assert reply["success"] is True
        assert "data" in reply
        assert "code" not in reply
        meta = reply["meta"]
        assert REQUEST_ID.match(meta["request_id"])
        assert meta["execution_time_ms"] >= 0
        assert meta["memory_usage"] > 0
        assert meta["timestamp"]

    def test_error_envelope(self, call):
        reply = call("las_nope")

        assert reply["success"] is False
        assert reply["code"] == "unknown_action"
        assert reply["message"]
        assert "data" not in reply
        assert REQUEST_ID.match(reply["meta"]["request_id"])

    def test_request_ids_unique(self, call):
        ids = {call("las_load_settings")["meta"]["request_id"] for _ in range(5)}
        assert len(ids) == 5

    def test_request_id_bound_to_logs(self, call):
        records = []
        handler_id = logger.add(lambda message: records.append(message.record), level="INFO")
        try:
            reply = call("las_nope")
        finally:
            logger.remove(handler_id)

        request_id = reply["meta"]["request_id"]
        assert any(record["extra"].get("request_id") == request_id for record in records)

    def test_registered_actions(self, dispatcher):
        assert dispatcher.actions == sorted(
            [
                "las_batch_save_settings",
                "las_get_preview_css",
                "las_health_check",
                "las_load_settings",
                "las_log_error",
                "las_refresh_nonce",
                "las_reset_settings",
                "las_save_settings",
            ]
        )


# ═══════════════════════════════════════════════════════════════════
# Gate
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestGate:
    """Test the checks that run before any handler."""

    def test_unknown_action_checked_before_nonce(self, dispatcher, admin):
        reply = dispatcher.dispatch("las_drop_tables", user=admin)
        assert reply["code"] == "unknown_action"

    def test_missing_nonce(self, call):
        reply = call("las_save_settings", {"settings": {}}, nonce=None)
        assert reply["code"] == "missing_nonce"
        assert reply["refresh_nonce"] is True
        assert reply["retry_after"] == 1

    def test_invalid_nonce(self, call):
        reply = call("las_save_settings", {"settings": {}}, nonce="deadbeef00")
        assert reply["code"] == "invalid_nonce"
        assert reply["refresh_nonce"] is True

    def test_expired_nonce(self, call, clock, security):
        clock.advance(security.nonce_lifetime)
        assert call("las_load_settings")["code"] == "invalid_nonce"

    def test_ageing_nonce_flags_refresh(self, call, clock, security):
        clock.advance(security.nonce_expires_in)
        reply = call("las_load_settings")

        assert reply["success"] is True
        assert reply["data"]["nonce_status"]["should_refresh"] is True

    def test_nonce_checked_before_capability(self, dispatcher, subscriber):
        reply = dispatcher.dispatch("las_reset_settings", user=subscriber)
        assert reply["code"] == "missing_nonce"

    def test_capability_required(self, dispatcher, security, subscriber):
        nonce = security.create_nonce(NONCE_ACTION, subscriber)
        reply = dispatcher.dispatch("las_reset_settings", nonce=nonce, user=subscriber)

        assert reply["code"] == "insufficient_permissions"
        assert reply["required_capability"] == "manage_options"

    def test_anonymous_user_rejected(self, dispatcher, security):
        from las.services.security import User

        nonce = security.create_nonce(NONCE_ACTION, User.anonymous())
        reply = dispatcher.dispatch("las_load_settings", nonce=nonce)
        assert reply["code"] == "insufficient_permissions"

    def test_rate_limit(self, call, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_PER_MINUTE", 3)
        codes = [call("las_load_settings").get("code") for _ in range(4)]

        assert codes == [None, None, None, "rate_limited"]

    def test_rate_limit_resets_next_minute(self, call, clock, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_PER_MINUTE", 1)
        call("las_load_settings")
        assert call("las_load_settings")["retry_after"] == 60

        clock.advance(60)
        assert call("las_load_settings")["success"] is True


# ═══════════════════════════════════════════════════════════════════
# Settings handlers
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestSettingsHandlers:
    """Test save, load, batch and reset."""

    def test_save_then_load(self, call):
        saved = call(
            "las_save_settings",
            {"settings": '{"menu_text_color": "#ABCDEF", "menu_font_size": "16px"}'},
        )
        assert saved["success"] is True
        assert saved["data"]["saved_count"] == 2

        loaded = call("las_load_settings", {"keys": ["menu_text_color", "menu_font_size"]})
        assert loaded["data"]["settings"] == {"menu_text_color": "#abcdef", "menu_font_size": 0}
        assert loaded["data"]["count"] == 2

    def test_save_accepts_mapping(self, call):
        reply = call("las_save_settings", {"settings": {"menu_background_color": "red"}})
        assert reply["data"]["settings"] == {"menu_background_color": "red"}

    @pytest.mark.parametrize("payload", ["not json", "[]", "{}", None])
    def test_save_rejects_invalid_payload(self, call, payload):
        assert call("las_save_settings", {"settings": payload})["code"] == "invalid_data"

    def test_load_keys_as_json_string(self, call):
        reply = call("las_load_settings", {"keys": '["menu_text_color"]'})
        assert reply["data"]["settings"] == {"menu_text_color": "#ffffff"}

    def test_load_rejects_bad_keys(self, call):
        assert call("las_load_settings", {"keys": "menu_text_color"})["code"] == "invalid_data"

    def test_batch_save(self, call, storage):
        reply = call("las_batch_save_settings", {"settings": {"menu_font_size": "18"}, "process": "0"})
        assert reply["data"] == {"queued": 1, "processed": False, "pending": 1}

        reply = call("las_batch_save_settings", {"settings": {"menu_text_color": "#000"}})
        assert reply["data"] == {"queued": 1, "processed": True, "pending": 0}
        assert storage.get_setting("menu_font_size") == 18

    def test_reset(self, call, storage):
        call("las_save_settings", {"settings": {"menu_text_color": "#000000"}})
        reply = call("las_reset_settings")

        assert reply["success"] is True
        assert reply["data"]["settings"]["menu_text_color"] == "#ffffff"
        assert storage.get_setting("menu_text_color") == "#ffffff"


# ═══════════════════════════════════════════════════════════════════
# Other handlers
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestPreviewCss:
    """Test live preview CSS generation."""

    def test_single_setting(self, call):
        reply = call("las_get_preview_css", {"setting": "menu_background_color", "value": "#123456"})

        assert reply["success"] is True
        assert "background-color: #123456 !important" in reply["data"]["css"]
        assert reply["data"]["performance"]["settings_processed"] == 1

    def test_unknown_setting_rejected(self, call):
        reply = call("las_get_preview_css", {"setting": "not_a_setting", "value": "x"})
        assert reply["code"] == "invalid_setting"
        assert reply["setting"] == "not_a_setting"

    def test_batch(self, call):
        reply = call(
            "las_get_preview_css",
            {"settings_batch": '{"menu_text_color": "#010203", "unknown_key": "x"}'},
        )
        assert "#010203" in reply["data"]["css"]
        assert reply["data"]["performance"]["settings_processed"] == 1

    def test_batch_rejects_bad_format(self, call):
        assert call("las_get_preview_css", {"settings_batch": "nope"})["code"] == "invalid_batch_format"

    def test_preview_reflects_saved_settings(self, call):
        before = call("las_get_preview_css")["data"]["css"]
        call("las_save_settings", {"settings": {"menu_background_color": "#abcabc"}})
        after = call("las_get_preview_css")["data"]["css"]

        assert "#abcabc" not in before
        assert "#abcabc" in after


@pytest.mark.unit
class TestNonceAndHealth:
    """Test nonce refresh and the health endpoint."""

    def test_refresh_without_nonce(self, dispatcher, security, admin):
        reply = dispatcher.dispatch("las_refresh_nonce", user=admin)

        assert reply["success"] is True
        assert reply["data"]["expires_in"] == 43200
        assert security.verify_nonce(reply["data"]["nonce"], NONCE_ACTION, admin) == 1

    def test_refresh_still_requires_capability(self, dispatcher, subscriber):
        reply = dispatcher.dispatch("las_refresh_nonce", user=subscriber)
        assert reply["code"] == "insufficient_permissions"

    def test_health_for_subscriber(self, dispatcher, security, subscriber):
        nonce = security.create_nonce(NONCE_ACTION, subscriber)
        reply = dispatcher.dispatch("las_health_check", nonce=nonce, user=subscriber)

        assert reply["success"] is True
        assert reply["data"]["status"] == "ok"
        assert reply["data"]["cache"]["memory"]["ok"] is True


@pytest.mark.unit
class TestLogError:
    """Test client error reporting."""

    def test_short_message_rejected(self, call):
        assert call("las_log_error", {"message": "x"})["code"] == "invalid_error_message"

    def test_counts_errors_per_day(self, call):
        data = {"message": "TypeError: foo is undefined", "source": "admin.js", "line": "12"}
        first = call("las_log_error", data)
        second = call("las_log_error", data)

        assert first["data"]["logged"] is True
        assert first["data"]["error_count_today"] == 1
        assert second["data"]["error_count_today"] == 2
        assert second["data"]["should_show_support_notice"] is False

    def test_error_count_resets_next_day(self, call, clock, security, admin):
        call("las_log_error", {"message": "TypeError: foo"})
        assert call("las_log_error", {"message": "TypeError: foo"})["data"]["error_count_today"] == 2

        clock.advance(86400 - clock.now % 86400 + 1)  # just past the next UTC midnight
        nonce = security.create_nonce(NONCE_ACTION, admin)
        reply = call("las_log_error", {"message": "TypeError: foo"}, nonce=nonce)
        assert reply["data"]["error_count_today"] == 1

    def test_support_notice_after_threshold(self, call):
        for _ in range(9):
            call("las_log_error", {"message": "ReferenceError: x"})
        reply = call("las_log_error", {"message": "ReferenceError: x"})

        assert reply["data"]["error_count_today"] == 10
        assert reply["data"]["should_show_support_notice"] is True


# ═══════════════════════════════════════════════════════════════════
# Handler failures
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.unit
class TestHandlerFailures:
    """Test exceptions raised inside handlers."""

    def test_request_error_keeps_code_and_extras(self, call, dispatcher):
        def handler(ctx):
            raise RequestError("Quota exceeded.", "quota_exceeded", limit=5)

        dispatcher.register("las_quota", handler)
        reply = call("las_quota")

        assert reply["code"] == "quota_exceeded"
        assert reply["message"] == "Quota exceeded."
        assert reply["limit"] == 5

    def test_unexpected_error(self, call, dispatcher):
        def handler(ctx):
            raise ZeroDivisionError("division by zero")

        dispatcher.register("las_boom", handler)
        reply = call("las_boom")

        assert reply["success"] is False
        assert reply["code"] == "unexpected_error"
        assert reply["retry_suggested"] is True
        assert "division" not in reply["message"]

    def test_default_construction_shares_cache(self, storage):
        dispatcher = AjaxDispatcher(storage)
        assert dispatcher.cache is storage.cache
        assert dispatcher.security.cache is storage.cache
