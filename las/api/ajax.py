from __future__ import annotations

import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

import psutil

from las import settings
from las.api.models import AjaxResponse, ErrorCode, ResponseMeta
from las.exceptions import RequestError
from las.services.security import SecurityValidator, User, sanitize_text_field
from las.services.settings_storage import SettingsStorage
from las.services.styles import generate_admin_css
from las.utils.cache import CacheManager
from las.utils.file_manager import FileManager
from las.utils.logger import logger

"""
las.api.ajax
~~~~~~~~~~~~
Admin AJAX endpoints behind one dispatcher.

Every request runs the same gate before its handler: known action, nonce,
capability, rate limit. Every reply, success or failure, is wrapped in the
same envelope with `meta.request_id`, which is also bound to the log lines
written while the request was handled.
"""

NONCE_ACTION = "las_ajax_nonce"
ERROR_ALERT_THRESHOLD = 10
ERROR_COUNT_TTL = 86400


@dataclass
class ActionSpec:
    """Registration of one AJAX action and the checks guarding it."""

    name: str
    handler: Callable[[AjaxContext], Any]
    require_nonce: bool = True
    capability: str | None = "manage_options"
    rate_limited: bool = True


@dataclass
class AjaxContext:
    """What a handler sees of the request."""

    action: str
    user: User
    data: dict[str, Any] = field(default_factory=dict)
    should_refresh_nonce: bool = False


class AjaxDispatcher:
    """
    Routes admin AJAX actions to their handlers.

    Example:
        dispatcher = AjaxDispatcher()
        nonce = dispatcher.security.create_nonce(NONCE_ACTION, user)
        reply = dispatcher.dispatch("las_load_settings", nonce=nonce, user=user)
    """

    def __init__(
        self,
        storage: SettingsStorage | None = None,
        security: SecurityValidator | None = None,
        cache: CacheManager | None = None,
    ) -> None:
        if cache is None:
            cache = storage.cache if storage is not None else CacheManager.from_settings()
        self.cache = cache
        self.storage = storage if storage is not None else SettingsStorage(cache=cache)
        self.security = security if security is not None else SecurityValidator(cache)
        self._actions: dict[str, ActionSpec] = {}
        self._render_preview = self.cache.memoize(group=CacheManager.GROUP_PREVIEW)(
            generate_admin_css
        )

        self.register("las_save_settings", self.handle_save_settings)
        self.register("las_load_settings", self.handle_load_settings)
        self.register("las_get_preview_css", self.handle_get_preview_css)
        self.register("las_batch_save_settings", self.handle_batch_save_settings)
        self.register("las_reset_settings", self.handle_reset_settings)
        self.register("las_refresh_nonce", self.handle_refresh_nonce, require_nonce=False)
        self.register("las_health_check", self.handle_health_check, capability=None)
        self.register("las_log_error", self.handle_log_error)

    def register(
        self,
        name: str,
        handler: Callable[[AjaxContext], Any],
        *,
        require_nonce: bool = True,
        capability: str | None = "manage_options",
        rate_limited: bool = True,
    ) -> None:
        self._actions[name] = ActionSpec(name, handler, require_nonce, capability, rate_limited)

    @property
    def actions(self) -> list[str]:
        return sorted(self._actions)

    # ─── Dispatch ───

    def dispatch(
        self,
        action: str,
        data: Mapping[str, Any] | None = None,
        *,
        nonce: str | None = None,
        user: User | None = None,
    ) -> dict[str, Any]:
        """
        Handle one request and return the response envelope.

        Never raises: every failure becomes ``success=False`` with a code.
        """
        request_id = f"las_{secrets.token_hex(8)}"
        start = time.perf_counter()
        user = user or User.anonymous()

        with logger.contextualize(request_id=request_id):
            try:
                payload = self._process(action, dict(data or {}), nonce, user)
                success, message, code, extra = True, None, None, {}
            except RequestError as error:
                payload, success = None, False
                message, code, extra = error.message, error.code, error.extra
                logger.info(f"{action} rejected: {code}")
            except Exception as error:  # noqa: BLE001
                logger.opt(exception=error).error(f"Unhandled error in {action}: {error}")
                payload, success = None, False
                message = "An unexpected error occurred. Please try again."
                code, extra = ErrorCode.unexpected_error.value, {"retry_suggested": True}

            elapsed_ms = (time.perf_counter() - start) * 1000
            if elapsed_ms > settings.SLOW_REQUEST_MS:
                logger.warning(f"Slow AJAX request: {action} took {elapsed_ms:.0f}ms")

            response = AjaxResponse(
                success=success,
                data=payload,
                message=message,
                code=code,
                extra=extra,
                meta=ResponseMeta(
                    timestamp=FileManager.get_timestamp(),
                    execution_time_ms=round(elapsed_ms, 2),
                    memory_usage=psutil.Process().memory_info().rss,
                    request_id=request_id,
                ),
            )
            return response.to_dict()

    def _process(self, action: str, data: dict[str, Any], nonce: str | None, user: User) -> Any:
        spec = self._actions.get(action)
        if spec is None:
            raise RequestError(f"Unknown action: {action}", ErrorCode.unknown_action.value)

        should_refresh = False
        if spec.require_nonce:
            details = self.security.validate_nonce_with_details(nonce, NONCE_ACTION, user)
            if not details["valid"]:
                raise RequestError(
                    details["error_message"],
                    details["error_code"],
                    refresh_nonce=details["should_refresh"],
                    retry_after=1,
                )
            should_refresh = details["should_refresh"]

        if spec.capability and not self.security.check_capability(user, spec.capability):
            logger.warning(f"User {user.id} lacks '{spec.capability}' for {action}")
            raise RequestError(
                "You do not have sufficient permissions to perform this action.",
                ErrorCode.insufficient_permissions.value,
                required_capability=spec.capability,
            )

        if spec.rate_limited and not self.security.check_rate_limit(action, user):
            raise RequestError(
                "Too many requests. Please wait a moment and try again.",
                ErrorCode.rate_limited.value,
                retry_after=60,
            )

        ctx = AjaxContext(action=action, user=user, data=data, should_refresh_nonce=should_refresh)
        result = spec.handler(ctx)

        if should_refresh and isinstance(result, dict):
            result["nonce_status"] = {
                "should_refresh": True,
                "message": "Consider refreshing the security token",
            }
        return result

    # ─── Handlers ───

    def _settings_payload(self, raw: Any) -> dict[str, Any]:
        decoded = self.security.sanitize_ajax_input(raw, "json", None)
        if not isinstance(decoded, dict) or not decoded:
            raise RequestError("Invalid settings data.", ErrorCode.invalid_data.value)
        sanitized = self.security.sanitize_settings(decoded)
        if not sanitized:
            raise RequestError("No valid settings provided.", ErrorCode.invalid_data.value)
        return sanitized

    def handle_save_settings(self, ctx: AjaxContext) -> dict[str, Any]:
        sanitized = self._settings_payload(ctx.data.get("settings"))
        if not self.storage.save_settings(sanitized):
            raise RequestError("Failed to save settings.", ErrorCode.save_failed.value)
        logger.info(f"User {ctx.user.id} saved {len(sanitized)} settings")
        return {
            "message": "Settings saved successfully",
            "saved_count": len(sanitized),
            "settings": sanitized,
        }

    def handle_load_settings(self, ctx: AjaxContext) -> dict[str, Any]:
        keys = ctx.data.get("keys")
        if keys is not None and not isinstance(keys, list):
            keys = self.security.sanitize_ajax_input(keys, "json", None)
            if not isinstance(keys, list):
                raise RequestError("Invalid settings keys.", ErrorCode.invalid_data.value)
        loaded = self.storage.load_settings(keys or None)
        return {"settings": loaded, "count": len(loaded)}

    def handle_get_preview_css(self, ctx: AjaxContext) -> dict[str, Any]:
        defaults = self.storage.get_default_settings()
        options = self.storage.load_settings()
        processed = 1

        if "setting" in ctx.data and "value" in ctx.data:
            key = self.security.sanitize_ajax_input(ctx.data["setting"], "key")
            if key not in defaults:
                raise RequestError(
                    "Invalid setting key provided.", "invalid_setting", setting=key
                )
            options[key] = self.security.sanitize_setting_value(key, ctx.data["value"])
        elif "settings_batch" in ctx.data:
            batch = self.security.sanitize_ajax_input(ctx.data["settings_batch"], "json", None)
            if not isinstance(batch, dict):
                raise RequestError(
                    "Invalid settings batch data format.", "invalid_batch_format"
                )
            validated = {
                k: v for k, v in self.security.sanitize_settings(batch).items() if k in defaults
            }
            options = {**defaults, **validated}
            processed = len(validated)

        start = time.perf_counter()
        css = self._render_preview(options)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        return {
            "css": css,
            "performance": {
                "execution_time_ms": elapsed_ms,
                "settings_processed": processed,
                "cache_recommended": elapsed_ms > 200,
            },
        }

    def handle_batch_save_settings(self, ctx: AjaxContext) -> dict[str, Any]:
        sanitized = self._settings_payload(ctx.data.get("settings"))
        self.storage.queue_batch_save(sanitized)

        process_now = self.security.sanitize_boolean(ctx.data.get("process", True))
        processed = False
        if process_now:
            processed = self.storage.process_batch_queue()
            if not processed:
                raise RequestError("Failed to save settings batch.", ErrorCode.save_failed.value)

        return {
            "queued": len(sanitized),
            "processed": processed,
            "pending": len(self.storage.pending_batch),
        }

    def handle_reset_settings(self, ctx: AjaxContext) -> dict[str, Any]:
        if not self.storage.reset_settings():
            raise RequestError("Failed to reset settings.", ErrorCode.reset_failed.value)
        logger.info(f"User {ctx.user.id} reset settings to defaults")
        return {"message": "Settings reset to defaults", "settings": self.storage.load_settings()}

    def handle_refresh_nonce(self, ctx: AjaxContext) -> dict[str, Any]:
        return {
            "nonce": self.security.create_nonce(NONCE_ACTION, ctx.user),
            "expires_in": self.security.nonce_expires_in,
        }

    def handle_health_check(self, ctx: AjaxContext) -> dict[str, Any]:
        layers = self.cache.health()
        return {
            "status": "ok" if all(layer["ok"] for layer in layers.values()) else "degraded",
            "version": settings.PLUGIN_VERSION,
            "cache": layers,
            "cache_hit_rate": self.cache.get_metrics()["hit_rate_pct"],
        }

    def handle_log_error(self, ctx: AjaxContext) -> dict[str, Any]:
        sanitize = self.security.sanitize_ajax_input
        report = {
            "message": sanitize(ctx.data.get("message", ""), "text", "Unknown error"),
            "type": sanitize(ctx.data.get("type", "javascript"), "key", "javascript"),
            "source": sanitize(ctx.data.get("source", "unknown"), "text", "unknown"),
            "line": sanitize(ctx.data.get("line", 0), "int", 0),
            "column": sanitize(ctx.data.get("column", 0), "int", 0),
            "stack": sanitize(ctx.data.get("stack", ""), "textarea", ""),
            "url": sanitize(ctx.data.get("url", ""), "url", ""),
        }
        if len(report["message"]) < 3:
            raise RequestError(
                "Error message is required and must be at least 3 characters.",
                ErrorCode.invalid_error_message.value,
            )

        logger.bind(client_error=report).error(
            f"Client error from user {ctx.user.id}: {sanitize_text_field(report['message'])} "
            f"({report['source']}:{report['line']}:{report['column']})"
        )

        day = time.strftime("%Y-%m-%d", time.gmtime(self.cache.now()))
        count_key = f"error_count_{ctx.user.id}_{day}"
        count = int(self.cache.get(count_key, CacheManager.GROUP_USER_STATE, 0)) + 1
        self.cache.set(count_key, count, ERROR_COUNT_TTL, CacheManager.GROUP_USER_STATE)

        should_alert = count >= ERROR_ALERT_THRESHOLD
        if should_alert:
            logger.warning(f"User {ctx.user.id} has reported {count} errors today")

        return {
            "logged": True,
            "error_count_today": count,
            "should_show_support_notice": should_alert,
        }
