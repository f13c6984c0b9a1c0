from __future__ import annotations

import hmac
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from hashlib import blake2b
from typing import Any, Callable
from urllib.parse import urlsplit

import msgspec

from las import settings
from las.utils.cache import CacheManager, sanitize_key
from las.utils.logger import logger

"""
Nonce, capability and input-sanitization rules guarding the AJAX layer.

Nonces follow the WordPress scheme: the lifetime is split in two ticks and a
nonce stays valid for the tick it was issued in (result 1) and the next one
(result 2, valid but due for a refresh).
"""

NONCE_LENGTH = 10
RATE_LIMIT_WINDOW = 60
RATE_LIMIT_TTL = 120
MAX_KEY_LENGTH = 100

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "administrator": frozenset(
        {
            "manage_options",
            "edit_theme_options",
            "edit_dashboard",
            "edit_posts",
            "edit_others_posts",
            "publish_posts",
            "upload_files",
            "read",
        }
    ),
    "editor": frozenset(
        {"edit_posts", "edit_others_posts", "publish_posts", "upload_files", "read"}
    ),
    "author": frozenset({"edit_posts", "publish_posts", "upload_files", "read"}),
    "contributor": frozenset({"edit_posts", "read"}),
    "subscriber": frozenset({"read"}),
}

ALLOWED_CSS_PROPERTIES = frozenset(
    {
        "color", "background-color", "background", "background-image",
        "font-size", "font-family", "font-weight", "font-style",
        "margin", "margin-top", "margin-right", "margin-bottom", "margin-left",
        "padding", "padding-top", "padding-right", "padding-bottom", "padding-left",
        "border", "border-top", "border-right", "border-bottom", "border-left",
        "border-color", "border-width", "border-style", "border-radius",
        "width", "height", "max-width", "max-height", "min-width", "min-height",
        "display", "position", "top", "right", "bottom", "left", "z-index",
        "opacity", "visibility", "overflow", "text-align", "text-decoration",
        "line-height", "letter-spacing", "word-spacing", "text-transform",
        "box-shadow", "text-shadow", "transform", "transition",
    }
)  # fmt: skip

DANGEROUS_CSS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"javascript\s*:",
        r"expression\s*\(",
        r"@import",
        r"behavior\s*:",
        r"-moz-binding",
        r"vbscript\s*:",
        r"data\s*:",
        r"url\s*\(\s*[\"']?\s*javascript",
        r"url\s*\(\s*[\"']?\s*data",
        r"url\s*\(\s*[\"']?\s*vbscript",
    )
]

SQL_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(\bUNION\b|\bSELECT\b|\bINSERT\b|\bUPDATE\b|\bDELETE\b|\bDROP\b|\bCREATE\b|\bALTER\b)",
        r"(\bOR\b|\bAND\b)\s+\d+\s*=\s*\d+",
        r"['\";].*(\bOR\b|\bAND\b).*['\";]",
        r"\b(EXEC|EXECUTE)\b",
        r"\b(SCRIPT|JAVASCRIPT|VBSCRIPT)\b",
    )
]

NAMED_COLORS = frozenset(
    {
        "transparent", "inherit", "initial", "unset",
        "black", "white", "red", "green", "blue", "yellow", "cyan", "magenta",
        "gray", "grey", "darkgray", "darkgrey", "lightgray", "lightgrey",
        "orange", "purple", "brown", "pink", "lime", "navy", "teal", "silver",
    }
)  # fmt: skip

_FONT_FAMILIES = ["default", "arial", "helvetica", "times", "courier", "georgia", "verdana", "google"]
SELECT_OPTIONS: dict[str, list[str]] = {
    "admin_menu_bg_type": ["solid", "gradient", "image"],
    "admin_bar_bg_type": ["solid", "gradient", "image"],
    "body_bg_type": ["solid", "gradient", "image"],
    "menu_font_family": _FONT_FAMILIES,
    "admin_menu_font_family": _FONT_FAMILIES,
    "admin_bar_font_family": _FONT_FAMILIES,
    "body_font_family": _FONT_FAMILIES,
    "admin_menu_shadow_type": ["none", "basic", "advanced"],
    "admin_bar_shadow_type": ["none", "basic", "advanced"],
}

_HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{3}|[A-Fa-f0-9]{6})$")
_RGB = re.compile(r"^rgb\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*\)$", re.IGNORECASE)
_RGBA = re.compile(r"^rgba\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*([\d.]+)\s*\)$", re.IGNORECASE)
_HSL = re.compile(r"^hsl\(\s*(\d+)\s*,\s*(\d+)%\s*,\s*(\d+)%\s*\)$", re.IGNORECASE)
_HSLA = re.compile(r"^hsla\(\s*(\d+)\s*,\s*(\d+)%\s*,\s*(\d+)%\s*,\s*([\d.]+)\s*\)$", re.IGNORECASE)

_SCRIPT_STYLE = re.compile(r"<(script|style)[^>]*?>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]*>")
_OCTETS = re.compile(r"%[a-fA-F0-9]{2}")
_CSS_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_CSS_LENGTH = re.compile(r"^-?\d+(\.\d+)?(px|em|rem|%|vh|vw|pt|pc|in|cm|mm|ex|ch)?$", re.IGNORECASE)
_CSS_FONT_FAMILY = re.compile(r"^[a-zA-Z0-9\s\-_,\"'()]+$")
_CSS_GENERIC_VALUE = re.compile(r"^[a-zA-Z0-9\s\-_#%.,()]+$")
_NUMERIC = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")
_EMAIL = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)+$")
_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_\-]")
_TRUTHY = {"1", "true", "on", "yes"}


@dataclass(frozen=True)
class User:
    """A site user; capabilities come from the roles."""

    id: int
    login: str = ""
    roles: tuple[str, ...] = field(default_factory=tuple)

    def can(self, capability: str) -> bool:
        return any(capability in ROLE_CAPABILITIES.get(role, ()) for role in self.roles)

    @classmethod
    def administrator(cls, user_id: int = 1, login: str = "admin") -> User:
        return cls(id=user_id, login=login, roles=("administrator",))

    @classmethod
    def anonymous(cls) -> User:
        return cls(id=0)


# ─── Text helpers (WordPress sanitizers) ───


def strip_all_tags(text: str) -> str:
    return _TAGS.sub("", _SCRIPT_STYLE.sub("", text))


def sanitize_text_field(value: Any) -> str:
    """Strip tags, octets and line breaks; collapse whitespace."""
    text = strip_all_tags(str(value))
    text = _OCTETS.sub("", text)
    return re.sub(r"[\r\n\t ]+", " ", text).strip()


def sanitize_textarea_field(value: Any) -> str:
    """Like `sanitize_text_field` but keeps line breaks."""
    lines = strip_all_tags(str(value)).splitlines()
    return "\n".join(re.sub(r"[\t ]+", " ", _OCTETS.sub("", line)).strip() for line in lines).strip()


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _alpha(raw: str) -> str:
    try:
        alpha = _clamp(float(raw), 0, 1)
    except ValueError:
        alpha = 0.0
    return f"{alpha:g}"


class SecurityValidator:
    """
    Nonces, capabilities, sanitization and rate limiting.

    Args:
        cache: Cache facade holding the rate-limit counters (group ``security``)
        secret: Key for nonce hashing
        nonce_lifetime: Nonce lifetime in seconds, two ticks per lifetime
        clock: Time source; defaults to the cache's clock
    """

    def __init__(
        self,
        cache: CacheManager | None = None,
        *,
        secret: str | None = None,
        nonce_lifetime: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.cache = cache if cache is not None else CacheManager.from_settings()
        self._secret = (secret or settings.SECRET_KEY).encode("utf-8")
        self.nonce_lifetime = nonce_lifetime or settings.NONCE_LIFETIME
        self._clock = clock or self.cache.now

    # ─── Nonces ───

    @property
    def nonce_expires_in(self) -> int:
        """Seconds a freshly issued nonce is guaranteed to stay in its first tick."""
        return self.nonce_lifetime // 2

    def nonce_tick(self) -> int:
        return math.ceil(self._clock() / (self.nonce_lifetime / 2))

    def _nonce_for_tick(self, tick: int, action: str, user: User) -> str:
        payload = f"{tick}|{action}|{user.id}".encode("utf-8")
        digest = blake2b(payload, key=self._secret[:64], digest_size=16).hexdigest()
        return digest[-12:][:NONCE_LENGTH]

    def create_nonce(self, action: str, user: User) -> str:
        return self._nonce_for_tick(self.nonce_tick(), action, user)

    def verify_nonce(self, nonce: Any, action: str, user: User) -> int:
        """
        Verify a nonce.

        Returns:
            1 when issued in the current tick, 2 when issued in the previous
            one, 0 when invalid
        """
        if not nonce or not action or not isinstance(nonce, str):
            return 0

        tick = self.nonce_tick()
        if hmac.compare_digest(self._nonce_for_tick(tick, action, user), nonce):
            return 1
        if hmac.compare_digest(self._nonce_for_tick(tick - 1, action, user), nonce):
            return 2
        return 0

    def validate_nonce_with_details(self, nonce: Any, action: str, user: User) -> dict[str, Any]:
        if not nonce:
            return {
                "valid": False,
                "error_code": "missing_nonce",
                "error_message": "Security token is missing. Please refresh the page.",
                "should_refresh": True,
            }

        result = self.verify_nonce(nonce, action, user)
        if result == 0:
            logger.warning(f"Invalid nonce for action '{action}' (user {user.id})")
            return {
                "valid": False,
                "error_code": "invalid_nonce",
                "error_message": "Security token has expired. Please refresh the page.",
                "should_refresh": True,
            }

        return {
            "valid": True,
            "error_code": None,
            "error_message": None,
            "should_refresh": result == 2,
        }

    # ─── Capabilities ───

    @staticmethod
    def check_capability(user: User | None, capability: str = "manage_options") -> bool:
        return user is not None and user.can(capability)

    # ─── Settings sanitization ───

    def sanitize_settings(self, values: Any) -> dict[str, Any]:
        if not isinstance(values, Mapping):
            return {}

        sanitized: dict[str, Any] = {}
        for key, value in values.items():
            clean_key = self.sanitize_setting_key(key)
            if clean_key:
                sanitized[clean_key] = self.sanitize_setting_value(clean_key, value)
        return sanitized

    @staticmethod
    def sanitize_setting_key(key: Any) -> str:
        return _KEY_CHARS.sub("", str(key))[:MAX_KEY_LENGTH]

    @staticmethod
    def get_setting_type(key: str) -> str:
        if "_color" in key:
            return "color"
        if key.startswith("enable_") or "_enabled" in key or key in ("admin_menu_detached", "admin_bar_detached"):
            return "boolean"
        if "custom_css" in key or "_shadow" in key:
            return "css"
        if any(part in key for part in ("_logo", "_url", "_image")):
            return "url"
        if any(
            part in key
            for part in ("_size", "_width", "_height", "_radius", "_margin", "_padding", "_offset", "_blur", "_spread")
        ):
            return "number"
        if any(part in key for part in ("_type", "_family", "_style")):
            return "select"
        if "_description" in key or "_content" in key:
            return "textarea"
        return "text"

    def sanitize_setting_value(self, key: str, value: Any) -> Any:
        kind = self.get_setting_type(key)
        if kind == "color":
            return self.sanitize_color(value)
        if kind == "css":
            return self.sanitize_css(value)
        if kind == "url":
            return self.sanitize_url(value)
        if kind == "number":
            return self.sanitize_number(value)
        if kind == "boolean":
            return self.sanitize_boolean(value)
        if kind == "select":
            return self.sanitize_select(key, value)
        if kind == "textarea":
            return sanitize_textarea_field(value)
        return sanitize_text_field(value)

    @staticmethod
    def sanitize_color(color: Any) -> str:
        """Normalize a CSS colour; anything unrecognised becomes ``""``."""
        if not color or not isinstance(color, str):
            return ""
        color = color.strip()

        if _HEX_COLOR.match(color):
            return color.lower()

        if match := _RGB.match(color):
            r, g, b = (int(_clamp(int(v), 0, 255)) for v in match.groups())
            return f"rgb({r}, {g}, {b})"

        if match := _RGBA.match(color):
            r, g, b = (int(_clamp(int(v), 0, 255)) for v in match.groups()[:3])
            return f"rgba({r}, {g}, {b}, {_alpha(match.group(4))})"

        if match := _HSL.match(color):
            h = int(_clamp(int(match.group(1)), 0, 360))
            sat, light = (int(_clamp(int(v), 0, 100)) for v in match.groups()[1:])
            return f"hsl({h}, {sat}%, {light}%)"

        if match := _HSLA.match(color):
            h = int(_clamp(int(match.group(1)), 0, 360))
            sat, light = (int(_clamp(int(v), 0, 100)) for v in match.groups()[1:3])
            return f"hsla({h}, {sat}%, {light}%, {_alpha(match.group(4))})"

        if color.lower() in NAMED_COLORS:
            return color.lower()
        return ""

    def sanitize_css(self, css: Any) -> str:
        """Keep whitelisted ``property: value`` declarations with safe values."""
        if not css or not isinstance(css, str):
            return ""

        for pattern in DANGEROUS_CSS_PATTERNS:
            css = pattern.sub("", css)
        css = _CSS_COMMENT.sub("", strip_all_tags(css))

        safe: list[str] = []
        for rule in css.split(";"):
            rule = rule.strip()
            if ":" not in rule:
                continue
            prop, value = (part.strip() for part in rule.split(":", 1))
            prop = prop.lower()
            if prop in ALLOWED_CSS_PROPERTIES and value and self._valid_css_value(prop, value):
                safe.append(f"{prop}: {value};")
        return " ".join(safe)

    def _valid_css_value(self, prop: str, value: str) -> bool:
        if any(pattern.search(value) for pattern in DANGEROUS_CSS_PATTERNS):
            return False
        if prop in ("color", "background-color", "border-color"):
            return bool(self.sanitize_color(value))
        if any(part in prop for part in ("size", "width", "height", "margin", "padding")):
            return bool(_CSS_LENGTH.match(value))
        if prop == "font-family":
            return bool(_CSS_FONT_FAMILY.match(value))
        return bool(_CSS_GENERIC_VALUE.match(value))

    @staticmethod
    def sanitize_url(url: Any) -> str:
        if not url or not isinstance(url, str):
            return ""
        url = re.sub(r"[\s\x00-\x1f\x7f<>\"'`]", "", url)
        if url.lower().startswith("data:image/"):
            return url
        parts = urlsplit(url)
        if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
            return ""
        return url

    @staticmethod
    def sanitize_number(value: Any) -> int:
        if isinstance(value, bool):
            return 0
        if isinstance(value, (int, float)):
            return int(value) if math.isfinite(value) else 0
        if isinstance(value, str) and _NUMERIC.match(value):
            return int(float(value))
        return 0

    @staticmethod
    def sanitize_boolean(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value == 1
        return str(value).strip().lower() in _TRUTHY

    @staticmethod
    def sanitize_select(key: str, value: Any) -> str:
        allowed = SELECT_OPTIONS.get(key)
        if allowed is None:
            return sanitize_text_field(value)
        if value in allowed:
            return sanitize_text_field(value)
        return allowed[0]

    # ─── AJAX input ───

    def sanitize_ajax_input(self, value: Any, kind: str = "text", default: Any = "") -> Any:
        """Coerce one raw request value to `kind`, falling back to `default`."""
        if kind == "json":
            if isinstance(value, (dict, list)):
                return value
            try:
                decoded = msgspec.json.decode(str(value).encode("utf-8"))
            except msgspec.DecodeError:
                return default
            return decoded if isinstance(decoded, (dict, list)) else default
        if kind in ("int", "integer"):
            return self.sanitize_number(value) if self._is_numeric(value) else default
        if kind == "float":
            return float(value) if self._is_numeric(value) else default
        if kind in ("bool", "boolean"):
            return self.sanitize_boolean(value)
        if kind == "email":
            text = str(value).strip()
            return text if _EMAIL.match(text) else default
        if kind == "url":
            return self.sanitize_url(value)
        if kind == "color":
            return self.sanitize_color(value)
        if kind == "css":
            return self.sanitize_css(value)
        if kind == "key":
            return sanitize_key(value)
        if kind == "textarea":
            return sanitize_textarea_field(value)
        return sanitize_text_field(value)

    @staticmethod
    def _is_numeric(value: Any) -> bool:
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return True
        return isinstance(value, str) and bool(_NUMERIC.match(value))

    @staticmethod
    def has_sql_injection(text: Any) -> bool:
        if not isinstance(text, str):
            return False
        return any(pattern.search(text) for pattern in SQL_INJECTION_PATTERNS)

    # ─── Rate limiting ───

    def check_rate_limit(self, action: str, user: User, limit: int | None = None) -> bool:
        """Count one request; False once `limit` requests were seen this minute."""
        limit = limit if limit is not None else settings.RATE_LIMIT_PER_MINUTE
        key = f"rate_limit_{action}_{user.id}"
        current_minute = int(self._clock() // RATE_LIMIT_WINDOW)

        requests = self.cache.get(key, CacheManager.GROUP_SECURITY)
        if not isinstance(requests, dict) or requests.get("minute") != current_minute:
            requests = {"minute": current_minute, "count": 0}

        requests["count"] += 1
        self.cache.set(key, requests, RATE_LIMIT_TTL, CacheManager.GROUP_SECURITY)

        if requests["count"] > limit:
            logger.warning(f"Rate limit hit: {action} by user {user.id} ({requests['count']}/{limit})")
            return False
        return True
