from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# selector, property, setting key
PREVIEW_RULES: list[tuple[str, str, str]] = [
    ("#adminmenu, #adminmenuback, #adminmenuwrap", "background-color", "menu_background_color"),
    ("#adminmenu a", "color", "menu_text_color"),
    ("#adminmenu a:hover, #adminmenu li:hover > a", "color", "menu_hover_color"),
    ("#adminmenu li.current > a, #adminmenu .wp-has-current-submenu > a", "background-color", "menu_active_color"),
    ("#wpadminbar", "background", "adminbar_background"),
    ("#wpadminbar .ab-item, #wpadminbar a.ab-item", "color", "adminbar_text_color"),
    ("#wpadminbar .ab-item:hover", "color", "adminbar_hover_color"),
    ("#wpbody-content", "background-color", "content_background"),
    ("#wpbody-content", "color", "content_text_color"),
    ("#wpbody-content a", "color", "content_link_color"),
]

_UNIT_RULES: list[tuple[str, str, str]] = [
    ("#adminmenu a", "font-size", "menu_font_size"),
    ("#wpadminbar", "height", "adminbar_height"),
]


def generate_admin_css(options: Mapping[str, Any]) -> str:
    """
    Render the admin stylesheet for a settings mapping.

    Empty values are skipped; every declaration is ``!important`` so it wins
    over the core admin styles. Custom CSS is appended only when enabled.
    """
    lines: list[str] = []

    for selector, prop, key in PREVIEW_RULES:
        value = options.get(key)
        if value:
            lines.append(f"{selector} {{ {prop}: {value} !important; }}")

    for selector, prop, key in _UNIT_RULES:
        value = str(options.get(key) or "").strip()
        if value.isdigit():
            lines.append(f"{selector} {{ {prop}: {value}px !important; }}")

    family = options.get("menu_font_family")
    if family and family != "default":
        lines.append(f"#adminmenu {{ font-family: {family}, sans-serif !important; }}")

    if options.get("enable_custom_css") and options.get("custom_css"):
        lines.append(str(options["custom_css"]))

    return "\n".join(lines)
