from __future__ import annotations

import os
import shutil
import subprocess
import sys

from las import settings
from las.exceptions import FatalCheckError, MissingDependency
from las.utils.cache import RedisObjectCache
from las.utils.logger import catch
from las.validation.context import ValidationContext
from las.validation.registry import registry

SUITE = "environment"

# tool name → executables that satisfy it
TOOL_ALIASES: dict[str, tuple[str, ...]] = {
    "php": ("php",),
    "phpunit": ("phpunit", "vendor/bin/phpunit"),
    "node": ("node", "nodejs"),
    "npm": ("npm",),
    "chromium": ("chromium", "chromium-browser", "google-chrome", "google-chrome-stable"),
    "firefox": ("firefox",),
}


def locate(tool: str) -> str | None:
    for candidate in TOOL_ALIASES.get(tool, (tool,)):
        found = shutil.which(candidate)
        if found:
            return found
    return None


@catch(default="version unknown", level="WARNING")
def tool_version(path: str) -> str:
    completed = subprocess.run(
        [path, "--version"], capture_output=True, text=True, timeout=10, check=False
    )
    lines = (completed.stdout or completed.stderr).strip().splitlines()
    return lines[0] if lines else "version unknown"


def _probe(ctx: ValidationContext, tool: str) -> tuple[bool, str]:
    path = locate(tool)
    if path is None:
        if tool in ctx.required_tools:
            raise FatalCheckError(f"required tool '{tool}' is not installed")
        return True, f"{tool} not found (optional)"
    return True, f"{tool_version(path)} [{path}]"


@registry.check(SUITE, "Runtime", "python version")
def python_version(ctx: ValidationContext):
    """Interpreter is 3.10 or newer."""
    assert sys.version_info >= (3, 10), f"Python 3.10+ required, found {sys.version.split()[0]}"
    return True, sys.version.split()[0]


@registry.check(SUITE, "Runtime", "reports directory writable")
def reports_writable(ctx: ValidationContext):
    target = settings.REPORTS_DIR
    target.mkdir(parents=True, exist_ok=True)
    assert os.access(target, os.W_OK), f"{target} is not writable"


@registry.check(SUITE, "Tooling", "php available")
def php_available(ctx: ValidationContext):
    return _probe(ctx, "php")


@registry.check(SUITE, "Tooling", "phpunit available")
def phpunit_available(ctx: ValidationContext):
    return _probe(ctx, "phpunit")


@registry.check(SUITE, "Tooling", "node available")
def node_available(ctx: ValidationContext):
    return _probe(ctx, "node")


@registry.check(SUITE, "Tooling", "npm available")
def npm_available(ctx: ValidationContext):
    return _probe(ctx, "npm")


@registry.check(SUITE, "Browsers", "browser available")
def browser_available(ctx: ValidationContext):
    """At least one browser for cross-browser runs, when one is required."""
    browsers = ("chromium", "firefox")
    found = {name: locate(name) for name in browsers}
    missing_required = [b for b in browsers if b in ctx.required_tools and not found[b]]
    if missing_required:
        raise FatalCheckError(f"required browser(s) not installed: {', '.join(missing_required)}")
    present = [name for name, path in found.items() if path]
    return True, ", ".join(present) if present else "no browser found (optional)"


@registry.check(SUITE, "Tooling", "required tools present")
def required_tools_present(ctx: ValidationContext):
    missing = [tool for tool in ctx.required_tools if locate(tool) is None]
    if missing:
        raise FatalCheckError(f"required tool(s) not installed: {', '.join(missing)}")
    return True, ", ".join(ctx.required_tools) or "none required"


@registry.check(SUITE, "Services", "object cache reachable")
def object_cache_reachable(ctx: ValidationContext):
    if not settings.USE_REDIS:
        return True, "Redis disabled (USE_REDIS=false)"
    if not RedisObjectCache(url=settings.REDIS_URL).ping():
        raise MissingDependency(f"Redis not reachable at {settings.REDIS_URL}")
    return True, settings.REDIS_URL
