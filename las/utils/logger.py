from __future__ import annotations

import importlib
import logging
import os
import sys
import time
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Callable, ParamSpec, TypeVar

from loguru import logger as _loguru_logger
from rich.logging import RichHandler
from rich.traceback import install as rich_tb_install

from las import settings

"""
las.utils.logger
~~~~~~~~~~~~~~~~
Unified logging for the toolkit: Rich console output plus a rotating file sink.

Quick Start
-----------
1. **Logging Setup**
    - The logger is pre-configured for both console (Rich) and rotating file output.
    ```python
    logger.info("Settings saved")
    ```
2. **Request context**
    - Bind the AJAX request id so every line of a request can be grepped.
    ```python
    with logger.contextualize(request_id=request_id):
        ...
    ```
3. **Timing Functions**
    ```python
    @timeit
    def load_settings():
         ...
    ```
4. **Catching Exceptions**
    ```python
    @catch(default=None)
    def might_fail():
         ...
    ```
5. **Silencing Noisy Libraries**
    ```python
    silence_libs("redis", "filelock", level="ERROR")
    ```

Environment Variables
---------------------
- `LOG_LEVEL`: Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO.
- `LOG_DIR`: Directory for log files. Default: settings.LOGS_DIR.
- `LOG_ROTATION`: Log rotation policy. Default: 50 MB.
- `LOG_RETENTION`: Log retention policy. Default: 14 days.
- `LOG_COMPRESSION`: Compression for rotated logs (zip, gz, bz2). Default: zip.
- `DISABLE_RICH`: Disable Rich console output if set.
- `RICH_THEME`: Rich traceback theme. Default: monokai.
"""


# ╭──────────────────────── Basic setup ───────────────────────╮ #

_loguru_logger.remove()
_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level:8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<cyan>[{extra[request_id]:^21}]</cyan> - "
    "<level>{message}</level>"
)

# ——— console (Rich) ——— #
_IS_TTY = "DISABLE_RICH" not in os.environ
if _IS_TTY:
    rich_tb_install(
        show_locals=False,
        theme=os.getenv("RICH_THEME", "monokai"),
    )
    _loguru_logger.add(
        RichHandler(
            rich_tracebacks=True,
            markup=False,
            show_path=False,
            highlighter=None,
        ),
        level=_LEVEL,
        format="{message}",
    )
else:
    _loguru_logger.add(sys.stderr, level=_LEVEL, format=FORMAT, colorize=True)

# ——— rotating file ——— #
LOG_DIR = Path(os.getenv("LOG_DIR", settings.LOGS_DIR)).expanduser()
LOG_DIR.mkdir(parents=True, exist_ok=True)
_loguru_logger.add(
    LOG_DIR / "las_{time:YYYY-MM-DD}.log",
    level="DEBUG",
    rotation=os.getenv("LOG_ROTATION", "50 MB"),
    retention=os.getenv("LOG_RETENTION", "14 days"),
    compression=os.getenv("LOG_COMPRESSION", "zip"),
    enqueue=True,
    backtrace=False,
    format=FORMAT,
)

logger = _loguru_logger  # reexport

# ╰────────────────────────────────────────────────────────────╯ #

P = ParamSpec("P")
R = TypeVar("R")


def timeit(fn: Callable[P, R]) -> Callable[P, R]:
    """
    Decorator that logs the execution time of the decorated function at debug level.
    Args:
        fn (Callable[P, R]): The function to be decorated.
    Returns:
        Callable[P, R]: The wrapped function.
    """

    @wraps(fn)
    def _wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[name-defined]
        t0 = time.perf_counter()
        result: R = fn(*args, **kwargs)
        logger.debug(
            f"{fn.__qualname__} took {(time.perf_counter() - t0) * 1000:,.1f} ms"
        )
        return result

    return _wrapper


def catch(
    *, reraise: bool = False, default: R | None = None, level: str = "ERROR"
) -> Callable[[Callable[P, R]], Callable[P, R | None]]:
    """
    Catch exceptions raised by the decorated function, log them, and either
    reraise or return `default`.
    Args:
        reraise (bool, optional): Re-raise after logging. Defaults to False.
        default (R | None, optional): Value returned when the exception is swallowed.
        level (str, optional): Log level used for the exception. Defaults to "ERROR".
    Example:
        @catch(default=False, level="WARNING")
        def ping_redis():
            ...
    """

    def _decor(fn: Callable[P, R]) -> Callable[P, R | None]:
        @wraps(fn)
        def _inner(*args: P.args, **kwargs: P.kwargs):  # type: ignore[name-defined]
            try:
                return fn(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                logger.opt(exception=exc).log(level, f"Error in {fn.__qualname__}: {exc}")
                if reraise:
                    raise
                return default

        return _inner

    return _decor


def silence_libs(*modules: str, level: str = "WARNING") -> None:
    lvl = getattr(logging, level.upper(), logging.WARNING)
    for name in modules:
        try:
            mod = importlib.import_module(name)
            logging.getLogger(mod.__name__).setLevel(lvl)
        except ModuleNotFoundError:
            continue


def local_timestamp() -> str:
    return datetime.now(tz=timezone.utc).astimezone().isoformat(timespec="seconds")


debug = logger.debug
info = logger.info
warning = logger.warning
error = logger.error
exception = logger.exception
critical = logger.critical
logger.configure(extra={"request_id": "MAIN"})

__all__ = [
    "logger",
    "timeit",
    "catch",
    "silence_libs",
    "local_timestamp",
    "debug",
    "info",
    "warning",
    "error",
    "exception",
    "critical",
]
