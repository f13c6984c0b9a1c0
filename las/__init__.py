from importlib.metadata import version as _version

from .config import settings

"""
LAS – Live Admin Styler validation toolkit
==========================================

Server-side model of the Live Admin Styler plugin (TTL cache, settings
storage, nonce/capability security, AJAX dispatcher) plus the validation
runner that scores it.  Importing *las* only loads configuration; the
service layer and runner live in sub-modules.

Public objects
--------------
__version__ : str
    Semantic version string, filled at build time.
"""

settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)

__all__ = [
    "__version__",
    "settings",
]

try:
    __version__: str = _version("las-validation")
except Exception:
    __version__ = "2.0.0"
