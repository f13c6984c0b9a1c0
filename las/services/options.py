from __future__ import annotations

import copy
import threading
from pathlib import Path
from typing import Any

from las import settings
from las.utils.file_manager import FileManager
from las.utils.logger import logger


class OptionsStore:
    """
    Key/value option table, the `wp_options` analogue.

    Kept in memory and, when a path is given, mirrored to a JSON file that is
    rewritten atomically after every change.

    Example:
        options = OptionsStore(Path("options.json"))
        options.update_option("las_menu_text_color", "#ffffff")
    """

    def __init__(self, path: str | Path | None = None) -> None:
        if path is None:
            path = settings.OPTIONS_FILE
        self.path = Path(path) if path is not None else None
        self._options: dict[str, Any] = {}
        self._lock = threading.RLock()

        if self.path is not None and self.path.exists():
            loaded = FileManager.read(self.path)
            if isinstance(loaded, dict):
                self._options = loaded
                logger.debug(f"Loaded {len(loaded)} options from {self.path}")

    def get_option(self, name: str, default: Any = None) -> Any:
        with self._lock:
            if name not in self._options:
                return default
            return copy.deepcopy(self._options[name])

    def has_option(self, name: str) -> bool:
        return name in self._options

    def update_option(self, name: str, value: Any) -> bool:
        """Store `value`; returns False when it equals the stored one."""
        with self._lock:
            if name in self._options and self._options[name] == value:
                return False
            self._options[name] = copy.deepcopy(value)
            self._flush()
            return True

    def delete_option(self, name: str) -> bool:
        with self._lock:
            if name not in self._options:
                return False
            del self._options[name]
            self._flush()
            return True

    def names(self, prefix: str = "") -> list[str]:
        return [name for name in self._options if name.startswith(prefix)]

    def size_of(self, prefix: str = "") -> int:
        """Serialized size in bytes of the options under `prefix`."""
        return sum(
            len(FileManager.json_dumps(self._options[name])) for name in self.names(prefix)
        )

    def _flush(self) -> None:
        if self.path is None:
            return
        FileManager.save(self._options, self.path, indent=True, atomic=True)
