import io
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import msgspec
import orjson
from charset_normalizer import detect

from las.utils.cache import AtomicFileWriter
from las.utils.logger import logger

SUPPORTED_EXTS = {".json", ".txt", ".html", ".css", ".log"}


class FileHandler(ABC):
    @abstractmethod
    def read(self, path: Path | io.BytesIO, **kwargs) -> Any:
        """Read data from a file path or in-memory buffer and return the corresponding Python object.

        Args:
            path (Path | io.BytesIO): Filesystem path or byte buffer to read from.
            **kwargs: Additional format-specific read options.

        Returns:
            Any: Parsed object (e.g., dict, str).
        """
        pass

    @abstractmethod
    def save(self, obj: Any, path: Path, **kwargs) -> None:
        """Serialize and save an object to the given filesystem path.

        Args:
            obj (Any): Object to serialize and save.
            path (Path): Filesystem path where the object will be written.
            **kwargs: Additional format-specific save options.
        """
        pass

    def load_bytes(self, raw: bytes, **kwargs) -> Any:
        return self.read(io.BytesIO(raw), **kwargs)


def _write(path: Path, data: bytes, atomic: bool) -> None:
    if atomic:
        AtomicFileWriter.write_atomically(path, data)
    else:
        _ensure_dir(path)
        path.write_bytes(data)


class JSONHandler(FileHandler):
    """
    JSON handler: msgspec for reading and compact writes, orjson when an
    indented (human-facing) document is requested.
    """

    def __init__(self):
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder()

    def read(self, path: Path | io.BytesIO, **kwargs) -> Any:
        """
        Deserialize JSON content with msgspec.

        Args:
            path (Path | io.BytesIO): JSON file path or in-memory buffer.

        Returns:
            Any: Parsed JSON data as native Python types; `{}` for an empty file.
        """
        try:
            if isinstance(path, io.BytesIO):
                content = path.read()
            else:
                content = Path(path).read_bytes()

            if not content:
                return {}

            return self._decoder.decode(content)
        except msgspec.DecodeError as e:
            logger.error(f"Failed to parse JSON on path {path}: {e}")
            raise

    def save(self, obj: Any, path: Path, **kwargs) -> None:
        """
        Serialize an object to JSON.

        Args:
            obj (Any): Object to serialize.
            path (Path): Destination file path.
            **kwargs: 'indent' switches to orjson pretty output; 'atomic' writes
                through a temp file + lock.
        """
        if kwargs.get("indent", False):
            json_bytes = orjson.dumps(
                obj, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS
            )
        else:
            json_bytes = self._encoder.encode(obj)

        _write(path, json_bytes, kwargs.get("atomic", False))


class TextHandler(FileHandler):
    """Text handler; falls back to charset-normalizer when a file is not UTF-8."""

    def read(self, path: Path | io.BytesIO, **kwargs) -> str:
        if isinstance(path, io.BytesIO):
            raw = path.read()
        else:
            raw = Path(path).read_bytes()

        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            detection = detect(raw)
            encoding = detection.get("encoding") or "latin-1"
            return raw.decode(encoding, errors="ignore")

    def save(self, obj: Any, path: Path, **kwargs) -> None:
        _write(path, str(obj).encode("utf-8"), kwargs.get("atomic", False))


_HANDLER_REGISTRY: dict[str, FileHandler] = {
    ".json": JSONHandler(),
    ".txt": TextHandler(),
    ".html": TextHandler(),
    ".css": TextHandler(),
    ".log": TextHandler(),
}


def _ensure_dir(path: Path) -> None:
    """Ensure the parent directory of a given path exists, creating if necessary."""
    path.parent.mkdir(parents=True, exist_ok=True)


class FileManager:
    """Extension-dispatching file access plus the JSON helpers used across the toolkit."""

    @staticmethod
    def read(path: str | Path, **kwargs) -> Any:
        """Read a file and dispatch to the handler registered for its extension.

        Raises:
            ValueError: If the extension is not supported.
        """
        p = Path(path)
        handler = _HANDLER_REGISTRY.get(p.suffix.lower())
        if handler:
            return handler.read(p, **kwargs)
        raise ValueError(f"Unsupported extension: {p.suffix}")

    @staticmethod
    def save(obj: Any, path: str | Path, **kwargs) -> None:
        """Save an object to a given path by selecting the correct handler.

        Args:
            obj (Any): Object to save.
            path (str | Path): Destination file path.
            **kwargs: Options forwarded to handlers (`indent`, `atomic`).
        """
        p = Path(path)
        handler = _HANDLER_REGISTRY.get(p.suffix.lower())
        if handler:
            handler.save(obj, p, **kwargs)
            return
        raise ValueError(f"Unsupported extension: {p.suffix}")

    @staticmethod
    def get_timestamp() -> str:
        """Generate UTC timestamp."""
        return datetime.now(timezone.utc).isoformat(timespec="seconds")

    @staticmethod
    def json_dumps(obj: Any, *, sort_keys: bool = False, indent: bool = False) -> str:
        """
        Serialize a Python object to a JSON string.

        Args:
            obj: Python object to serialize (dict, list, etc.)
            sort_keys: Sort dictionary keys (for deterministic output)
            indent: Pretty-print with two-space indentation

        Example:
            >>> FileManager.json_dumps({"b": 2, "a": 1}, sort_keys=True)
            '{"a":1,"b":2}'
        """
        if not sort_keys and not indent:
            return msgspec.json.encode(obj).decode("utf-8")

        option = orjson.OPT_NON_STR_KEYS
        if sort_keys:
            option |= orjson.OPT_SORT_KEYS
        if indent:
            option |= orjson.OPT_INDENT_2
        return orjson.dumps(obj, option=option).decode("utf-8")

    @staticmethod
    def json_loads(s: str | bytes) -> Any:
        """
        Deserialize a JSON string to a Python object using msgspec.

        Raises:
            msgspec.DecodeError: If the input is not valid JSON.

        Example:
            >>> FileManager.json_loads('{"a": 1, "b": 2}')
            {'a': 1, 'b': 2}
        """
        if isinstance(s, str):
            s = s.encode("utf-8")
        return msgspec.json.decode(s)


__all__ = ["FileManager", "JSONHandler", "TextHandler", "SUPPORTED_EXTS"]
