"""Synchronous string key-value stores backing the token store.

:class:`KeyValueStore` is the narrow interface the engine depends on
(``get`` / ``set`` / ``delete``). Two implementations ship with the package:

- :class:`MemoryStore` -- a plain dict; state lives as long as the process.
- :class:`FileStore` -- a single JSON object on disk, rewritten atomically
  via :func:`tempfile.NamedTemporaryFile` and ``os.replace`` with ``0o600``
  permissions so that tokens are never world-readable, even momentarily.

Both are scoped by whoever constructs them. Two processes sharing one
:class:`FileStore` path are not coordinated: the last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. With *mode* the
    permissions are applied before any data is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


class KeyValueStore(Protocol):
    """Durable, synchronous, string-keyed storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-memory :class:`KeyValueStore`.

    Args:
        initial: Optional values to start with, e.g. a previous session's
            tokens.
    """

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStore:
    """JSON-file :class:`KeyValueStore` with atomic, owner-only writes.

    The whole file is re-read on every :meth:`get` so that a value written
    by another process is picked up, and rewritten on every mutation.

    Args:
        path: Location of the JSON file. Parent directories are created on
            first write.

    Example::

        store = FileStore(Path("~/.local/share/oauthspa/storage/aps.json").expanduser())
        store.set("client.OAuthRefreshToken", "r-123")
        assert store.get("client.OAuthRefreshToken") == "r-123"
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        """The filesystem path backing this store."""
        return self._path

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def clear(self) -> None:
        """Delete the backing file if it exists."""
        if self._path.is_file():
            self._path.unlink()

    def _load(self) -> dict[str, str]:
        """Read the file, returning an empty mapping when absent or unreadable."""
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable token storage %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring token storage %s: not a JSON object", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        # Tokens are never world-readable, not even in the temporary file
        atomic_write(self._path, json.dumps(data, indent=2, sort_keys=True) + "\n", mode=0o600)
