"""
kvstore.py – Persistent key-value stores.

The vault core never touches the filesystem directly; it talks to a
key-value store with three operations:

    get(key)        -> bytes or None when the key is absent
    set(key, value) -> replace the value wholesale
    remove(key)     -> delete the key (no error if absent)

Two implementations are provided:

  FileKeyValueStore   – one file per key inside a private directory.
                        Writes go to a *.tmp* companion first and are then
                        moved into place with os.replace(), so a reader
                        never observes a half-written value.
  MemoryKeyValueStore – a dict; used by the test-suite and for throwaway
                        sessions.

Every I/O failure is reported as PersistenceError.
"""

import logging
import os
import re
from typing import Dict, Optional, Protocol

from errors import PersistenceError

logger = logging.getLogger("PasswordSaver")

# Store keys map directly onto file names, so only a safe subset is allowed.
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Structural interface shared by every store implementation."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryKeyValueStore:
    """In-memory store; values are copied in and out as immutable bytes."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        self._data: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileKeyValueStore:
    """
    Durable store backed by a directory with one file per key.

    Parameters
    ----------
    directory : str
        Directory holding the entries.  Created (mode 0o700) if missing.
    """

    def __init__(self, directory: str) -> None:
        self.directory = directory
        try:
            os.makedirs(directory, mode=0o700, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create store directory {directory}") from exc

    def _path(self, key: str) -> str:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return os.path.join(self.directory, key)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.exception("Failed to read store key %s", key)
            raise PersistenceError(f"Cannot read {key}", key=key) from exc

    def set(self, key: str, value: bytes) -> None:
        """
        Replace the value of *key* atomically.

        The new bytes are written and flushed to a temporary companion file
        which then replaces the original with os.replace().  On failure the
        temporary file is removed and the previous value stays intact.
        """
        path = self._path(key)
        tmp = path + ".tmp"
        try:
            with open(tmp, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError as exc:
            logger.exception("Failed to write store key %s", key)
            try:
                os.remove(tmp)
            except OSError:
                logger.debug("No temporary file to clean up for %s", key)
            raise PersistenceError(f"Cannot write {key}", key=key) from exc

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.exception("Failed to remove store key %s", key)
            raise PersistenceError(f"Cannot remove {key}", key=key) from exc
