"""
Client Persistence.

The client persists outbound messages that have not yet been acknowledged so they
survive a disconnect or a process restart. The store is a simple key/value
contract (``ClientPersistence``) scoped to a (client_id, server_uri) pair.

Implementations:
    - MemoryPersistence: in-process dictionary; no durability across restarts
    - FilePersistence: one directory per scope, one file per key

Writes are scatter-gather: ``put(key, [b1, b2, ...])`` stores the concatenation
and ``get(key)`` returns it as a single value. Subclasses of FilePersistence can
override ``encode()``/``decode()`` to transform the stored bytes (e.g. encrypt);
the transform is applied to the concatenated value, so a stream cipher sees the
same byte offsets on write and read.

Example:
    >>> store = FilePersistence("persist")
    >>> store.open("sensor-01", "mqtt://localhost:1883")
    >>> store.put("m-0000000001", [b"header", b"\\n", b"payload"])
    >>> store.get("m-0000000001")
    b'header\\npayload'
"""
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

Buffers = Iterable["bytes | bytearray | memoryview | str"]


def _join_buffers(buffers: Buffers) -> bytes:
    if isinstance(buffers, (bytes, bytearray, memoryview, str)):
        buffers = [buffers]
    parts = []
    for buf in buffers:
        parts.append(buf.encode("utf-8") if isinstance(buf, str) else bytes(buf))
    return b"".join(parts)


class ClientPersistence(ABC):
    """
    Abstract key/value store for durable client state.

    All methods are synchronous. The client serializes calls, so implementations
    do not need to be thread-safe.
    """

    @abstractmethod
    def open(self, client_id: str, server_uri: str) -> None:
        """Initialize the store for (client_id, server_uri). Raise PersistenceError on empty ids."""

    @abstractmethod
    def close(self) -> None:
        """Release resources. The store may be reopened later."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry in the current scope."""

    @abstractmethod
    def contains_key(self, key: str) -> bool:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...

    @abstractmethod
    def put(self, key: str, buffers: Buffers) -> None:
        """Atomically store the concatenation of ``buffers`` under ``key``."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the value for ``key``. Raise PersistenceError if missing."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove ``key`` if present."""


class MemoryPersistence(ClientPersistence):
    """Dictionary-backed persistence. Data lives only as long as the process."""

    def __init__(self):
        self._store: dict[str, bytes] = {}
        self._is_open = False

    def open(self, client_id: str, server_uri: str) -> None:
        if not client_id or not server_uri:
            raise PersistenceError("Persistence requires a client ID and server URI")
        self._is_open = True

    def close(self) -> None:
        self._is_open = False

    def clear(self) -> None:
        self._store.clear()

    def contains_key(self, key: str) -> bool:
        return key in self._store

    def keys(self) -> list[str]:
        return list(self._store)

    def put(self, key: str, buffers: Buffers) -> None:
        self._store[key] = _join_buffers(buffers)

    def get(self, key: str) -> bytes:
        try:
            return self._store[key]
        except KeyError:
            raise PersistenceError(f"No persisted data for key '{key}'")

    def remove(self, key: str) -> None:
        self._store.pop(key, None)


class FilePersistence(ClientPersistence):
    """
    File-backed persistence.

    Each (server_uri, client_id) scope gets its own directory under ``base_dir``
    named ``"<server_uri>-<client_id>"`` with ':' and path separators replaced by
    '-'. Each key is a file named exactly by the key; the file holds the raw
    (optionally encoded) value with no header.
    """

    _TMP_SUFFIX = ".tmp"

    def __init__(self, base_dir: "str | os.PathLike[str]" = "."):
        self._base_dir = Path(base_dir)
        self._dir: Path | None = None

    @staticmethod
    def scope_name(client_id: str, server_uri: str) -> str:
        name = f"{server_uri}-{client_id}"
        for ch in (":", "/", "\\"):
            name = name.replace(ch, "-")
        return name

    @property
    def directory(self) -> Path | None:
        return self._dir

    def encode(self, data: bytes) -> bytes:
        """Transform bytes before they are written. Identity by default."""
        return data

    def decode(self, data: bytes) -> bytes:
        """Inverse of ``encode()``. Identity by default."""
        return data

    def _require_dir(self) -> Path:
        if self._dir is None:
            raise PersistenceError("Persistence store is not open")
        return self._dir

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise PersistenceError(f"Invalid persistence key: '{key}'")
        return self._require_dir() / key

    def open(self, client_id: str, server_uri: str) -> None:
        if not client_id or not server_uri:
            raise PersistenceError("Persistence requires a client ID and server URI")
        path = self._base_dir / self.scope_name(client_id, server_uri)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create persistence directory '{path}': {e}")
        self._dir = path
        logger.debug(f"Opened file persistence at {path}")

    def close(self) -> None:
        if self._dir is None:
            return
        try:
            self._dir.rmdir()
        except OSError:
            # Not empty: keep the data for the next open()
            pass
        self._dir = None

    def clear(self) -> None:
        directory = self._require_dir()
        for entry in directory.iterdir():
            if entry.is_file():
                entry.unlink(missing_ok=True)

    def contains_key(self, key: str) -> bool:
        if self._dir is None:
            return False
        return self._path(key).is_file()

    def keys(self) -> list[str]:
        if self._dir is None or not self._dir.exists():
            return []
        return sorted(
            entry.name
            for entry in self._dir.iterdir()
            if entry.is_file() and not entry.name.endswith(self._TMP_SUFFIX)
        )

    def put(self, key: str, buffers: Buffers) -> None:
        path = self._path(key)
        data = self.encode(_join_buffers(buffers))
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{key}.", suffix=self._TMP_SUFFIX)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write persistence key '{key}': {e}")

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            data = path.read_bytes()
        except OSError:
            raise PersistenceError(f"No persisted data for key '{key}'")
        return self.decode(data)

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to remove persistence key '{key}': {e}")


__all__ = ["ClientPersistence", "MemoryPersistence", "FilePersistence"]
