# /// script
# requires-python = ">=3.12"
# dependencies = []
# ///
"""Document store used by the game sync layer.

Models a hierarchical document database: documents live at slash-separated
paths with an even number of segments (``collection/doc/collection/doc``)
and hold JSON-compatible dicts.  Two backends are provided:

- :class:`MemoryDocumentStore` keeps everything in process memory.
- :class:`JsonFileDocumentStore` writes one JSON file per document under a
  root directory.

Usage::

    from data.document_store import MemoryDocumentStore, SERVER_TIMESTAMP

    store = MemoryDocumentStore()
    store.set("seasons/s1/games/g1/metadata/current", {"inning": 1})
    store.merge("seasons/s1/games/g1/metadata/current",
                {"outs": 2, "lastUpdated": SERVER_TIMESTAMP})

    sub = store.watch("seasons/s1/games/g1/metadata/current", print)
    ...
    sub.unsubscribe()

Writes are last-write-wins.  Watchers are called synchronously after every
write to the watched document (or, for collection watchers, to any direct
child document), and once immediately on subscription with the current
value (``None`` if the document does not exist).
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DocumentCallback = Callable[[Optional[dict[str, Any]]], None]
CollectionCallback = Callable[[list[dict[str, Any]]], None]
ErrorCallback = Callable[[Exception], None]


# ---------------------------------------------------------------------------
# Sentinels and errors
# ---------------------------------------------------------------------------

class _ServerTimestamp:
    """Placeholder replaced with the store's clock value at write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> _ServerTimestamp:
        return self

    def __deepcopy__(self, memo: dict) -> _ServerTimestamp:
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


class StoreError(Exception):
    """Raised when a document cannot be read or written."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

def _segments(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if any(p in (".", "..") for p in parts):
        raise ValueError(f"Invalid path segment in '{path}'")
    return parts


def document_path(path: str) -> str:
    parts = _segments(path)
    if not parts or len(parts) % 2 != 0:
        raise ValueError(f"Document path must have an even number of segments: '{path}'")
    return "/".join(parts)


def collection_path(path: str) -> str:
    parts = _segments(path)
    if len(parts) % 2 != 1:
        raise ValueError(f"Collection path must have an odd number of segments: '{path}'")
    return "/".join(parts)


def parent_collection(doc_path: str) -> str:
    return doc_path.rsplit("/", 1)[0]


def _resolve_timestamps(data: Any, now: float) -> Any:
    if data is SERVER_TIMESTAMP:
        return now
    if isinstance(data, dict):
        return {k: _resolve_timestamps(v, now) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_timestamps(v, now) for v in data]
    return data


def _deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Subscription handle
# ---------------------------------------------------------------------------

class Subscription:
    """Handle returned by ``watch``; call :meth:`unsubscribe` on teardown."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._cancel()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


# ---------------------------------------------------------------------------
# Base store
# ---------------------------------------------------------------------------

class DocumentStore:
    """Common read/write/watch logic.  Backends implement the ``_`` hooks."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._lock = threading.RLock()
        self._doc_watchers: dict[str, list[tuple[DocumentCallback, Optional[ErrorCallback]]]] = {}
        self._collection_watchers: dict[str, list[tuple[CollectionCallback, Optional[ErrorCallback]]]] = {}

    # -- backend hooks -----------------------------------------------------

    def _read(self, path: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def _write(self, path: str, data: dict[str, Any]) -> None:
        raise NotImplementedError

    def _remove(self, path: str) -> None:
        raise NotImplementedError

    def _children(self, collection: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    # -- public API --------------------------------------------------------

    def get(self, path: str) -> Optional[dict[str, Any]]:
        """Return a copy of the document at *path*, or ``None``."""
        path = document_path(path)
        with self._lock:
            doc = self._read(path)
        return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, data: dict[str, Any]) -> dict[str, Any]:
        """Overwrite the document at *path*.  Returns the stored value."""
        path = document_path(path)
        with self._lock:
            stored = _resolve_timestamps(copy.deepcopy(data), self.clock())
            self._write(path, stored)
        self._notify(path)
        return copy.deepcopy(stored)

    def merge(self, path: str, data: dict[str, Any]) -> dict[str, Any]:
        """Merge *data* into the document at *path*, creating it if needed."""
        path = document_path(path)
        with self._lock:
            current = self._read(path) or {}
            update = _resolve_timestamps(copy.deepcopy(data), self.clock())
            stored = _deep_merge(current, update)
            self._write(path, stored)
        self._notify(path)
        return copy.deepcopy(stored)

    def delete(self, path: str) -> None:
        path = document_path(path)
        with self._lock:
            self._remove(path)
        self._notify(path)

    def list_collection(self, path: str) -> list[dict[str, Any]]:
        """Return copies of every direct child document of a collection."""
        path = collection_path(path)
        with self._lock:
            docs = self._children(path)
        return copy.deepcopy(docs)

    def watch(
        self,
        path: str,
        on_next: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Call *on_next* with the document now and after every change.

        Read failures go to *on_error* when given, otherwise they raise.
        """
        path = document_path(path)
        entry = (on_next, on_error)
        with self._lock:
            self._doc_watchers.setdefault(path, []).append(entry)

        def cancel() -> None:
            with self._lock:
                watchers = self._doc_watchers.get(path, [])
                if entry in watchers:
                    watchers.remove(entry)
                if not watchers:
                    self._doc_watchers.pop(path, None)

        subscription = Subscription(cancel)
        try:
            self._deliver_document(path, entry)
        except StoreError:
            subscription.unsubscribe()
            raise
        return subscription

    def watch_collection(
        self,
        path: str,
        on_next: CollectionCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Call *on_next* with all child documents now and after every change."""
        path = collection_path(path)
        entry = (on_next, on_error)
        with self._lock:
            self._collection_watchers.setdefault(path, []).append(entry)

        def cancel() -> None:
            with self._lock:
                watchers = self._collection_watchers.get(path, [])
                if entry in watchers:
                    watchers.remove(entry)
                if not watchers:
                    self._collection_watchers.pop(path, None)

        subscription = Subscription(cancel)
        try:
            self._deliver_collection(path, entry)
        except StoreError:
            subscription.unsubscribe()
            raise
        return subscription

    def watcher_count(self) -> int:
        with self._lock:
            return (sum(len(w) for w in self._doc_watchers.values())
                    + sum(len(w) for w in self._collection_watchers.values()))

    # -- notification ------------------------------------------------------

    def _notify(self, path: str) -> None:
        with self._lock:
            doc_entries = list(self._doc_watchers.get(path, []))
            coll_entries = list(self._collection_watchers.get(parent_collection(path), []))
        for entry in doc_entries:
            self._deliver_document(path, entry)
        for entry in coll_entries:
            self._deliver_collection(parent_collection(path), entry)

    def _deliver_document(self, path: str, entry: tuple) -> None:
        on_next, on_error = entry
        try:
            doc = self.get(path)
        except StoreError as exc:
            if on_error is None:
                raise
            on_error(exc)
            return
        try:
            on_next(doc)
        except Exception:
            logger.exception("Watcher for %s raised", path)

    def _deliver_collection(self, path: str, entry: tuple) -> None:
        on_next, on_error = entry
        try:
            docs = self.list_collection(path)
        except StoreError as exc:
            if on_error is None:
                raise
            on_error(exc)
            return
        try:
            on_next(docs)
        except Exception:
            logger.exception("Collection watcher for %s raised", path)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class MemoryDocumentStore(DocumentStore):
    """In-process store.  Documents are lost when the process exits."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._docs: dict[str, dict[str, Any]] = {}

    def _read(self, path: str) -> Optional[dict[str, Any]]:
        return self._docs.get(path)

    def _write(self, path: str, data: dict[str, Any]) -> None:
        self._docs[path] = data

    def _remove(self, path: str) -> None:
        self._docs.pop(path, None)

    def _children(self, collection: str) -> list[dict[str, Any]]:
        prefix = collection + "/"
        return [
            doc for path, doc in sorted(self._docs.items())
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]


class JsonFileDocumentStore(DocumentStore):
    """One JSON file per document under *root_dir*.

    ``seasons/s1/games/g1`` is stored at ``<root_dir>/seasons/s1/games/g1.json``.
    """

    def __init__(self, root_dir: str | Path, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._root = Path(root_dir)

    def _file_for(self, path: str) -> Path:
        return self._root / f"{path}.json"

    def _read(self, path: str) -> Optional[dict[str, Any]]:
        file = self._file_for(path)
        if not file.exists():
            return None
        try:
            with open(file) as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            raise StoreError(f"Cannot read document {path}: {exc}", path=path) from exc

    def _write(self, path: str, data: dict[str, Any]) -> None:
        file = self._file_for(path)
        tmp = file.with_suffix(".json.tmp")
        try:
            file.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                json.dump(data, f)
            tmp.replace(file)
        except (OSError, TypeError, ValueError) as exc:
            tmp.unlink(missing_ok=True)
            raise StoreError(f"Cannot write document {path}: {exc}", path=path) from exc

    def _remove(self, path: str) -> None:
        try:
            self._file_for(path).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot delete document {path}: {exc}", path=path) from exc

    def _children(self, collection: str) -> list[dict[str, Any]]:
        directory = self._root / collection
        if not directory.is_dir():
            return []
        return [
            doc for doc in (
                self._read(f"{collection}/{file.stem}")
                for file in sorted(directory.glob("*.json"))
            )
            if doc is not None
        ]
