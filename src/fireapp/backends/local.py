"""DuckDB-backed local realtime backend.

Stores the JSON tree in a DuckDB table keyed by leaf path and serves it with
realtime semantics: value listeners get the current value on registration and
again whenever a write changes their subtree.

Storage model
-------------
``nodes(path VARCHAR, value VARCHAR)`` holds one row per leaf,
the value serialised as JSON.  Writing a path replaces its whole subtree;
``None`` and empty containers delete.  Lists are stored as index-keyed
children and come back as lists when their keys are dense integers.

Threading
---------
All storage work and every callback run on one worker thread owned by the
backend, in submission order.  :meth:`LocalBackend.flush` waits for queued
work to finish.

Native callback shapes
----------------------
* write completion: ``completion(error: LocalDatabaseError | None, ref)``
* transaction completion: ``completion(error, committed, snapshot)``
* errors expose ``to_exception()``; storage failures carry code ``storage_error``

Environment variables (optional; direct kwargs take precedence):
    FIREAPP_DB_PATH  – DuckDB file used when persistence is enabled
"""

from __future__ import annotations

import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import duckdb

from fireapp.backends.base import CONNECTED_PATH, NativeCompletion, normalize_path
from fireapp.backends.tree import is_related, to_native
from fireapp.convert import coerce_value
from fireapp.errors import PersistenceConfigurationError
from fireapp.pushid import generate_push_id

logger = logging.getLogger(__name__)

_INVALID_KEY_CHARS = set(".#$[]")
_UNSET = object()


# ---------------------------------------------------------------------------
# Native types
# ---------------------------------------------------------------------------


class LocalDatabaseException(Exception):
    """Exception form of a :class:`LocalDatabaseError`."""


@dataclass(frozen=True)
class LocalDatabaseError:
    code: str
    message: str
    details: Any = None

    def to_exception(self) -> LocalDatabaseException:
        return LocalDatabaseException(self.message)

    @classmethod
    def from_exception(cls, exc: Exception) -> "LocalDatabaseError":
        if isinstance(exc, duckdb.Error):
            code = "storage_error"
        elif isinstance(exc, PermissionError):
            code = "permission_denied"
        else:
            code = "invalid_data"
        return cls(code, str(exc), exc)


@dataclass(frozen=True)
class LocalReference:
    path: str

    @property
    def key(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class LocalSnapshot:
    path: str
    value: Any  # stored tree; ``None`` when nothing is stored

    def exists(self) -> bool:
        return self.value is not None


@dataclass(eq=False)
class _Listener:
    path: str
    on_value: Callable[[Any], None]
    on_cancelled: Callable[[Any], None]
    active: bool = True
    last: Any = field(default=_UNSET, repr=False)


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def _flatten(path: str, value: Any, out: list[tuple[str, str]]) -> None:
    if isinstance(value, dict):
        items = value.items()
    elif isinstance(value, list):
        items = ((str(i), v) for i, v in enumerate(value))
    else:
        if value is not None:
            out.append((path, json.dumps(value)))
        return
    for key, child in items:
        key = str(key)
        if not key or _INVALID_KEY_CHARS & set(key) or "/" in key:
            raise ValueError(f"Invalid key {key!r} under '{path or '/'}'")
        _flatten(f"{path}/{key}" if path else key, child, out)


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class LocalBackend:
    """Realtime backend over a local DuckDB database."""

    name = "local"

    def __init__(self, db_path: Path | str | None = None, *, persistence: bool = False) -> None:
        self._db_path = str(db_path or os.getenv("FIREAPP_DB_PATH", "fireapp.duckdb"))
        self._persistence = persistence
        self._conn: Any = None
        self._started = False
        self._connected = True
        self._pending: list[Callable[[], None]] = []
        self._listeners: list[_Listener] = []
        self._synced: set[str] = set()
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fireapp-local")

    # ------------------------------------------------------------------
    # Worker plumbing
    # ------------------------------------------------------------------

    def _submit(self, fn: Callable[[], None]) -> None:
        self._started = True
        self._executor.submit(self._run, fn)

    @staticmethod
    def _run(fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            logger.exception("Local backend task failed")

    def flush(self, timeout: float | None = None) -> None:
        """Block until every task queued so far has run."""
        self._executor.submit(lambda: None).result(timeout)

    # ------------------------------------------------------------------
    # Storage (worker thread only)
    # ------------------------------------------------------------------

    def _connection(self) -> Any:
        if self._conn is None:
            target = self._db_path if self._persistence else ":memory:"
            logger.debug("Opening local database %s", target)
            self._conn = duckdb.connect(target)
            self._ensure_schema()
        return self._conn

    def _ensure_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS nodes (
                path   VARCHAR NOT NULL,
                value  VARCHAR NOT NULL
            );
        """)

    def _read(self, path: str) -> Any:
        if path == CONNECTED_PATH:
            return self._connected
        conn = self._connection()
        if path:
            rows = conn.execute(
                "SELECT path, value FROM nodes WHERE path = ? OR starts_with(path, ?) ORDER BY path",
                [path, path + "/"],
            ).fetchall()
        else:
            rows = conn.execute("SELECT path, value FROM nodes ORDER BY path").fetchall()
        if not rows:
            return None

        tree: dict[str, Any] = {}
        offset = len(path) + 1 if path else 0
        for row_path, raw in rows:
            if row_path == path:
                return json.loads(raw)
            node = tree
            parts = row_path[offset:].split("/")
            for part in parts[:-1]:
                node = node.setdefault(part, {})
            node[parts[-1]] = json.loads(raw)
        return tree

    def _delete(self, path: str) -> None:
        conn = self._connection()
        if path:
            conn.execute("DELETE FROM nodes WHERE path = ? OR starts_with(path, ?)", [path, path + "/"])
            parts = path.split("/")
            ancestors = ["/".join(parts[:i]) for i in range(1, len(parts))]
            if ancestors:
                placeholders = ", ".join("?" for _ in ancestors)
                conn.execute(f"DELETE FROM nodes WHERE path IN ({placeholders})", ancestors)
        else:
            conn.execute("DELETE FROM nodes")

    def _write_many(self, writes: list[tuple[str, Any]]) -> None:
        rows_by_path = []
        for path, value in writes:
            if path.split("/")[0].startswith("."):
                raise PermissionError(f"Path '{path}' is read-only")
            rows: list[tuple[str, str]] = []
            _flatten(path, value, rows)
            rows_by_path.append((path, rows))

        conn = self._connection()
        conn.execute("BEGIN TRANSACTION")
        try:
            for path, rows in rows_by_path:
                self._delete(path)
                if rows:
                    conn.executemany("INSERT INTO nodes VALUES (?, ?)", rows)
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        self._notify([path for path, _ in writes])

    def _notify(self, paths: list[str]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            if listener.active and any(is_related(listener.path, p) for p in paths):
                self._deliver(listener)

    def _deliver(self, listener: _Listener, force: bool = False) -> None:
        try:
            value = self._read(listener.path)
        except duckdb.Error as exc:
            self._cancel_listener(listener, LocalDatabaseError.from_exception(exc))
            return
        if not force and value == listener.last:
            return
        listener.last = value
        try:
            listener.on_value(LocalSnapshot(listener.path, value))
        except Exception:
            logger.exception("Value listener on '%s' raised", listener.path)

    def _cancel_listener(self, listener: _Listener, error: LocalDatabaseError) -> None:
        listener.active = False
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
        logger.warning("Value listener on '%s' cancelled: %s", listener.path, error.message)
        listener.on_cancelled(error)

    def _complete(self, completion: Callable[[], None]) -> None:
        if self._connected:
            completion()
        else:
            self._pending.append(completion)

    def _apply(self, writes: list[tuple[str, Any]], ref: LocalReference, completion: NativeCompletion | None) -> None:
        try:
            self._write_many(writes)
        except (ValueError, PermissionError, duckdb.Error) as exc:
            if completion is not None:
                completion(LocalDatabaseError.from_exception(exc), ref)
            return
        if completion is not None:
            self._complete(lambda: completion(None, ref))

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def reference(self, path: str) -> LocalReference:
        path = normalize_path(path)
        for i, part in enumerate(path.split("/") if path else ()):
            bad = _INVALID_KEY_CHARS & set(part)
            if bad and not (i == 0 and part == ".info"):
                raise ValueError(f"Invalid path '{path}': segment {part!r} contains {''.join(sorted(bad))!r}")
        return LocalReference(path)

    def child_by_auto_id(self, ref: LocalReference) -> LocalReference:
        key = generate_push_id()
        return LocalReference(f"{ref.path}/{key}" if ref.path else key)

    def key_of(self, ref: LocalReference) -> str:
        return ref.key

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_value(self, ref: LocalReference, value: Any, completion: NativeCompletion | None = None) -> None:
        self._submit(lambda: self._apply([(ref.path, value)], ref, completion))

    def remove_value(self, ref: LocalReference, completion: NativeCompletion | None = None) -> None:
        self._submit(lambda: self._apply([(ref.path, None)], ref, completion))

    def update_children(
        self, ref: LocalReference, data: dict[str, Any], completion: NativeCompletion | None = None
    ) -> None:
        writes = []
        for key, value in data.items():
            child = normalize_path(key)
            writes.append((f"{ref.path}/{child}" if ref.path else child, value))
        self._submit(lambda: self._apply(writes, ref, completion))

    def run_transaction(
        self, ref: LocalReference, handler: Callable[[Any], Any], completion: NativeCompletion | None = None
    ) -> None:
        def _task() -> None:
            snapshot = LocalSnapshot(ref.path, None)
            try:
                snapshot = LocalSnapshot(ref.path, self._read(ref.path))
                new_value = handler(snapshot)
                self._write_many([(ref.path, new_value)])
                result = LocalSnapshot(ref.path, self._read(ref.path))
            except duckdb.Error as exc:
                error = LocalDatabaseError.from_exception(exc)
            except Exception as exc:
                error = LocalDatabaseError("transaction_aborted", str(exc), exc)
            else:
                if completion is not None:
                    self._complete(lambda: completion(None, True, result))
                return
            if completion is not None:
                completion(error, False, snapshot)

        self._submit(_task)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_once(self, ref: LocalReference, on_value: Callable[[Any], None], on_cancelled: Callable[[Any], None]) -> None:
        def _task() -> None:
            try:
                value = self._read(ref.path)
            except duckdb.Error as exc:
                on_cancelled(LocalDatabaseError.from_exception(exc))
                return
            on_value(LocalSnapshot(ref.path, value))

        self._submit(_task)

    def add_value_listener(
        self, ref: LocalReference, on_value: Callable[[Any], None], on_cancelled: Callable[[Any], None]
    ) -> _Listener:
        listener = _Listener(ref.path, on_value, on_cancelled)

        # Registered on the worker so writes queued earlier are not seen twice.
        def _register() -> None:
            if not listener.active:
                return
            with self._lock:
                self._listeners.append(listener)
            self._deliver(listener, force=True)

        self._submit(_register)
        return listener

    def remove_value_listener(self, ref: LocalReference, registration: _Listener) -> None:
        if registration is None:
            return
        registration.active = False
        with self._lock:
            if registration in self._listeners:
                self._listeners.remove(registration)

    # ------------------------------------------------------------------
    # Settings and connectivity
    # ------------------------------------------------------------------

    def set_persistence_enabled(self, enabled: bool) -> None:
        if self._started:
            raise PersistenceConfigurationError(
                "Persistence must be configured before the first database operation"
            )
        self._persistence = enabled

    def keep_synced(self, ref: LocalReference, synced: bool) -> None:
        # Local data is always in sync; the set only records the request.
        if synced:
            self._synced.add(ref.path)
        else:
            self._synced.discard(ref.path)

    @property
    def synced_paths(self) -> set[str]:
        return set(self._synced)

    def go_offline(self) -> None:
        """Simulate losing the server: completions wait until :meth:`go_online`."""
        self._submit(lambda: self._set_connected(False))

    def go_online(self) -> None:
        self._submit(lambda: self._set_connected(True))

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Local backend %s", "online" if connected else "offline")
        self._notify([CONNECTED_PATH])
        if connected:
            pending, self._pending = self._pending, []
            for completion in pending:
                completion()

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def snapshot_exists(self, snapshot: LocalSnapshot) -> bool:
        return snapshot.exists()

    def snapshot_value(self, snapshot: LocalSnapshot) -> Any:
        return to_native(snapshot.value)

    def convert(self, snapshot: LocalSnapshot, type_: type) -> Any:
        return coerce_value(self.snapshot_value(snapshot), type_)

    def encode(self, value: Any) -> Any:
        return value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            for listener in self._listeners:
                listener.active = False
            self._listeners.clear()
        self._executor.submit(self._close_connection)
        self._executor.shutdown(wait=True)

    def _close_connection(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "LocalBackend":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
