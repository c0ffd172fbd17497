"""Database facade.

Usage::

    db = Database(config=load_config(backend="local"))

    db.in_reference("users/1").set_value({"name": "Ada"}, CompleteCallbacks(success=done))
    db.in_reference("users/1").read_value(User, DataCallbacks(data=show, error=report))
    db.in_reference("users").push().set_value({"name": "Grace"})
    db.in_reference("counter").transaction(int, lambda n: (n or 0) + 1)

Every terminal operation (set, read, observe, remove, update, transaction)
consumes the path selected with :meth:`Database.in_reference` and resets the
selection when it is dispatched, before any result arrives.  Results are
delivered on a backend-owned thread.

:meth:`Database.reference` returns an explicit :class:`DatabaseReference`
handle that carries its own location instead of the shared selection.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fireapp import bridge
from fireapp.codec import MISSING, ValueCodec
from fireapp.config import load_config
from fireapp.listeners import ConnectivityObserver, ListenerRegistry
from fireapp.reference import Location, ReferenceState
from fireapp.resolver import resolve_backend

if TYPE_CHECKING:
    from fireapp.backends.base import DatabaseBackend
    from fireapp.callbacks import (
        CompleteCallback,
        ConnectedListener,
        DataCallback,
        DataChangeListener,
        TransactionCallback,
    )
    from fireapp.config import FireappConfig


class Database:
    """Reference-scoped operations over the resolved backend."""

    def __init__(
        self,
        backend: "DatabaseBackend | None" = None,
        *,
        config: "FireappConfig | None" = None,
    ) -> None:
        if backend is None:
            backend = resolve_backend(config or load_config())
        self._install(backend)

    def _install(self, backend: "DatabaseBackend") -> None:
        self.backend = backend
        self.codec = ValueCodec(backend)
        self.listeners = ListenerRegistry(backend, self.codec)
        self.connectivity = ConnectivityObserver(backend)
        self._state = ReferenceState()

    def set_mock_backend(self, backend: "DatabaseBackend") -> None:
        """Replace the backend; subscriptions on the old one are dropped."""
        self.connectivity.install(None)
        self.listeners.clear()
        self._install(backend)

    # ------------------------------------------------------------------
    # Location selection
    # ------------------------------------------------------------------

    def in_reference(self, path: str) -> "Database":
        """Select *path* for the next terminal operation."""
        self._state.select_path(self.backend, path)
        return self

    def push(self) -> "Database":
        """Move the selection to a new child with a generated key."""
        self._state.push(self.backend)
        return self

    @property
    def current_path(self) -> str | None:
        return self._state.current().path if self._state.is_selected else None

    def reference(self, path: str) -> "DatabaseReference":
        return DatabaseReference(self, ReferenceState().select_path(self.backend, path))

    # ------------------------------------------------------------------
    # Terminal operations
    # ------------------------------------------------------------------

    def set_value(self, value: Any, callback: "CompleteCallback | None" = None) -> None:
        self._set_value(self._state.consume(), value, callback)

    def read_value(self, data_type: Any, callback: "DataCallback", element_type: Any = None) -> None:
        self._read_value(self._state.consume(), data_type, callback, element_type)

    def on_data_change(
        self,
        data_type: Any,
        listener: "DataChangeListener | None",
        element_type: Any = None,
    ) -> None:
        """Observe value changes; ``listener=None`` removes every listener on the path."""
        self.listeners.observe(self._state.consume(), data_type, element_type, listener)

    def remove_value(self, callback: "CompleteCallback | None" = None) -> None:
        self._remove_value(self._state.consume(), callback)

    def update_children(self, data: dict[str, Any], callback: "CompleteCallback | None" = None) -> None:
        self._update_children(self._state.consume(), data, callback)

    def transaction(
        self,
        data_type: Any,
        transaction_callback: "TransactionCallback",
        complete_callback: "CompleteCallback | None" = None,
        element_type: Any = None,
    ) -> None:
        self._transaction(
            self._state.consume(), data_type, transaction_callback, complete_callback, element_type
        )

    # ------------------------------------------------------------------
    # Settings and connectivity
    # ------------------------------------------------------------------

    def set_persistence_enabled(self, enabled: bool) -> None:
        self.backend.set_persistence_enabled(enabled)

    def keep_synced(self, synced: bool) -> None:
        """Keep the selected path synchronised; the selection is kept."""
        self.backend.keep_synced(self._state.current().handle, synced)

    def on_connect(self, listener: "ConnectedListener | None") -> None:
        """Install (or with ``None`` uninstall) the connectivity listener."""
        self.connectivity.install(listener)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _set_value(self, location: Location, value: Any, callback: "CompleteCallback | None") -> None:
        self.backend.set_value(location.handle, self.codec.encode(value), bridge.completion(callback))

    def _read_value(
        self, location: Location, data_type: Any, callback: "DataCallback", element_type: Any
    ) -> None:
        on_value, on_cancelled = bridge.data_delivery(
            self.codec, callback, data_type, element_type, location.path
        )
        self.backend.read_once(location.handle, on_value, on_cancelled)

    def _remove_value(self, location: Location, callback: "CompleteCallback | None") -> None:
        self.backend.remove_value(location.handle, bridge.completion(callback))

    def _update_children(
        self, location: Location, data: dict[str, Any], callback: "CompleteCallback | None"
    ) -> None:
        encoded = {str(key): self.codec.encode(value) for key, value in data.items()}
        self.backend.update_children(location.handle, encoded, bridge.completion(callback))

    def _transaction(
        self,
        location: Location,
        data_type: Any,
        transaction_callback: "TransactionCallback",
        complete_callback: "CompleteCallback | None",
        element_type: Any,
    ) -> None:
        def _handler(mutable: Any) -> Any:
            current = self.codec.decode(mutable, data_type, element_type)
            return self.codec.encode(transaction_callback(None if current is MISSING else current))

        self.backend.run_transaction(
            location.handle, _handler, bridge.transaction_completion(complete_callback)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.connectivity.install(None)
        self.listeners.clear()
        self.backend.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


@dataclass(frozen=True)
class DatabaseReference:
    """Explicit location handle; operations never touch the shared selection."""

    database: Database
    location: Location

    @property
    def path(self) -> str:
        return self.location.path

    @property
    def key(self) -> str:
        return self.location.path.rsplit("/", 1)[-1]

    def child(self, path: str) -> "DatabaseReference":
        full = f"{self.path}/{path}" if self.path else path
        return self.database.reference(full)

    def push(self) -> "DatabaseReference":
        backend = self.database.backend
        handle = backend.child_by_auto_id(self.location.handle)
        return DatabaseReference(self.database, self.location.child(backend.key_of(handle), handle))

    def set_value(self, value: Any, callback: "CompleteCallback | None" = None) -> None:
        self.database._set_value(self.location, value, callback)

    def read_value(self, data_type: Any, callback: "DataCallback", element_type: Any = None) -> None:
        self.database._read_value(self.location, data_type, callback, element_type)

    def on_data_change(
        self, data_type: Any, listener: "DataChangeListener | None", element_type: Any = None
    ) -> None:
        self.database.listeners.observe(self.location, data_type, element_type, listener)

    def remove_value(self, callback: "CompleteCallback | None" = None) -> None:
        self.database._remove_value(self.location, callback)

    def update_children(self, data: dict[str, Any], callback: "CompleteCallback | None" = None) -> None:
        self.database._update_children(self.location, data, callback)

    def transaction(
        self,
        data_type: Any,
        transaction_callback: "TransactionCallback",
        complete_callback: "CompleteCallback | None" = None,
        element_type: Any = None,
    ) -> None:
        self.database._transaction(
            self.location, data_type, transaction_callback, complete_callback, element_type
        )

    def keep_synced(self, synced: bool) -> None:
        self.database.backend.keep_synced(self.location.handle, synced)


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_instance: Database | None = None
_instance_lock = threading.Lock()


def instance() -> Database:
    """Shared :class:`Database` built from the environment configuration."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = Database()
    return _instance


def reset_instance() -> None:
    """Close and forget the shared instance."""
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.close()
        _instance = None
