"""Backend protocol shared by every database environment."""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

#: Reserved path whose boolean value tracks connectivity to the server.
CONNECTED_PATH = ".info/connected"

#: Native completion: first positional argument is the backend's error object
#: (or ``None``); the remaining arguments are backend specific.
NativeCompletion = Callable[..., None]
#: Receives a backend snapshot.
ValueHandler = Callable[[Any], None]
#: Receives a backend error object.
CancelHandler = Callable[[Any], None]
#: Receives the in-place mutable snapshot, returns the new plain value.
TransactionHandler = Callable[[Any], Any]


def normalize_path(path: str) -> str:
    """Strip surrounding and duplicate slashes; the root is ``""``."""
    return "/".join(part for part in str(path).split("/") if part)


@runtime_checkable
class DatabaseBackend(Protocol):
    """Common interface shared by all database backends.

    Implementations (local DuckDB store, REST client, inert stand-in) must
    satisfy this protocol so the facade can swap them without changing call
    sites.  Completions, value handlers and cancel handlers may be called on
    a thread owned by the backend.
    """

    name: str

    # ------------------------------------------------------------- references

    def reference(self, path: str) -> Any:
        """Return the native reference handle for *path*."""
        ...

    def child_by_auto_id(self, ref: Any) -> Any:
        """Return a child of *ref* named by a freshly generated key."""
        ...

    def key_of(self, ref: Any) -> str:
        """Return the last path segment of *ref*."""
        ...

    # ----------------------------------------------------------------- writes

    def set_value(self, ref: Any, value: Any, completion: NativeCompletion | None = None) -> None: ...

    def remove_value(self, ref: Any, completion: NativeCompletion | None = None) -> None: ...

    def update_children(
        self, ref: Any, data: dict[str, Any], completion: NativeCompletion | None = None
    ) -> None: ...

    def run_transaction(
        self, ref: Any, handler: TransactionHandler, completion: NativeCompletion | None = None
    ) -> None:
        """Run *handler* as an atomic read-modify-write; the completion is
        called as ``completion(error, committed, snapshot)``."""
        ...

    # ------------------------------------------------------------------ reads

    def read_once(self, ref: Any, on_value: ValueHandler, on_cancelled: CancelHandler) -> None: ...

    def add_value_listener(self, ref: Any, on_value: ValueHandler, on_cancelled: CancelHandler) -> Any:
        """Subscribe to value changes; returns a registration token."""
        ...

    def remove_value_listener(self, ref: Any, registration: Any) -> None: ...

    # --------------------------------------------------------------- settings

    def set_persistence_enabled(self, enabled: bool) -> None: ...

    def keep_synced(self, ref: Any, synced: bool) -> None: ...

    # ----------------------------------------------------------------- values

    def snapshot_exists(self, snapshot: Any) -> bool: ...

    def snapshot_value(self, snapshot: Any) -> Any:
        """Generic tree of scalars, lists and dicts held by *snapshot*."""
        ...

    def convert(self, snapshot: Any, type_: type) -> Any:
        """Materialise the snapshot's value as an instance of *type_*."""
        ...

    def encode(self, value: Any) -> Any:
        """Turn a plain tree into the backend's native representation."""
        ...

    # -------------------------------------------------------------- lifecycle

    def close(self) -> None: ...
