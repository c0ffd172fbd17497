"""Long-lived subscriptions: per-path change listeners and connectivity."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fireapp.backends.base import CONNECTED_PATH
from fireapp.bridge import translate_error
from fireapp.codec import MISSING
from fireapp.errors import DatabaseError, ValueConversionError

if TYPE_CHECKING:
    from fireapp.backends.base import DatabaseBackend
    from fireapp.callbacks import ConnectedListener, DataChangeListener
    from fireapp.codec import ValueCodec
    from fireapp.reference import Location


# ---------------------------------------------------------------------------
# Change listeners
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class ListenerAdapter:
    """One registration of a caller listener on a path."""

    target_path: str
    declared_type: Any
    element_type: Any
    listener: "DataChangeListener"
    codec: "ValueCodec"
    handle: Any = None
    registration: Any = field(default=None, repr=False)

    def on_value(self, snapshot: Any) -> None:
        try:
            value = self.codec.decode(snapshot, self.declared_type, self.element_type)
        except ValueConversionError as exc:
            self.listener.on_canceled(exc)
            return
        self.listener.on_change(None if value is MISSING else value)

    def on_cancelled(self, error: Any) -> None:
        self.listener.on_canceled(translate_error(error) or DatabaseError("Listener cancelled"))


class ListenerRegistry:
    """Path → active :class:`ListenerAdapter` list.

    The backend offers no selective removal, so listeners are removed all at
    once per path.
    """

    def __init__(self, backend: "DatabaseBackend", codec: "ValueCodec") -> None:
        self.backend = backend
        self.codec = codec
        self._adapters: dict[str, list[ListenerAdapter]] = {}
        self._lock = threading.RLock()

    def observe(
        self,
        location: "Location",
        declared_type: Any,
        element_type: Any,
        listener: "DataChangeListener | None",
    ) -> ListenerAdapter | None:
        """Register *listener* on *location*, or drop every listener there when
        *listener* is ``None``."""
        if listener is None:
            self.remove_all(location.path)
            return None

        adapter = ListenerAdapter(
            target_path=location.path,
            declared_type=declared_type,
            element_type=element_type,
            listener=listener,
            codec=self.codec,
            handle=location.handle,
        )
        # An adapter is only visible to remove_all once its registration exists.
        with self._lock:
            adapter.registration = self.backend.add_value_listener(
                location.handle, adapter.on_value, adapter.on_cancelled
            )
            self._adapters.setdefault(location.path, []).append(adapter)
        return adapter

    def remove_all(self, path: str) -> int:
        with self._lock:
            adapters = self._adapters.pop(path, [])
        for adapter in adapters:
            self.backend.remove_value_listener(adapter.handle, adapter.registration)
        return len(adapters)

    def count(self, path: str) -> int:
        with self._lock:
            return len(self._adapters.get(path, ()))

    def paths(self) -> list[str]:
        with self._lock:
            return sorted(self._adapters)

    def clear(self) -> None:
        for path in self.paths():
            self.remove_all(path)


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityObserver:
    """Single subscription to the reserved connectivity path.

    Installing a listener while subscribed only swaps the stored reference;
    events go to whichever listener is stored when they arrive.  Installing
    ``None`` drops the native subscription.
    """

    def __init__(self, backend: "DatabaseBackend") -> None:
        self.backend = backend
        self._listener: "ConnectedListener | None" = None
        self._handle: Any = None
        self._registration: Any = None
        self._lock = threading.Lock()

    @property
    def is_subscribed(self) -> bool:
        return self._handle is not None

    @property
    def listener(self) -> "ConnectedListener | None":
        return self._listener

    def install(self, listener: "ConnectedListener | None") -> None:
        with self._lock:
            if listener is not None and self._handle is None:
                self._handle = self.backend.reference(CONNECTED_PATH)
                self._listener = listener
                self._registration = self.backend.add_value_listener(
                    self._handle, self._on_value, self._on_cancelled
                )
            elif listener is None and self._handle is not None:
                self.backend.remove_value_listener(self._handle, self._registration)
                self._handle = None
                self._registration = None
            self._listener = listener

    def _on_value(self, snapshot: Any) -> None:
        listener = self._listener
        if listener is None:
            return
        connected = bool(self.backend.snapshot_exists(snapshot) and self.backend.convert(snapshot, bool))
        if connected:
            listener.on_connect()
        else:
            listener.on_disconnect()

    def _on_cancelled(self, error: Any) -> None:
        # No caller channel exists for a cancelled connectivity subscription.
        return None
