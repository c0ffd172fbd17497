"""Caller-facing callback protocols.

Any object with the right methods satisfies a protocol; the ``*Callbacks``
dataclasses wrap plain functions for callers who prefer lambdas::

    db.in_reference("users/1").read_value(
        dict, DataCallbacks(data=print, error=log_error)
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

from fireapp.errors import DatabaseError

T = TypeVar("T")

#: Read-modify-write function handed to :meth:`Database.transaction`.
TransactionCallback = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class CompleteCallback(Protocol):
    def on_success(self) -> None: ...
    def on_error(self, cause: DatabaseError) -> None: ...


@runtime_checkable
class DataCallback(Protocol):
    def on_data(self, value: Any) -> None: ...
    def on_error(self, cause: DatabaseError) -> None: ...


@runtime_checkable
class DataChangeListener(Protocol):
    def on_change(self, value: Any) -> None: ...
    def on_canceled(self, cause: DatabaseError) -> None: ...


@runtime_checkable
class ConnectedListener(Protocol):
    def on_connect(self) -> None: ...
    def on_disconnect(self) -> None: ...


# ---------------------------------------------------------------------------
# Function-backed implementations
# ---------------------------------------------------------------------------


def _noop(*_: Any) -> None:
    return None


@dataclass
class CompleteCallbacks:
    success: Callable[[], None] = _noop
    error: Callable[[DatabaseError], None] = _noop

    def on_success(self) -> None:
        self.success()

    def on_error(self, cause: DatabaseError) -> None:
        self.error(cause)


@dataclass
class DataCallbacks:
    data: Callable[[Any], None] = _noop
    error: Callable[[DatabaseError], None] = _noop

    def on_data(self, value: Any) -> None:
        self.data(value)

    def on_error(self, cause: DatabaseError) -> None:
        self.error(cause)


@dataclass
class ChangeCallbacks:
    change: Callable[[Any], None] = _noop
    canceled: Callable[[DatabaseError], None] = _noop

    def on_change(self, value: Any) -> None:
        self.change(value)

    def on_canceled(self, cause: DatabaseError) -> None:
        self.canceled(cause)


@dataclass
class ConnectedCallbacks:
    connect: Callable[[], None] = _noop
    disconnect: Callable[[], None] = _noop

    def on_connect(self) -> None:
        self.connect()

    def on_disconnect(self) -> None:
        self.disconnect()
