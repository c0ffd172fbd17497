"""Shared fixtures: an in-process fake backend and recording callbacks.

The fake backend calls every completion and listener synchronously on the
caller's thread, which keeps facade tests deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from fireapp.convert import coerce_value
from fireapp.database import Database


@dataclass
class FakeSnapshot:
    path: str
    value: Any


@dataclass
class FakeError:
    """Error object in the ``to_exception()`` style."""

    message: str
    code: str = "fake"

    def to_exception(self) -> Exception:
        return RuntimeError(self.message)


class FakeBackend:
    name = "fake"

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.convert_calls: list[Any] = []
        self.listeners: dict[str, list[tuple[Any, Any]]] = {}
        self.synced: dict[str, bool] = {}
        self.persistence: bool | None = None
        self.fail_with: Any = None
        self.closed = False
        self._next_id = 0

    # references ---------------------------------------------------------

    def reference(self, path: str) -> str:
        return path

    def child_by_auto_id(self, ref: str) -> str:
        self._next_id += 1
        key = f"id{self._next_id}"
        return f"{ref}/{key}" if ref else key

    def key_of(self, ref: str) -> str:
        return ref.rsplit("/", 1)[-1]

    # writes --------------------------------------------------------------

    def _store(self, ref: str, value: Any) -> None:
        if value is None:
            self.data.pop(ref, None)
        else:
            self.data[ref] = value
        self.emit(ref, value)

    def set_value(self, ref: str, value: Any, completion: Any = None) -> None:
        self.calls.append(("set", ref, value))
        if self.fail_with is None:
            self._store(ref, value)
        if completion is not None:
            completion(self.fail_with, ref)

    def remove_value(self, ref: str, completion: Any = None) -> None:
        self.calls.append(("remove", ref))
        if self.fail_with is None:
            self._store(ref, None)
        if completion is not None:
            completion(self.fail_with, ref)

    def update_children(self, ref: str, data: dict[str, Any], completion: Any = None) -> None:
        self.calls.append(("update", ref, data))
        if self.fail_with is None:
            self._store(ref, {**(self.data.get(ref) or {}), **data})
        if completion is not None:
            completion(self.fail_with, ref)

    def run_transaction(self, ref: str, handler: Any, completion: Any = None) -> None:
        self.calls.append(("transaction", ref))
        snapshot = FakeSnapshot(ref, self.data.get(ref))
        try:
            new_value = handler(snapshot)
        except Exception as exc:
            if completion is not None:
                completion(FakeError(str(exc)), False, snapshot)
            return
        self._store(ref, new_value)
        if completion is not None:
            completion(None, True, FakeSnapshot(ref, new_value))

    # reads ---------------------------------------------------------------

    def read_once(self, ref: str, on_value: Any, on_cancelled: Any) -> None:
        self.calls.append(("read", ref))
        if self.fail_with is not None:
            on_cancelled(self.fail_with)
        else:
            on_value(FakeSnapshot(ref, self.data.get(ref)))

    def add_value_listener(self, ref: str, on_value: Any, on_cancelled: Any) -> tuple[Any, Any]:
        self.calls.append(("listen", ref))
        token = (on_value, on_cancelled)
        self.listeners.setdefault(ref, []).append(token)
        return token

    def remove_value_listener(self, ref: str, registration: Any) -> None:
        self.calls.append(("unlisten", ref))
        self.listeners.get(ref, []).remove(registration)
        if not self.listeners.get(ref):
            self.listeners.pop(ref, None)

    def emit(self, path: str, value: Any) -> None:
        for on_value, _ in list(self.listeners.get(path, [])):
            on_value(FakeSnapshot(path, value))

    def cancel(self, path: str, error: Any) -> None:
        for _, on_cancelled in list(self.listeners.get(path, [])):
            on_cancelled(error)

    # settings ------------------------------------------------------------

    def set_persistence_enabled(self, enabled: bool) -> None:
        self.persistence = enabled

    def keep_synced(self, ref: str, synced: bool) -> None:
        self.synced[ref] = synced

    # values --------------------------------------------------------------

    def snapshot_exists(self, snapshot: FakeSnapshot) -> bool:
        return snapshot.value is not None

    def snapshot_value(self, snapshot: FakeSnapshot) -> Any:
        return snapshot.value

    def convert(self, snapshot: FakeSnapshot, type_: type) -> Any:
        self.convert_calls.append(type_)
        return coerce_value(snapshot.value, type_)

    def encode(self, value: Any) -> Any:
        return value

    def close(self) -> None:
        self.closed = True


@dataclass
class Recorder:
    """Implements every callback protocol and records what it receives."""

    events: list[tuple[str, Any]] = field(default_factory=list)

    def on_success(self) -> None:
        self.events.append(("success", None))

    def on_error(self, cause: Any) -> None:
        self.events.append(("error", cause))

    def on_data(self, value: Any) -> None:
        self.events.append(("data", value))

    def on_change(self, value: Any) -> None:
        self.events.append(("change", value))

    def on_canceled(self, cause: Any) -> None:
        self.events.append(("canceled", cause))

    def on_connect(self) -> None:
        self.events.append(("connect", None))

    def on_disconnect(self) -> None:
        self.events.append(("disconnect", None))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def db(backend: FakeBackend) -> Database:
    return Database(backend)


@pytest.fixture()
def recorder() -> Recorder:
    return Recorder()
