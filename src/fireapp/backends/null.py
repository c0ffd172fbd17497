"""Inert backend for environments without a supported database."""

from __future__ import annotations

from typing import Any

from fireapp.backends.base import NativeCompletion, normalize_path
from fireapp.pushid import generate_push_id


class NullBackend:
    """Accepts every call and does nothing.

    Writes never complete, reads and listeners never deliver, so code written
    against the facade keeps running where no backend is available.
    """

    name = "null"

    def reference(self, path: str) -> str:
        return normalize_path(path)

    def child_by_auto_id(self, ref: str) -> str:
        key = generate_push_id()
        return f"{ref}/{key}" if ref else key

    def key_of(self, ref: str) -> str:
        return ref.rsplit("/", 1)[-1]

    def set_value(self, ref: Any, value: Any, completion: NativeCompletion | None = None) -> None:
        pass

    def remove_value(self, ref: Any, completion: NativeCompletion | None = None) -> None:
        pass

    def update_children(self, ref: Any, data: dict[str, Any], completion: NativeCompletion | None = None) -> None:
        pass

    def run_transaction(self, ref: Any, handler: Any, completion: NativeCompletion | None = None) -> None:
        pass

    def read_once(self, ref: Any, on_value: Any, on_cancelled: Any) -> None:
        pass

    def add_value_listener(self, ref: Any, on_value: Any, on_cancelled: Any) -> None:
        return None

    def remove_value_listener(self, ref: Any, registration: Any) -> None:
        pass

    def set_persistence_enabled(self, enabled: bool) -> None:
        pass

    def keep_synced(self, ref: Any, synced: bool) -> None:
        pass

    def snapshot_exists(self, snapshot: Any) -> bool:
        return False

    def snapshot_value(self, snapshot: Any) -> None:
        return None

    def convert(self, snapshot: Any, type_: type) -> None:
        return None

    def encode(self, value: Any) -> Any:
        return value

    def close(self) -> None:
        pass
