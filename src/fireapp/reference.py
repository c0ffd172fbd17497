"""Currently selected location of the builder-style facade.

The facade is used as ``db.in_reference(path).<operation>(...)``.  The
selected :class:`Location` lives here until a terminal operation consumes it;
the next operation must select a path again.  The state is shared and not
locked: callers issuing operations from several threads must serialise the
select/operate pairs themselves, or use explicit handles from
:meth:`fireapp.database.Database.reference`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fireapp.backends.base import normalize_path
from fireapp.errors import DatabaseReferenceNotSetError

if TYPE_CHECKING:
    from fireapp.backends.base import DatabaseBackend


@dataclass(frozen=True)
class Location:
    """A backend path plus the backend's native handle for it."""

    path: str
    handle: Any

    def child(self, key: str, handle: Any) -> "Location":
        return Location(f"{self.path}/{key}" if self.path else key, handle)


class ReferenceState:
    """Two-state machine: Unselected (``None``) or Selected (a Location)."""

    def __init__(self) -> None:
        self._location: Location | None = None

    @property
    def is_selected(self) -> bool:
        return self._location is not None

    def select_path(self, backend: "DatabaseBackend", path: str) -> Location:
        """Select *path*, replacing any previous selection."""
        path = normalize_path(path)
        self._location = Location(path, backend.reference(path))
        return self._location

    def push(self, backend: "DatabaseBackend") -> Location:
        """Move the selection to a new auto-id child of the current location."""
        current = self.current()
        handle = backend.child_by_auto_id(current.handle)
        self._location = current.child(backend.key_of(handle), handle)
        return self._location

    def current(self) -> Location:
        if self._location is None:
            raise DatabaseReferenceNotSetError()
        return self._location

    def consume(self) -> Location:
        """Return the current location and reset to Unselected."""
        location = self.current()
        self.reset()
        return location

    def reset(self) -> None:
        self._location = None
