"""Database backends.

Concrete backends import their third-party libraries lazily; use
:func:`fireapp.resolver.resolve_backend` to build one by environment name.
"""

from fireapp.backends.base import CONNECTED_PATH, DatabaseBackend
from fireapp.backends.null import NullBackend

__all__ = [
    "CONNECTED_PATH",
    "DatabaseBackend",
    "NullBackend",
]
