"""fireapp: one calling convention over realtime database backends."""

from fireapp.callbacks import (
    ChangeCallbacks,
    CompleteCallback,
    CompleteCallbacks,
    ConnectedCallbacks,
    ConnectedListener,
    DataCallback,
    DataCallbacks,
    DataChangeListener,
)
from fireapp.config import FireappConfig, load_config
from fireapp.database import Database, DatabaseReference, instance, reset_instance
from fireapp.errors import (
    BackendInitializationError,
    DatabaseError,
    DatabaseReferenceNotSetError,
    FireappError,
    TransactionAbortedError,
    UnsupportedValueError,
    ValueConversionError,
    ValueNotFoundError,
)
from fireapp.resolver import register_backend, resolve_backend

__all__ = [
    "Database",
    "DatabaseReference",
    "instance",
    "reset_instance",
    "FireappConfig",
    "load_config",
    "register_backend",
    "resolve_backend",
    "CompleteCallback",
    "DataCallback",
    "DataChangeListener",
    "ConnectedListener",
    "CompleteCallbacks",
    "DataCallbacks",
    "ChangeCallbacks",
    "ConnectedCallbacks",
    "FireappError",
    "DatabaseError",
    "DatabaseReferenceNotSetError",
    "BackendInitializationError",
    "ValueNotFoundError",
    "ValueConversionError",
    "TransactionAbortedError",
    "UnsupportedValueError",
]
