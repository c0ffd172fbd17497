"""Adapters from native backend signals to the caller callback protocols.

Backends report failures in different shapes: error objects that convert to
exceptions (``to_exception()``), platform error objects carrying a
``localized_description``, plain exceptions, or a bare ``False`` flag.  The
functions here turn each native signal into exactly one call on the caller's
callback and never retry, buffer or de-duplicate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from fireapp.codec import MISSING
from fireapp.errors import (
    DatabaseError,
    TransactionAbortedError,
    ValueConversionError,
    ValueNotFoundError,
)

if TYPE_CHECKING:
    from fireapp.callbacks import CompleteCallback, DataCallback
    from fireapp.codec import ValueCodec


def translate_error(native: Any) -> DatabaseError | None:
    """Map a backend error signal to a :class:`DatabaseError` (or ``None``)."""
    if native is None or native is True:
        return None
    if isinstance(native, DatabaseError):
        return native
    if native is False:
        return DatabaseError("Operation failed")

    to_exception = getattr(native, "to_exception", None)
    if callable(to_exception):
        exc = to_exception()
        return DatabaseError(
            str(exc),
            code=getattr(native, "code", None),
            details=getattr(native, "details", None),
        )

    description = getattr(native, "localized_description", None)
    if description is not None:
        return DatabaseError(str(description), code=getattr(native, "code", None))

    if isinstance(native, BaseException):
        return DatabaseError(str(native) or type(native).__name__, details=native)

    return DatabaseError(str(native))


def completion(callback: "CompleteCallback | None") -> Callable[..., None] | None:
    """Native write completion ``(error, *rest)`` for *callback*.

    Returns ``None`` when there is no callback so the backend runs the
    operation fire-and-forget.
    """
    if callback is None:
        return None

    def _complete(error: Any, *_: Any) -> None:
        cause = translate_error(error)
        if cause is not None:
            callback.on_error(cause)
        else:
            callback.on_success()

    return _complete


def transaction_completion(callback: "CompleteCallback | None") -> Callable[..., None]:
    """Native transaction completion ``(error, committed, snapshot)``."""

    def _complete(error: Any, committed: bool = True, *_: Any) -> None:
        if callback is None:
            return
        cause = translate_error(error)
        if cause is None and not committed:
            cause = TransactionAbortedError("Transaction was not committed", code="aborted")
        if cause is not None:
            callback.on_error(cause)
        else:
            callback.on_success()

    return _complete


def data_delivery(
    codec: "ValueCodec",
    callback: "DataCallback",
    type_tag: Any,
    element_type: Any,
    path: str,
) -> tuple[Callable[[Any], None], Callable[[Any], None]]:
    """``(on_value, on_cancelled)`` handlers for a one-shot read."""

    def _on_value(snapshot: Any) -> None:
        try:
            value = codec.decode(snapshot, type_tag, element_type)
        except ValueConversionError as exc:
            callback.on_error(exc)
            return
        if value is MISSING:
            callback.on_error(ValueNotFoundError(path))
        else:
            callback.on_data(value)

    def _on_cancelled(error: Any) -> None:
        callback.on_error(translate_error(error) or DatabaseError("Read cancelled"))

    return _on_value, _on_cancelled
