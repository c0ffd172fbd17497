"""Type-directed decoding of backend snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fireapp.convert import coerce_value, index_keyed, to_plain

if TYPE_CHECKING:
    from fireapp.backends.base import DatabaseBackend


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


#: Returned by :meth:`ValueCodec.decode` when no value is stored at the path.
MISSING: Any = _Missing()

#: Container tags whose element type cannot be carried by the tag itself.
CONTAINER_TAGS = (list, dict)


class ValueCodec:
    """Decodes snapshots into caller-declared shapes and encodes values back.

    ``list`` and ``dict`` tags take the backend's generic tree as-is (the
    backend's typed conversion only materialises concrete classes); an
    explicit *element_type* then coerces each element.  Any other tag is
    handed to the backend's own typed conversion.

    A ``dict`` tag turns an array-shaped tree back into an index-keyed
    mapping.
    """

    def __init__(self, backend: "DatabaseBackend") -> None:
        self.backend = backend

    def decode(self, snapshot: Any, type_tag: Any = None, element_type: Any = None) -> Any:
        if not self.backend.snapshot_exists(snapshot):
            return MISSING

        if type_tag is None or type_tag is object:
            return self.backend.snapshot_value(snapshot)

        if type_tag in CONTAINER_TAGS:
            value = self.backend.snapshot_value(snapshot)
            if type_tag is dict and isinstance(value, list):
                # Dense integer keys come back as a list.
                value = index_keyed(value)
            if element_type is None:
                return value
            return coerce_value(value, type_tag[element_type] if type_tag is list else dict[str, element_type])

        return self.backend.convert(snapshot, type_tag)

    def encode(self, value: Any) -> Any:
        return self.backend.encode(to_plain(value))
