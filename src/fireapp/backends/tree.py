"""Helpers for path-addressed JSON trees."""

from __future__ import annotations

from typing import Any


def is_related(a: str, b: str) -> bool:
    """True when paths *a* and *b* are equal or one contains the other."""
    if not a or not b or a == b:
        return True
    return a.startswith(b + "/") or b.startswith(a + "/")


def _as_array(node: dict[str, Any]) -> list[Any] | None:
    keys = []
    for key in node:
        if not key.isdigit() or (len(key) > 1 and key[0] == "0"):
            return None
        keys.append(int(key))
    if not keys or max(keys) >= 2 * len(keys):
        return None
    result: list[Any] = [None] * (max(keys) + 1)
    for key, child in node.items():
        result[int(key)] = child
    return result


def to_native(value: Any) -> Any:
    """Turn maps keyed by dense integers back into lists, recursively.

    A map becomes a list when all keys are non-negative integers and more
    than half of the indices up to the largest key are present.
    """
    if isinstance(value, dict):
        converted = {k: to_native(v) for k, v in value.items()}
        array = _as_array(converted)
        return converted if array is None else array
    if isinstance(value, list):
        return [to_native(v) for v in value]
    return value


def _prune(value: Any) -> Any:
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        pruned = {k: v for k, v in pruned.items() if v is not None}
        return pruned or None
    if isinstance(value, list):
        return _prune({str(i): v for i, v in enumerate(value)})
    return value


def set_at(tree: Any, path: str, value: Any) -> Any:
    """Return *tree* with *value* stored at relative *path*.

    ``None`` deletes; empty branches disappear.  Lists along the way are
    handled as index-keyed maps.
    """
    parts = [p for p in path.split("/") if p]
    if not parts:
        return _prune(value)
    node = _prune(tree)
    root: dict[str, Any] = node if isinstance(node, dict) else {}
    current = root
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    leaf = _prune(value)
    if leaf is None:
        current.pop(parts[-1], None)
    else:
        current[parts[-1]] = leaf
    return _prune(root)
