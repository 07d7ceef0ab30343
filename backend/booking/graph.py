# backend/booking/graph.py
"""
Helpers for reading the Apollo state graph embedded in booking pages.

The graph is a plain ``json.loads`` result: a dict keyed by ``"<TypeName>:<id>"``
whose values are dicts, lists or scalars of no fixed shape. Every accessor here
returns ``None`` (or an empty container) when the value is missing or has the
wrong type, so extraction code never has to guard against shape mismatches.
"""
import re
from typing import Any, Callable, Iterable, Optional

from backend.booking.errors import NotFoundError

__all__ = [
    "get_path",
    "as_dict",
    "as_list",
    "as_str",
    "as_float",
    "as_int",
    "type_prefix",
    "resolve_ref",
    "ref_field",
    "find_collection",
]

KeyOrder = Callable[[Iterable[str]], Iterable[str]]


def as_dict(x: Any) -> Optional[dict]:
    return x if isinstance(x, dict) else None


def as_list(x: Any) -> Optional[list]:
    return x if isinstance(x, list) else None


def as_str(x: Any) -> Optional[str]:
    return x if isinstance(x, str) else None


def as_float(x: Any) -> Optional[float]:
    # JSON booleans are ints in Python; they are not numbers here
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return None
    return float(x)


def as_int(x: Any) -> Optional[int]:
    v = as_float(x)
    return int(v) if v is not None else None


def get_path(obj: Any, *keys: str) -> Any:
    """Walk nested dicts; None as soon as a step is missing or not a dict."""
    cur = obj
    for k in keys:
        d = as_dict(cur)
        if d is None:
            return None
        cur = d.get(k)
    return cur


def type_prefix(key: str) -> str:
    """'BasicPropertyData:123' → 'BasicPropertyData'. Keys without ':' are returned as-is."""
    return key.split(":", 1)[0]


def ref_field(ref: str, field: str) -> Optional[str]:
    """
    Pull a string field out of a reference descriptor such as
    'PropertyType:{"type":"CAMPING"}' without needing the referenced node.
    """
    m = re.search(r'"' + re.escape(field) + r'"\s*:\s*"([^"]+)"', ref)
    return m.group(1) if m else None


def resolve_ref(graph: dict, value: Any) -> tuple[Optional[str], Optional[dict]]:
    """
    Return (ref, node) for a ``{"__ref": key}`` value.
    node is None when the key was never materialized in this snapshot; callers
    can still read fields off the ref string with ref_field().
    """
    ref = as_str(get_path(value, "__ref"))
    if ref is None:
        return None, None
    return ref, as_dict(graph.get(ref))


def find_collection(tree: Any, name: str = "results", key_order: Optional[KeyOrder] = None) -> list:
    """
    Depth-first search for the first key equal to `name` whose value is a list.

    Dict keys are visited in `key_order(keys)` if given, otherwise in insertion
    order (document order of the parsed JSON). When several collections share the
    name at different depths the one returned depends on that order; pass
    ``key_order=sorted`` to pin it.

    Raises NotFoundError when no such key exists. A present but empty list is
    returned as [].
    """
    order = key_order or (lambda keys: keys)
    found = _find_collection(tree, name, order)
    if found is None:
        raise NotFoundError(f"no {name!r} collection found")
    return found


def _find_collection(node: Any, name: str, order: KeyOrder) -> Optional[list]:
    if isinstance(node, dict):
        for key in order(list(node.keys())):
            val = node[key]
            if key == name and isinstance(val, list):
                return val
            hit = _find_collection(val, name, order)
            if hit is not None:
                return hit
    elif isinstance(node, list):
        for item in node:
            hit = _find_collection(item, name, order)
            if hit is not None:
                return hit
    return None
