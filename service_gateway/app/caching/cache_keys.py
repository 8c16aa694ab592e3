"""
Deterministic cache keys for GET responses.
"""

import hashlib
import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

QueryInput = Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None]

_VERSION_SEGMENT = re.compile(r"^v\d+$")

# Collection segments mapped onto the well-known invalidation namespaces.
_SEGMENT_NAMESPACES = {
    "users": "user",
    "recipes": "recipe",
    "ingredients": "ingredient",
}


def normalize_query(query: QueryInput) -> Dict[str, List[str]]:
    """Collapse query params into ``name -> [values]`` with stable key order.

    Repeated parameters keep their relative order, since ``?tag=a&tag=b``
    may legitimately differ from ``?tag=b&tag=a``.
    """
    if not query:
        return {}

    items = query.items() if isinstance(query, Mapping) else query
    grouped: Dict[str, List[str]] = {}
    for name, value in items:
        values = value if isinstance(value, (list, tuple)) else [value]
        grouped.setdefault(str(name), []).extend(str(v) for v in values)
    return {name: grouped[name] for name in sorted(grouped)}


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _canonical(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def digest_request(
    method: str,
    path: str,
    query: QueryInput = None,
    body: Optional[Mapping[str, Any]] = None,
    user_id: Optional[str] = None,
) -> str:
    """SHA-256 over the logical request, independent of mapping key order."""
    payload: Dict[str, Any] = {
        "method": method.upper(),
        "path": path,
        "query": normalize_query(query),
    }
    if body:
        payload["body"] = _canonical(body)
    if user_id:
        payload["user"] = user_id

    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def namespace_for_path(path: str) -> str:
    """Resource namespace for a path: ``/api/v1/recipes/42`` -> ``recipe``."""
    for segment in path.strip("/").split("/"):
        if not segment or segment == "api" or _VERSION_SEGMENT.match(segment):
            continue
        return _SEGMENT_NAMESPACES.get(segment, segment)
    return "general"


def build_cache_key(
    namespace: str,
    method: str,
    path: str,
    query: QueryInput = None,
    body: Optional[Mapping[str, Any]] = None,
    user_id: Optional[str] = None,
) -> str:
    """Namespaced key so ``<namespace>:*`` invalidates a whole resource type."""
    return f"{namespace}:{digest_request(method, path, query, body, user_id)}"
