"""
Per-request context threaded through the gateway pipeline.
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from ..ratelimit.route_classes import DEFAULT_ROUTE_CLASS
from ..subscriptions.models import AccessTier


@dataclass(frozen=True)
class RequestContext:
    """Immutable view of one request.

    Stages never mutate a context; they return an updated copy via
    ``dataclasses.replace`` which the next stage receives.
    """

    request_id: str
    method: str
    path: str
    client_ip: str = "unknown"
    query: Tuple[Tuple[str, str], ...] = ()
    body: Optional[Mapping[str, Any]] = None
    user_id: Optional[str] = None
    role: Optional[str] = None
    route_class: str = DEFAULT_ROUTE_CLASS
    cache_key: Optional[str] = None
    access_tier: Optional[AccessTier] = None
    started_at: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        if self.body is not None:
            object.__setattr__(self, "body", freeze_json(self.body))

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def rate_limit_key(self) -> str:
        """``ip-userId`` for authenticated callers, the bare IP otherwise."""
        if self.user_id:
            return f"{self.client_ip}-{self.user_id}"
        return self.client_ip

    def elapsed_ms(self) -> float:
        return round((time.monotonic() - self.started_at) * 1000, 2)


def freeze_json(value: Any) -> Any:
    """Read-only copy of a decoded JSON value: mappings become proxies, lists tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze_json(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_json(item) for item in value)
    return value


def client_ip_from_headers(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """Extract the caller IP from standard proxy headers."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if peer:
        return peer
    return "unknown"
