"""
Route policies: which route class, cache and gate apply to a request.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

from ..caching.response_cache import CachePolicy
from ..ratelimit.route_classes import DEFAULT_ROUTE_CLASS


class GateMode(str, Enum):
    STATUS = "status"
    PREMIUM = "premium"
    ROLE = "role"
    FEATURE = "feature"


@dataclass(frozen=True)
class GateRequirement:
    """What the subscription gate must check before the handler runs."""

    mode: GateMode
    roles: Tuple[str, ...] = ()
    feature: Optional[str] = None

    @classmethod
    def status(cls) -> "GateRequirement":
        return cls(GateMode.STATUS)

    @classmethod
    def premium(cls) -> "GateRequirement":
        return cls(GateMode.PREMIUM)

    @classmethod
    def any_role(cls, *roles: str) -> "GateRequirement":
        if not roles:
            raise ValueError("any_role requires at least one role")
        return cls(GateMode.ROLE, roles=tuple(roles))

    @classmethod
    def for_feature(cls, feature: str) -> "GateRequirement":
        return cls(GateMode.FEATURE, feature=feature)


@dataclass(frozen=True)
class RoutePolicy:
    route_class: str = DEFAULT_ROUTE_CLASS
    cache: Optional[CachePolicy] = None
    gate: Optional[GateRequirement] = None


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    policy: RoutePolicy
    methods: Optional[FrozenSet[str]] = None

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False
        prefix = self.prefix.rstrip("/")
        return path == prefix or path.startswith(prefix + "/") or not prefix


class RouteTable:
    """Ordered prefix rules; the first matching rule wins."""

    DEFAULT_BYPASS = ("/health", "/metrics")

    def __init__(
        self,
        rules: Optional[Iterable[RouteRule]] = None,
        *,
        default: Optional[RoutePolicy] = None,
        bypass: Iterable[str] = DEFAULT_BYPASS,
    ):
        self.rules: List[RouteRule] = list(rules or [])
        self.default = default or RoutePolicy()
        self.bypass = tuple(bypass)

    def add(self, prefix: str, policy: RoutePolicy, methods: Optional[Iterable[str]] = None) -> "RouteTable":
        method_set = frozenset(m.upper() for m in methods) if methods else None
        self.rules.append(RouteRule(prefix, policy, method_set))
        return self

    def is_bypassed(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.bypass)

    def resolve(self, method: str, path: str) -> Optional[RoutePolicy]:
        """Policy for a request, or None when the path skips the pipeline."""
        if self.is_bypassed(path):
            return None
        for rule in self.rules:
            if rule.matches(method, path):
                return rule.policy
        return self.default
