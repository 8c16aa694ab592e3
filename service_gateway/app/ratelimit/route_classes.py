"""
Route class presets for the token bucket limiter.
"""

import os
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional

from shared.config import parse_positive_int
from shared.logging import get_logger

logger = get_logger("gateway.route_classes")

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

DEFAULT_ROUTE_CLASS = "api"


@dataclass(frozen=True)
class RouteClassConfig:
    """Static budget for one route class."""

    name: str
    max_tokens: int
    window_ms: int
    burst_allowance: int = 0
    message: str = "Too many requests, please try again later."

    @property
    def capacity(self) -> int:
        return self.max_tokens + self.burst_allowance

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0


def _with_burst(name: str, max_tokens: int, window_ms: int, message: str) -> RouteClassConfig:
    return RouteClassConfig(name, max_tokens, window_ms, burst_allowance=max_tokens // 10, message=message)


DEFAULT_ROUTE_CLASSES: Dict[str, RouteClassConfig] = {
    "auth": RouteClassConfig("auth", 5, 15 * MINUTE_MS,
                             message="Too many authentication attempts, please try again later."),
    "api": RouteClassConfig("api", 60, MINUTE_MS),
    "search": RouteClassConfig("search", 30, MINUTE_MS,
                               message="Too many search requests, please slow down."),
    "medium": RouteClassConfig("medium", 30, MINUTE_MS),
    "high": RouteClassConfig("high", 300, MINUTE_MS),
    "strict": RouteClassConfig("strict", 10, HOUR_MS),
    "admin": RouteClassConfig("admin", 30, MINUTE_MS),
    "public": _with_burst("public", 300, 15 * MINUTE_MS,
                          "Too many requests, please try again later."),
    "scraping": _with_burst("scraping", 100, HOUR_MS,
                            "Recipe import limit reached, please try again later."),
}


def load_route_classes(
    environ: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, RouteClassConfig]] = None,
) -> Dict[str, RouteClassConfig]:
    """Apply ``{CLASS}_WINDOW_MS``/``{CLASS}_MAX_REQUESTS``/``{CLASS}_BURST_ALLOWANCE`` overrides."""
    environ = os.environ if environ is None else environ
    route_classes = dict(DEFAULT_ROUTE_CLASSES if base is None else base)

    for name, config in list(route_classes.items()):
        prefix = name.upper()
        overrides = {}
        for suffix, field_name in (
            ("WINDOW_MS", "window_ms"),
            ("MAX_REQUESTS", "max_tokens"),
            ("BURST_ALLOWANCE", "burst_allowance"),
        ):
            raw = environ.get(f"{prefix}_{suffix}")
            if raw is None:
                continue
            value = parse_positive_int(raw)
            if value is None or (field_name != "burst_allowance" and value == 0):
                logger.warning("Ignoring invalid rate limit override", variable=f"{prefix}_{suffix}", value=raw)
                continue
            overrides[field_name] = value

        if overrides:
            route_classes[name] = replace(config, **overrides)
            logger.info("Route class overridden", route_class=name, **overrides)

    return route_classes
