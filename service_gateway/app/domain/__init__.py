"""
Request pipeline wiring for the gateway.
"""

from .context import RequestContext, client_ip_from_headers
from .pipeline import PipelineResponse, RequestPipeline
from .pipeline_middleware import PipelineMiddleware, get_request_context
from .route_policy import GateMode, GateRequirement, RoutePolicy, RouteRule, RouteTable

__all__ = [
    "GateMode",
    "GateRequirement",
    "PipelineMiddleware",
    "PipelineResponse",
    "RequestContext",
    "RequestPipeline",
    "RoutePolicy",
    "RouteRule",
    "RouteTable",
    "client_ip_from_headers",
    "get_request_context",
]
