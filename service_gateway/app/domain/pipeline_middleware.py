"""
Starlette adapter for the request pipeline.
"""

import json
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from shared.errors import ServiceError
from shared.logging import clear_context, get_logger, set_request_id, set_user_context

from ..auth.tokens import TokenVerifier
from .context import RequestContext, client_ip_from_headers
from .pipeline import PipelineResponse, RequestPipeline
from .route_policy import RouteTable

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency returning the context the pipeline resolved."""
    context = getattr(request.state, "request_context", None)
    if context is None:
        raise ServiceError("Request context unavailable")
    return context


class PipelineMiddleware(BaseHTTPMiddleware):
    """Builds a ``RequestContext`` per request and hands it to the pipeline."""

    def __init__(self, app, pipeline: RequestPipeline, route_table: RouteTable, token_verifier: TokenVerifier):
        super().__init__(app)
        self.pipeline = pipeline
        self.route_table = route_table
        self.token_verifier = token_verifier
        self.logger = get_logger("gateway.pipeline_middleware")

    async def dispatch(self, request: Request, call_next):
        policy = self.route_table.resolve(request.method, request.url.path)
        if policy is None:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        claims = self.token_verifier.verify_header(request.headers.get("Authorization"))
        if claims is not None:
            set_user_context(claims.id)

        context = RequestContext(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=client_ip_from_headers(request.headers, request.client.host if request.client else None),
            query=tuple(request.query_params.multi_items()),
            body=await self._json_body(request),
            user_id=claims.id if claims else None,
            role=claims.role if claims else None,
        )

        async def _downstream(ctx: RequestContext) -> PipelineResponse:
            request.state.request_context = ctx
            response = await call_next(request)
            body = b"".join([chunk async for chunk in response.body_iterator])
            return PipelineResponse(response.status_code, body, dict(response.headers))

        try:
            result = await self.pipeline.handle(context, policy, _downstream)
        finally:
            clear_context()

        headers = {k: v for k, v in result.headers.items() if k.lower() != "content-length"}
        headers["X-Request-ID"] = request_id
        self.logger.debug(
            "Pipeline completed",
            path=context.path,
            status_code=result.status_code,
            duration_ms=context.elapsed_ms(),
        )
        return Response(content=result.body, status_code=result.status_code, headers=headers)

    async def _json_body(self, request: Request) -> Optional[Dict[str, Any]]:
        if request.method.upper() not in _BODY_METHODS:
            return None
        if "json" not in request.headers.get("content-type", "").lower():
            return None

        raw = await request.body()
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            # Malformed bodies are the handler's problem to report.
            return None
        return payload if isinstance(payload, dict) else None
