"""
Recipe Access Gateway application package.

Every request to the recipe backend passes through one pipeline:
- Rate limiting: fixed-window token buckets per route class
- Response caching: replay of idempotent GET responses
- Subscription gating: access tier and role checks per route

Structure:
- app.main: FastAPI app, admin routes, and middleware wiring.
- app.adapters: key-value store and accounts service clients.
- app.auth: bearer token verification.
- app.caching: cache keys and the response cache.
- app.ratelimit: route classes and the token bucket.
- app.subscriptions: account model and the subscription gate.
- app.domain: request context, route policies, and the pipeline.
"""
