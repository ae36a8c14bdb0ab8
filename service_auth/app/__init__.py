"""
Auth Service package for the session gateway.

- app.main: Application entrypoint that wires routes and lifecycle.
- app.authz: ext-authz check answering the edge proxy.
- app.sessions: Cookie handling, session cache, refresh store and resolver.
- app.validation / app.jwks: Access token validation against provider keys.
- app.identity: Identity provider interface and its HTTP client.
- app.ratelimit: Redis Lua fixed- and sliding-window rate limiting.
- app.signup: Rate-limited sign-up and verification flow.

Module import must not perform network calls. All IO happens in route
handlers or explicit startup hooks.
"""
