"""
Distributed rate limiting.

Counters live entirely in Redis and are evaluated by server-side Lua
scripts so check-and-increment is a single atomic round trip:

- scripts: fixed-window and sliding-window Lua sources.
- keys: rate limit key model (algorithm, optional route, identifier).
- limiter: ``RedisRateLimiter.allow`` returning a ``RateLimitDecision``.
- enforcement: helpers that raise ``RateLimitError`` on denial.
- middleware: per-identity sliding window for write routes.
"""
