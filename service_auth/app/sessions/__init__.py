"""
Session state for the Auth Service.

- models: SessionData, RefreshTokenRecord and the typed resolution results
  (Resolved, Denied, ClearRefreshCookie).
- cookies: AT_SID / RT_SID parsing and Set-Cookie formatting.
- cache: Redis access-session cache (``sess:{id}``), refresh tokens stripped.
- refresh_store: durable refresh-session records (PostgreSQL or in-memory).
- resolver: the cookie-to-session state machine, including refresh rotation.
"""
