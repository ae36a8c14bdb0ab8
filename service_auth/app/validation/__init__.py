"""
Token validation package.

Validates access tokens issued by the upstream identity provider:
signature against the discovery-published keys, issuer, expiry with a
clock-skew allowance, and the ``client_id`` claim against the configured
backend client. Expiry is reported separately (``TokenExpiredError``) so
callers can refresh instead of denying.
"""
