"""
Signing key client package.

Retrieves the identity provider's discovery document and JSON Web Key Set
used to verify access token signatures.

Key points:
- Issuer and jwks_uri come from ``/.well-known/openid-configuration``.
- Keys are cached for a TTL; an unknown kid forces a throttled refresh.
- Stale keys are served when a refresh fails.
"""
