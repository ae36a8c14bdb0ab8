"""
Identity provider integration.

The provider owns credentials, verification codes and token issuance. The
gateway only consumes opaque tokens and outcomes through the
``IdentityProvider`` protocol; ``HttpIdentityProvider`` is the production
implementation.
"""
