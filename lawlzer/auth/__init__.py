"""
Authentication for the Lawlzer site.

Design goals:
- Three OAuth providers (Google with PKCE; Discord and GitHub without).
- Server-side sessions: the cookie only carries an opaque session id.
- Transaction cookies (state, verifier, post-login target) never outlive one callback.
"""
