"""Authentication module.

Verifies bearer credentials issued by the external one-time-code login flow
and exposes the caller's profile and the user directory.

Services:
    - TokenService: JWT signing/verification and user resolution.
"""
