"""Shared-secret bearer token helpers."""

import hmac


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_bearer_token(presented: str | None, expected: str) -> bool:
    """Constant-time comparison of a presented token against the configured secret."""
    if presented is None:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


def authorization_headers(bearer_token: str | None) -> dict[str, str]:
    """Headers for an outbound call. Empty when no token is configured."""
    if not bearer_token:
        return {}
    return {"Authorization": f"Bearer {bearer_token}"}
