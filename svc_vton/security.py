from __future__ import annotations

from typing import Any, Dict

from jose import JWTError, jwt

from svc_vton.config import settings


def _strip_bearer(auth: str) -> str:
    s = (auth or "").strip()
    if s.lower().startswith("bearer "):
        return s[7:].strip()
    return s


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Validate a user access JWT and return its claims.

    Input may be the raw token or 'Bearer <token>'. Issuer and audience are only
    checked when configured.
    """
    if not settings.JWT_SECRET:
        raise ValueError("invalid_token: JWT_SECRET not set")

    issuer = settings.JWT_ISSUER.strip() or None
    audience = settings.JWT_AUDIENCE.strip() or None

    kwargs: Dict[str, Any] = {
        "algorithms": [settings.JWT_ALG],
        "options": {"verify_aud": bool(audience), "require_sub": True, "leeway": 30},
    }
    if issuer:
        kwargs["issuer"] = issuer
    if audience:
        kwargs["audience"] = audience

    try:
        return jwt.decode(_strip_bearer(token), settings.JWT_SECRET, **kwargs)
    except JWTError as e:
        raise ValueError(f"invalid_token: {e}") from e
