"""Auth helpers for FastAPI endpoints.

Provides:
- `User` Pydantic model for the JWT subject
- `verify_jwt` to decode/validate bearer JWTs
- `security`: the HTTP Bearer scheme (missing credentials yield None, not an error)
"""

from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
import jwt
from pydantic import BaseModel
from .config import get_settings

security = HTTPBearer(auto_error=False)


class User(BaseModel):
    """Authenticated user extracted from a validated JWT."""
    sub: str
    email: str | None = None
    roles: list[str] = []


def verify_jwt(token: str) -> User:
    """Decode and validate a JWT and return a `User`.

    Validates signature, expiration and (when configured) audience using settings.
    Raises HTTP 401 on any validation failure.

    Args:
        token: Bearer token string (JWT).

    Returns:
        User: Parsed user info from token claims.
    """
    s = get_settings()
    options = {"verify_exp": True, "verify_aud": s.OIDC_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            s.JWT_PUBLIC_KEY,
            algorithms=[s.JWT_ALGORITHM],
            audience=s.OIDC_AUDIENCE,
            options=options,
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )
    return User(
        sub=str(payload["sub"]),
        email=payload.get("email"),
        roles=payload.get("roles", []),
    )


