"""Bearer JWT guard for administrator-only onboarding endpoints.

Tokens are minted by the platform's identity service and signed with the
shared ``jwt_secret``; this module only verifies them and checks the role.
"""

from dataclasses import dataclass

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tenantflow.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)

MIN_SECRET_BYTES = 32


def jwt_secret_problem(secret: str) -> str | None:
    """Why ``secret`` cannot sign admin tokens, or None when it is usable."""
    if not secret:
        return "JWT_SECRET is not set"
    if len(secret.encode()) < MIN_SECRET_BYTES:
        return f"JWT_SECRET must be at least {MIN_SECRET_BYTES} bytes"
    return None


def validate_jwt_secret() -> None:
    """Raise RuntimeError at startup when the admin JWT secret is missing or short."""
    problem = jwt_secret_problem(get_settings().jwt_secret)
    if problem:
        raise RuntimeError(problem)


@dataclass(frozen=True)
class AdminPrincipal:
    """Caller extracted from a verified admin JWT."""

    user_id: str
    role: str
    claims: dict


def decode_admin_jwt(token: str) -> AdminPrincipal:
    """Verify and decode an admin JWT.

    Raises ``HTTPException(401)`` on any validation failure and
    ``HTTPException(503)`` when no usable secret is configured.
    """
    settings = get_settings()
    if jwt_secret_problem(settings.jwt_secret):
        raise HTTPException(status_code=503, detail="Admin authentication is not configured")
    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    return AdminPrincipal(user_id=payload["sub"], role=str(payload.get("role", "")), claims=payload)


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AdminPrincipal:
    """FastAPI dependency admitting only callers whose ``role`` claim is an admin role.

    Usage::

        @router.delete("/{onboarding_id}")
        async def cancel(admin: AdminPrincipal = Depends(require_admin)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    principal = decode_admin_jwt(credentials.credentials)
    if principal.role not in get_settings().admin_roles:
        raise HTTPException(status_code=403, detail="Administrator role required")

    # Error handlers and audit logging read this
    request.state.user_id = principal.user_id
    return principal
