"""Supabase JWT authentication for FastAPI."""

from dataclasses import dataclass
from functools import lru_cache

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)

# In-memory cache of provisioned user IDs to avoid DB queries on every request
_provisioned_cache: set[str] = set()


@lru_cache
def get_jwks_client(supabase_url: str) -> PyJWKClient:
    """Create a cached JWKS client for the project's asymmetric signing keys."""
    jwks_url = f"{supabase_url.rstrip('/')}/auth/v1/.well-known/jwks.json"
    return PyJWKClient(jwks_url, cache_keys=True, lifespan=300)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user extracted from a Supabase access token."""

    user_id: str
    email: str | None
    claims: dict


def decode_supabase_jwt(token: str) -> AuthUser:
    """Verify and decode a Supabase access token.

    HS256 with the project JWT secret when configured, otherwise the key is
    fetched from the project's JWKS endpoint. Raises ``HTTPException(401)``
    on any validation failure.
    """
    settings = get_settings()
    options = {
        "verify_exp": True,
        "verify_iat": True,
        "require": ["sub", "exp"],
    }
    issuer = f"{settings.supabase_url.rstrip('/')}/auth/v1" if settings.supabase_url else None

    try:
        if settings.supabase_jwt_secret:
            key = settings.supabase_jwt_secret
            algorithms = ["HS256"]
        elif settings.supabase_url:
            key = get_jwks_client(settings.supabase_url).get_signing_key_from_jwt(token).key
            algorithms = ["RS256", "ES256"]
        else:
            raise HTTPException(status_code=500, detail="Authentication is misconfigured")

        payload = pyjwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.supabase_jwt_audience,
            issuer=issuer,
            options=options,
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidAudienceError:
        raise HTTPException(status_code=401, detail="Invalid audience (aud mismatch)")
    except pyjwt.InvalidIssuerError:
        raise HTTPException(status_code=401, detail="Invalid issuer (iss mismatch)")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.PyJWKClientError as exc:
        raise HTTPException(status_code=401, detail=f"Unable to resolve signing key: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")

    return AuthUser(user_id=sub, email=payload.get("email"), claims=payload)


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that validates the bearer token.

    Also provisions the ``users`` row on the first call for a user id.

    Usage::

        @router.get("/protected")
        async def protected(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    user = decode_supabase_jwt(credentials.credentials)

    if user.user_id not in _provisioned_cache and user.email:
        from app.core.provisioning import provision_user

        services = request.app.state.billing
        await provision_user(services.session_factory, user)
        _provisioned_cache.add(user.user_id)

    # Set user_id on request state for downstream use (error handlers, logging)
    request.state.user_id = user.user_id

    return user
