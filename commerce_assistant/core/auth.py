"""Customer authentication with storefront-issued JWTs verified against its JWKS.

The verified token is the only source of a caller's identity and
permissions. Request bodies never carry them.
"""

import asyncio
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient, PyJWKClientError

from commerce_assistant.core.config import settings
from commerce_assistant.schemas.context import Caller

# HTTP Bearer token security scheme
bearer_scheme = HTTPBearer(auto_error=False)

# JWKS client for fetching the storefront's public keys
_jwks_client: PyJWKClient | None = None
_jwks_lock = asyncio.Lock()


def get_jwks_client() -> PyJWKClient:
    """Get or create JWKS client."""
    global _jwks_client
    if _jwks_client is None:
        if settings.auth_jwks_url:
            jwks_url = settings.auth_jwks_url
        else:
            jwks_url = f"{settings.auth_url}/api/auth/jwks"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


async def verify_token(token: str) -> dict[str, Any]:
    """Verify a customer JWT using the storefront's JWKS.

    Args:
        token: The JWT token to verify

    Returns:
        The decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        jwks_client = get_jwks_client()
        signing_key = jwks_client.get_signing_key_from_jwt(token)

        payload: dict[str, Any] = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.auth_url,
            issuer=settings.auth_url,
            options={
                "verify_exp": True,
                "verify_iat": True,
                "verify_aud": True,
                "verify_iss": True,
            },
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except PyJWKClientError as e:
        # Reset cached client so next request retries fresh
        async with _jwks_lock:
            global _jwks_client
            _jwks_client = None
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Authentication service unavailable. Unable to verify token: {str(e)}",
        )


def caller_from_claims(payload: dict[str, Any], token: str) -> Caller:
    """Map verified token claims onto the caller the engine authorizes against.

    ``sub`` is the customer id. ``role`` defaults to ``customer`` and
    ``permissions`` may be a list or a space-separated string.
    """
    permissions = payload.get("permissions") or []
    if isinstance(permissions, str):
        permissions = permissions.split()
    return Caller(
        customer_id=str(payload["sub"]),
        role=payload.get("role") or "customer",
        permissions=frozenset(str(p) for p in permissions),
        token=token,
    )


async def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Caller | None:
    """Get the authenticated caller, or None for anonymous shoppers.

    An invalid token or one without ``sub`` is treated as anonymous, so
    actions that require authentication are refused downstream.
    """
    if credentials is None:
        return None

    try:
        payload = await verify_token(credentials.credentials)
    except HTTPException:
        return None
    if not payload.get("sub"):
        return None
    return caller_from_claims(payload, credentials.credentials)


# Type alias for dependency injection
OptionalCaller = Annotated[Caller | None, Depends(get_optional_caller)]
