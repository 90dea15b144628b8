import logging
from functools import lru_cache
from typing import Optional

import httpx
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import settings

logger = logging.getLogger(__name__)

# Bearer token extractor (auto_error=False allows optional auth)
security = HTTPBearer(auto_error=False)

ALLOWED_ALGORITHMS = ["RS256", "ES256", "EdDSA", "HS256"]


@lru_cache(maxsize=1)
def get_jwks() -> dict:
    """Fetch Supabase JWKS for JWT verification (cached)."""
    jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
    response = httpx.get(jwks_url, timeout=10.0)
    response.raise_for_status()
    return response.json()


def _find_key(kid: str | None) -> dict | None:
    for key in get_jwks().get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def _signing_key(alg: str, kid: str | None):
    # Projects on legacy JWT secrets sign with HS256 and publish no JWKS entry
    if alg == "HS256":
        if not settings.supabase_jwt_secret:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: HS256 tokens are not accepted",
            )
        return settings.supabase_jwt_secret

    key = _find_key(kid)
    if not key:
        logger.warning(f"JWT kid={kid} not found in cached JWKS, refreshing...")
        get_jwks.cache_clear()
        key = _find_key(kid)

    if not key:
        logger.error(f"JWT kid={kid} not found even after JWKS refresh")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: key not found for kid={kid}",
        )
    return key


def verify_jwt(token: str) -> dict:
    """Verify a Supabase JWT and return the payload."""
    try:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg")

        if not alg:
            logger.warning("JWT missing algorithm in header")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token: missing algorithm",
            )
        if alg not in ALLOWED_ALGORITHMS:
            logger.warning(f"JWT unsupported algorithm: {alg}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: unsupported algorithm {alg}",
            )

        return jwt.decode(
            token,
            _signing_key(alg, header.get("kid")),
            algorithms=[alg],
            audience="authenticated",
            options={"verify_aud": True},
        )

    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
        )


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Require authentication - raises 401 if not authenticated."""
    if not credentials:
        logger.warning("Auth required but no Bearer token provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return verify_jwt(credentials.credentials)
