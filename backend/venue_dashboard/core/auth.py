"""
Session-token authentication and access-level checks.

The auth provider issues signed JWT session tokens. The API validates them
locally and forwards the raw token to the data API so that every request runs
with the caller's own privileges.
"""

from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings


# Security scheme (missing header handled below so it maps to 401, not 403)
security = HTTPBearer(auto_error=False)

# Ordered from least to most privileged
ACCESS_LEVELS = ("staff", "admin", "super_admin")


class SessionTokenAuth:
    """
    Session token validation.
    Validates JWT tokens issued by the hosted auth provider.
    """

    def __init__(self, settings: Settings):
        self.secret = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.audience = settings.jwt_audience

    def validate_token(self, token: str) -> dict:
        """
        Validate session JWT and return claims.

        Raises:
            HTTPException: If token is invalid or expired
        """
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_exp": True}
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired"
            )
        except jwt.InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {str(e)}"
            )


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> str:
    """FastAPI dependency returning the raw bearer token (401 when absent)."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_bearer_token),
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    FastAPI dependency for protected endpoints.
    Validates the session token and returns its claims.

    Usage:
        @router.get("/protected")
        async def protected_route(user: dict = Depends(get_current_user)):
            user_id = user["sub"]
    """
    return SessionTokenAuth(settings).validate_token(token)


def access_level_of(claims: dict) -> Optional[str]:
    """Read the access level from token claims (app_metadata first)."""
    app_metadata = claims.get("app_metadata") or {}
    return app_metadata.get("access_level") or claims.get("access_level")


def has_access_level(claims: dict, required_level: str) -> bool:
    level = access_level_of(claims)
    if level not in ACCESS_LEVELS:
        return False
    return ACCESS_LEVELS.index(level) >= ACCESS_LEVELS.index(required_level)


def require_access_level(required_level: str):
    """
    Access-level dependency.
    Validates the user has at least the required level.

    Usage:
        @router.get("/admins")
        async def admins(user: dict = Depends(require_access_level("super_admin"))):
            ...
    """
    if required_level not in ACCESS_LEVELS:
        raise ValueError(f"Unknown access level: {required_level}")

    def level_checker(user: dict = Depends(get_current_user)) -> dict:
        if not has_access_level(user, required_level):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required access level: {required_level}"
            )
        return user
    return level_checker
