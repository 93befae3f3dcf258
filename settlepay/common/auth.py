"""Request-scoped caller identity from bearer tokens and internal API keys."""

from dataclasses import dataclass

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from settlepay.common.config import settings
from settlepay.common.errors import AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated user a request acts on behalf of."""

    user_id: str


def decode_access_token(token: str) -> CallerIdentity:
    """Validate a bearer JWT and return the caller it identifies."""

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options={"verify_aud": settings.auth_jwt_audience is not None},
        )
    except JWTError as exc:
        raise AuthenticationError("invalid bearer token") from exc
    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("invalid bearer token")
    return CallerIdentity(user_id=user_id)


def require_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CallerIdentity:
    """FastAPI dependency for endpoints that need an authenticated caller."""

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("missing bearer token")
    return decode_access_token(credentials.credentials)


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Reject internal requests that do not provide the configured API key."""

    if x_api_key != settings.api_key:
        raise AuthenticationError("invalid API key")
