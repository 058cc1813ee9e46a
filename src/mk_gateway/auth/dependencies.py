"""FastAPI dependencies: acting user and service-token guard.

Usage in any protected router:
    from src.mk_gateway.auth.dependencies import get_current_user_id

    @router.get("/protected")
    async def protected(user_id: Annotated[str, Depends(get_current_user_id)]):
        ...
"""

import hmac

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import settings
from src.mk_common.errors import InvalidCredentialsError, ServiceTokenError
from src.mk_gateway.auth.jwt_handler import decode_access_token

_bearer = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    """Resolve the buyer/seller id from the Bearer token.

    Raises InvalidCredentialsError (401) when the token is missing or invalid.
    """
    if credentials is None or not credentials.credentials:
        raise InvalidCredentialsError()
    return decode_access_token(credentials.credentials)


async def require_service_token(
    x_service_token: str | None = Header(None, alias="X-Service-Token"),
) -> str:
    """Guard for scheduler, courier and operator endpoints."""
    if not x_service_token or not hmac.compare_digest(
        x_service_token.encode(), settings.SERVICE_TOKEN.encode()
    ):
        raise ServiceTokenError()
    return "service"
