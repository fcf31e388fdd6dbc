"""FastAPI dependencies resolving the calling Actor.

Usage in any protected router:
    from src.rs_gateway.auth.dependencies import require_admin

    @router.post("/admin/thing")
    async def thing(actor: Annotated[Actor, Depends(require_admin)]):
        ...
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.rs_common.actor import Actor
from src.rs_common.enums import ActorRole
from src.rs_common.errors import InvalidCredentialsError
from src.rs_gateway.auth.jwt_handler import decode_actor

_bearer = HTTPBearer(auto_error=False)

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Actor:
    """Extract and validate the JWT Bearer token. HTTP 401 when absent or invalid."""
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        return decode_actor(credentials.credentials)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    return actor.require(ActorRole.ADMIN)


async def require_guest(actor: Actor = Depends(get_current_actor)) -> Actor:
    return actor.require(ActorRole.GUEST)


async def require_cast(actor: Actor = Depends(get_current_actor)) -> Actor:
    return actor.require(ActorRole.CAST)


async def require_account_holder(actor: Actor = Depends(get_current_actor)) -> Actor:
    return actor.require(ActorRole.GUEST, ActorRole.CAST)
