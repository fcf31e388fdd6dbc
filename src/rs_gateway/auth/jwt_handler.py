"""JWT access tokens carrying the caller's role.

Tokens are issued by the identity service that owns guest/cast/admin logins;
this service only verifies them. Claims: sub (account id), role, type.

MVP NOTE: HS256 with a shared JWT_SECRET. No revocation; tokens are valid
until expiry.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.rs_common.actor import Actor
from src.rs_common.enums import ActorRole
from src.rs_common.errors import InvalidCredentialsError

_ALGORITHM = settings.JWT_ALGORITHM
_ACCESS_EXPIRE = timedelta(minutes=settings.JWT_EXPIRE_MINUTES)


def create_access_token(actor_id: str, role: ActorRole) -> str:
    """Issue a short-lived access token. Used by tests and local tooling."""
    now = datetime.now(UTC)
    payload = {
        "sub": actor_id,
        "role": role.value,
        "type": "access",
        "iat": now,
        "exp": now + _ACCESS_EXPIRE,
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_actor(token: str) -> Actor:
    """Verify a bearer token and return the Actor it names.

    Raises:
        InvalidCredentialsError: bad signature, expired, wrong type, or an
            unknown role claim.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    if payload.get("type") != "access" or not payload.get("sub"):
        raise InvalidCredentialsError()
    try:
        role = ActorRole(payload.get("role"))
    except ValueError:
        raise InvalidCredentialsError() from None
    if role == ActorRole.SYSTEM:
        # system actors exist only inside the process (schedulers)
        raise InvalidCredentialsError()
    return Actor(role=role, id=str(payload["sub"]))
