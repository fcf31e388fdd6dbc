"""Caller identity threaded explicitly through every mutating operation."""

from dataclasses import dataclass

from src.rs_common.enums import ActorRole
from src.rs_common.errors import ForbiddenError


@dataclass(frozen=True)
class Actor:
    role: ActorRole
    id: str

    @classmethod
    def system(cls, name: str = "scheduler") -> "Actor":
        return cls(ActorRole.SYSTEM, name)

    def require(self, *roles: ActorRole) -> "Actor":
        if self.role not in roles:
            raise ForbiddenError(" or ".join(r.value for r in roles))
        return self

    def __str__(self) -> str:
        return f"{self.role.value}:{self.id}"
