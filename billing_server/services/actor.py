from dataclasses import dataclass
from typing import Optional

from billing_server.models.enums import UserRole


@dataclass(frozen=True)
class Actor:
    """Verified caller identity handed over by the authentication layer."""

    user_id: Optional[int]
    role: str = UserRole.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


# Identity used by maintenance scripts
SYSTEM = Actor(user_id=None, role=UserRole.ADMIN.value)
