# This project was developed with assistance from AI tools.
"""Authentication and authorization schemas."""

from db.enums import AppRole
from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """Injected by auth middleware into every authenticated request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str = ""
    name: str = ""
    roles: frozenset[AppRole] = Field(default_factory=frozenset)

    @property
    def role_level(self) -> str:
        """Highest held role, for log and audit enrichment."""
        for role in (AppRole.SUPER_ADMIN, AppRole.ADMIN, AppRole.UNDERWRITER,
                     AppRole.MODERATOR, AppRole.CUSTOMER_SERVICE):
            if role in self.roles:
                return role.value
        return AppRole.USER.value


class TokenPayload(BaseModel):
    """Decoded JWT claims. Only ``sub`` is required."""

    sub: str
    email: str = ""
    preferred_username: str = ""
    name: str = ""
