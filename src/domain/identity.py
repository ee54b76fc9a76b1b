"""
Identity and assignment records supplied by the user service.

This core never writes users; it only reads role, email and the member's
assigned trainer to authorize callers and resolve session participants.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    TRAINER = "trainer"
    MEMBER = "member"


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    role: Role
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    assigned_trainer_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.user_id

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "UserRecord":
        return cls(
            user_id=item["user_id"],
            role=Role(item.get("role", Role.MEMBER.value)),
            email=item.get("email"),
            first_name=item.get("first_name", ""),
            last_name=item.get("last_name", ""),
            assigned_trainer_id=item.get("assigned_trainer_id"),
        )


@dataclass(frozen=True)
class Caller:
    """Authenticated principal invoking an engine operation."""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role == Role.STAFF

    @property
    def is_trainer(self) -> bool:
        return self.role == Role.TRAINER

    @property
    def is_member(self) -> bool:
        return self.role == Role.MEMBER

    @classmethod
    def from_user(cls, user: UserRecord) -> "Caller":
        return cls(user_id=user.user_id, role=user.role)
