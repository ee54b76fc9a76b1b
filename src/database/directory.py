"""
Read-only lookups against tables owned by the user and programme services.

UserDirectory is the identity and assignment provider: it resolves a user's
role, email and assigned trainer. ProgrammeDirectory only answers whether a
programme exists.
"""

from typing import Any, Optional

from src.domain.identity import Caller, UserRecord
from .dynamodb_client import DynamoRepository


class UserDirectory(DynamoRepository):
    """
    Table Schema:
        Partition Key: user_id
    """

    def __init__(self, table_name: str = "users", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        if not user_id:
            return None
        response = self._execute(
            "get_user",
            {"user_id": user_id},
            lambda: self.table.get_item(Key={"user_id": user_id}),
        )
        item = response.get("Item")
        return UserRecord.from_item(item) if item else None

    def resolve_caller(self, user_id: str) -> Optional[Caller]:
        user = self.get_user(user_id)
        return Caller.from_user(user) if user else None


class ProgrammeDirectory(DynamoRepository):
    """
    Table Schema:
        Partition Key: programme_id
    """

    def __init__(self, table_name: str = "programmes", **kwargs: Any):
        super().__init__(table_name, **kwargs)

    def exists(self, programme_id: str) -> bool:
        response = self._execute(
            "get_programme",
            {"programme_id": programme_id},
            lambda: self.table.get_item(
                Key={"programme_id": programme_id}, ProjectionExpression="programme_id"
            ),
        )
        return "Item" in response
