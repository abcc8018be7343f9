from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from merchpay.core.enums import UserRole


class CurrentUser(BaseModel):
    """Resolved actor passed explicitly into every service call."""

    id: UUID
    role: UserRole
    first_name: str = ""
    last_name: str = ""
    dni: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or str(self.id)
