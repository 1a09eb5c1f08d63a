"""User model."""

from typing import Optional

from pydantic import BaseModel


class User(BaseModel):
    """A staff user of the hospital information system."""

    id: int
    username: str
    contact: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
