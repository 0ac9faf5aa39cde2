"""Domain Entities - Auth"""
from pydantic import BaseModel, ConfigDict
from typing import Optional

from domain.enums import Role


class User(BaseModel):
    """User Entity"""
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role = Role.USER
    disabled: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
