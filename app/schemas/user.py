from uuid import UUID
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr

from app.modules.auth.models import RoleName


class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None


class UserCreate(UserBase):
    password: str
    organisation_id: Optional[UUID] = None
    role: RoleName = RoleName.student


class UserRead(UserBase):
    id: UUID
    organisation_id: Optional[UUID] = None
    role_names: list[str] = []

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
