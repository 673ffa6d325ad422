from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.orm import Session

from app.modules.auth.models import Organisation, Role, User, UserRole


class UserRepository:
    """Repository for User entity."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()


class RoleRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_name(self, name: str) -> Optional[Role]:
        return self.db.query(Role).filter(Role.name == name).first()

    def get_or_create(self, name: str) -> Role:
        role = self.get_by_name(name)
        if role is None:
            role = Role(name=name)
            self.db.add(role)
            self.db.flush()
        return role

    def assign(self, user_id: uuid.UUID, role_id: uuid.UUID) -> UserRole:
        user_role = UserRole(user_id=user_id, role_id=role_id)
        self.db.add(user_role)
        self.db.flush()
        return user_role


class OrganisationRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, organisation_id: uuid.UUID) -> Optional[Organisation]:
        return (
            self.db.query(Organisation)
            .filter(Organisation.id == organisation_id)
            .first()
        )
