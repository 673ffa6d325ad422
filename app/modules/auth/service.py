from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.core.security import create_access_token, get_password_hash, verify_password
from app.modules.auth.models import RoleName, User, UserStatus
from app.modules.auth.repository import (
    OrganisationRepository,
    RoleRepository,
    UserRepository,
)

logger = get_logger(__name__)


class AuthService:
    """Service layer for authentication operations."""

    def __init__(self, db: Session):
        self.db = db
        self.user_repo = UserRepository(db)
        self.role_repo = RoleRepository(db)
        self.org_repo = OrganisationRepository(db)

    def register_user(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        organisation_id: Optional[uuid.UUID] = None,
        role: RoleName = RoleName.student,
    ) -> User:
        if self.user_repo.get_by_email(email):
            raise HTTPException(status_code=400, detail="Email already registered")
        if organisation_id is not None and self.org_repo.get_by_id(organisation_id) is None:
            raise HTTPException(status_code=404, detail="Organisation not found")

        user = User(
            email=email,
            full_name=full_name,
            password_hash=get_password_hash(password),
            status=UserStatus.active,
            organisation_id=organisation_id,
        )
        self.db.add(user)
        self.db.flush()
        self.role_repo.assign(user.id, self.role_repo.get_or_create(role.value).id)
        self.db.commit()
        self.db.refresh(user)

        logger.info("user registered", user_id=str(user.id), role=role.value)
        return user

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        user = self.user_repo.get_by_email(email)
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    def login(self, email: str, password: str) -> str:
        """Login user and return access token."""
        user = self.authenticate_user(email, password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Incorrect email or password",
            )

        claims = {}
        if user.organisation_id:
            claims["org"] = str(user.organisation_id)
        access_token = create_access_token(
            subject=str(user.id),
            expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            extra_claims=claims,
        )

        logger.info("user logged in", user_id=str(user.id))
        return access_token
