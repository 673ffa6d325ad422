# app/modules/auth/routes.py
from fastapi import APIRouter, Body, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.db.deps import get_current_active_user, get_db
from app.modules.auth.models import User
from app.modules.auth.service import AuthService
from app.schemas.user import Token, UserCreate, UserRead

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
)
def register_user(
    payload: UserCreate = Body(...),
    db: Session = Depends(get_db),
):
    """Register a new user, optionally inside an organisation."""
    return AuthService(db).register_user(
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        organisation_id=payload.organisation_id,
        role=payload.role,
    )


@router.post("/login", response_model=Token)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    """Login user and return JWT token."""
    access_token = AuthService(db).login(
        email=form_data.username,
        password=form_data.password,
    )
    return Token(access_token=access_token)


@router.get("/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_active_user)):
    return current_user
