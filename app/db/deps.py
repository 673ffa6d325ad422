from __future__ import annotations

from collections.abc import Generator
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session, sessionmaker
from starlette.requests import HTTPConnection

from app.db.session import SessionLocal
from app.core.security import decode_access_token
from app.modules.auth.models import User, UserStatus


# ---------- DB DEPENDENCY ----------


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Session factory for work that outlives the request session."""
    return SessionLocal


# ---------- CLIENT DEPENDENCIES ----------
# Clients are built in the application lifespan and live on app.state.


def get_storage_client(conn: HTTPConnection):
    return conn.app.state.storage_client


def get_edge_function_client(conn: HTTPConnection):
    return conn.app.state.edge_function_client


def get_realtime_bridge(conn: HTTPConnection):
    return conn.app.state.realtime_bridge


# ---------- AUTH DEPENDENCIES ----------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def resolve_user_from_token(db: Session, token: str | None) -> User | None:
    """Return the user a bearer token belongs to, or None when it is invalid."""
    if not token:
        return None
    try:
        payload = decode_access_token(token)
        sub = payload.get("sub")
        if sub is None:
            return None
        user_id = uuid.UUID(sub)
    except (JWTError, ValueError):
        return None
    return db.query(User).filter(User.id == user_id).first()


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    user = resolve_user_from_token(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.status != UserStatus.active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive or blocked user",
        )
    return current_user
