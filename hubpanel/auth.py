from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlmodel import Session, select, SQLModel
from typing import Annotated, Optional
from datetime import datetime
import logging

from .activity_log import log_activity
from .config import Config
from .database import get_session
from .errors import AuthError
from .models import User
from .rate_limiter import limiter, LOGIN_LIMIT
from .security import create_session_token, read_session_token, verify_password

# --- API Router and Security Scheme ---

router = APIRouter()

# auto_error is off so a missing token produces our {"error": "Unauthorized"} body
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# Activity log entries about the console itself use this database name
CONSOLE_DATABASE = "hubpanel"


# --- Dependency for Getting Current User ---

def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    session: Annotated[Session, Depends(get_session)]
) -> User:
    """
    Dependency to get the current user from a JWT token.
    This function is used to protect every /api endpoint.
    """
    if not token:
        raise AuthError()

    username = read_session_token(token)
    if username is None:
        raise AuthError()

    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or not user.is_active:
        raise AuthError()

    return user


def is_authorized_user(username: str) -> bool:
    """Check the AUTHORIZED_USERS allow-list. An empty list allows everyone."""
    allowed = Config.get_authorized_users()
    return not allowed or username.lower() in allowed


# --- Data Schemas for API ---

class Token(SQLModel):
    access_token: str
    token_type: str


class UserPublic(SQLModel):
    id: int
    username: str
    email: Optional[str] = None
    is_active: bool
    created_at: datetime
    last_login: Optional[datetime] = None


# --- Endpoints ---

@router.post("/auth/login", response_model=Token, tags=["Authentication"])
@limiter.limit(LOGIN_LIMIT)
def login_for_access_token(
    request: Request,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Annotated[Session, Depends(get_session)],
):
    """
    Authenticates a user and returns a JWT access token.
    """
    user = session.exec(select(User).where(User.username == form_data.username)).first()

    if not user or not verify_password(form_data.password, user.hashed_password):
        log_activity(
            session,
            user=form_data.username,
            database=CONSOLE_DATABASE,
            operation="LOGIN",
            details="Incorrect username or password",
            status="failure",
        )
        raise AuthError("Incorrect username or password")

    if not user.is_active or not is_authorized_user(user.username):
        log_activity(
            session,
            user=user.username,
            database=CONSOLE_DATABASE,
            operation="LOGIN",
            details="User is not authorized",
            status="failure",
        )
        raise AuthError("User is not authorized to access HubPanel")

    user.last_login = datetime.utcnow()
    session.add(user)
    session.commit()

    log_activity(
        session,
        user=user.username,
        database=CONSOLE_DATABASE,
        operation="LOGIN",
        details="Signed in",
    )
    logging.info(f"User '{user.username}' signed in")

    access_token = create_session_token(user.username)
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/auth/me", response_model=UserPublic, tags=["Authentication"])
def read_users_me(current_user: Annotated[User, Depends(get_current_user)]):
    """
    Get the currently signed-in user.
    """
    return current_user
