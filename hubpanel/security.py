"""
Console credentials: bcrypt password hashes for the users table and the
signed bearer tokens handed out by /auth/login.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import Config

TOKEN_ALGORITHM = "HS256"
TOKEN_ISSUER = "hubpanel"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a sign-in password against the stored bcrypt hash."""
    return pwd_context.verify(password, password_hash)


def create_session_token(username: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a bearer token for a console user.

    The token lasts Config.SESSION_TTL_MINUTES unless expires_delta is given.
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta if expires_delta is not None else timedelta(
        minutes=Config.SESSION_TTL_MINUTES
    )
    claims = {
        "sub": username,
        "iss": TOKEN_ISSUER,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, Config.get_session_secret(), algorithm=TOKEN_ALGORITHM)


def read_session_token(token: str) -> Optional[str]:
    """
    Get the username a bearer token was issued to.

    Returns None for expired, tampered or foreign tokens.
    """
    try:
        claims = jwt.decode(
            token,
            Config.get_session_secret(),
            algorithms=[TOKEN_ALGORITHM],
            issuer=TOKEN_ISSUER,
        )
    except JWTError as e:
        logging.debug(f"Rejected session token: {e}")
        return None
    return claims.get("sub") or None
