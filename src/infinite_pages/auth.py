"""
Authentication utilities and JWT token handling
"""
import os
import hashlib
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .config import config
from .db.engine import get_db
from .db.models.user import User

logger = logging.getLogger(__name__)

# Security configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "120"))

# Cost factor: each increment doubles hashing time (12 is ~300ms)
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS
)
http_bearer = HTTPBearer(auto_error=False)


def _prepare_password(password: str) -> bytes:
    """Bcrypt only reads 72 bytes; longer passwords are pre-hashed with SHA256"""
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > 72:
        return hashlib.sha256(password_bytes).hexdigest().encode("utf-8")
    return password_bytes


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not plain_password or not hashed_password:
        return False

    try:
        return bcrypt.checkpw(_prepare_password(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Not a raw bcrypt hash; let passlib identify the scheme
        try:
            return pwd_context.verify(_prepare_password(plain_password).decode("utf-8"), hashed_password)
        except (ValueError, TypeError) as e:
            logger.warning(f"Password verification failed: {type(e).__name__}")
            return False


def get_password_hash(password: str) -> str:
    """Hash a password, handling bcrypt's 72-byte limit"""
    if not password:
        raise ValueError("Password cannot be empty")

    hashed = bcrypt.hashpw(_prepare_password(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token

    Args:
        data: Claims to encode (must include 'sub' - user ID as string)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({
        "exp": expire,
        "jti": str(uuid.uuid4()),
        "iat": now,
    })
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token; None when invalid or expired"""
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Token verification failed: token has expired")
        return None
    except JWTError as e:
        logger.warning(f"Token verification failed: {type(e).__name__} - {str(e)}")
        return None


def get_auth_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> Optional[str]:
    """Extract the token from the Authorization header, falling back to the auth_token cookie"""
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get("auth_token")


def _user_from_token(token: Optional[str], db: Session) -> Optional[User]:
    if not token or not token.strip():
        return None
    payload = verify_token(token.strip())
    if payload is None:
        return None
    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        logger.warning(f"Invalid user ID format in token: {payload.get('sub')}")
        return None
    return db.query(User).filter(User.id == user_id).first()


async def get_current_user(
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from Bearer token or auth_token cookie"""
    if not token or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token is missing. Please log in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = _user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired authentication token. Please log in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        logger.warning(f"Inactive user {user.id} attempted to authenticate")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return user


async def get_optional_user(
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but anonymous requests yield None"""
    user = _user_from_token(token, db)
    if user is not None and not user.is_active:
        return None
    return user


async def require_admin(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    """Require the current user to carry the is_admin flag"""
    # Admin flag may have been changed since the user was loaded
    db.refresh(current_user)

    if not current_user.is_admin:
        logger.warning(f"Non-admin user {current_user.id} attempted to access admin endpoint")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


async def require_creator(current_user: User = Depends(get_current_user)) -> User:
    """Require the current user to have creator status"""
    if not current_user.is_creator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "CREATOR_REQUIRED",
                "message": "Creator status required",
            }
        )
    return current_user
