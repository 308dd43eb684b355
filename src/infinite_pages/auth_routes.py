"""
Authentication API routes
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from .auth import (
    verify_password,
    get_password_hash,
    create_access_token,
    get_current_user,
)
from .db.engine import get_db
from .db.models.user import User, SubscriptionTier, SubscriptionStatus
from .db.models.credits import TransactionType
from .services.credit_service import CreditService
from .services.plan_policy import TRIAL_PERIOD_DAYS, TRIAL_CREDITS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])


class UserSignup(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, description="At least 8 characters")
    full_name: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str
    user: dict


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: Optional[str] = None
    display_name: Optional[str] = None
    subscription_tier: str
    subscription_status: str
    trial_ends_at: Optional[datetime] = None
    credits_balance: int
    is_creator: bool
    is_admin: bool


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "display_name": user.display_name,
        "subscription_tier": user.subscription_tier,
        "subscription_status": user.subscription_status,
        "trial_ends_at": user.trial_ends_at,
        "credits_balance": user.credits_balance,
        "is_creator": user.is_creator,
        "is_admin": user.is_admin,
    }


def _issue_token(user: User) -> str:
    # JWT requires 'sub' to be a string
    return create_access_token(data={"sub": str(user.id)})


@router.post("/signup", response_model=Token, status_code=status.HTTP_201_CREATED)
async def signup(user_data: UserSignup, db: Session = Depends(get_db)):
    """Register a new user; every account starts on a Basic trial"""
    email = user_data.email.lower()
    if db.query(User).filter(User.email == email).first():
        logger.info("Signup rejected: email already registered")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    new_user = User(
        email=email,
        hashed_password=get_password_hash(user_data.password),
        full_name=user_data.full_name or None,
        subscription_tier=SubscriptionTier.BASIC.value,
        subscription_status=SubscriptionStatus.TRIALING.value,
        trial_ends_at=datetime.utcnow() + timedelta(days=TRIAL_PERIOD_DAYS),
        credits_balance=0,
    )
    db.add(new_user)
    db.flush()

    CreditService(db).add_credits(
        new_user,
        TRIAL_CREDITS,
        TransactionType.BONUS,
        description=f"{TRIAL_PERIOD_DAYS}-day trial credits",
        reference_type="trial",
        commit=False,
    )
    db.commit()
    db.refresh(new_user)
    logger.info(f"User created with ID: {new_user.id}")

    return {
        "access_token": _issue_token(new_user),
        "token_type": "bearer",
        "user": _user_payload(new_user),
    }


@router.post("/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """Login with email (username field) and password"""
    user = db.query(User).filter(User.email == form_data.username.lower()).first()

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return {
        "access_token": _issue_token(user),
        "token_type": "bearer",
        "user": _user_payload(user),
    }


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current authenticated user information"""
    return _user_payload(current_user)


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_user)):
    """Logout user (client discards the token)"""
    return {"message": "Logged out successfully"}
