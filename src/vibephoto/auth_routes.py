"""
Authentication API routes
"""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime, timedelta
import logging

from .auth import (
    verify_password,
    get_password_hash,
    create_access_token,
    generate_api_key,
    get_current_user,
    ACCESS_TOKEN_EXPIRE_MINUTES
)
from .config import config
from .db.engine import get_db
from .db.models import User, ApiKey, UserConsent
from .schemas import UserResponse, ApiKeyResponse, dump, dump_all
from .services.plan_catalog import get_plan_credits

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])

MIN_PASSWORD_LENGTH = 8
REQUIRED_CONSENTS = ("terms", "privacy")


class UserSignup(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None
    accept_terms: bool = False
    accept_privacy: bool = False
    accept_marketing: bool = False


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class ApiKeyCreate(BaseModel):
    name: str
    expires_in_days: Optional[int] = None


def _token_response(response: Response, user: User) -> dict:
    access_token = create_access_token(
        data={"sub": str(user.id)},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    response.set_cookie(
        key="auth_token",
        value=access_token,
        httponly=True,
        secure=not config.is_dev,
        samesite="lax",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": dump(UserResponse, user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(user_data: UserSignup, request: Request, response: Response, db: Session = Depends(get_db)):
    """Register a new user with email and password; consents are recorded"""
    email = user_data.email.lower()
    logger.info(f"Signup attempt for email: {email}")

    if db.query(User).filter(User.email == email).first():
        logger.warning(f"Signup failed: Email already registered - {email}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    if len(user_data.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    if not (user_data.accept_terms and user_data.accept_privacy):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Terms of use and privacy policy must be accepted"
        )

    try:
        user = User(
            email=email,
            name=user_data.name,
            hashed_password=get_password_hash(user_data.password),
            credits_limit=get_plan_credits("STARTER"),
            credits_used=0,
            credits_balance=0,
            is_active=True,
        )
        db.add(user)
        db.flush()

        consents = {"terms": True, "privacy": True, "marketing": user_data.accept_marketing}
        for consent_type, granted in consents.items():
            db.add(UserConsent(
                user_id=user.id,
                consent_type=consent_type,
                granted=granted,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
            ))
        db.commit()
        db.refresh(user)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating user: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating user"
        )

    logger.info(f"User created successfully with ID: {user.id}")
    return _token_response(response, user)


@router.post("/login")
async def login(credentials: UserLogin, response: Response, db: Session = Depends(get_db)):
    """Login with email and password"""
    user = db.query(User).filter(User.email == credentials.email.lower()).first()

    if not user or not verify_password(credentials.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    user.last_login_at = datetime.utcnow()
    db.commit()
    return _token_response(response, user)


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return dump(UserResponse, current_user)


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie("auth_token")
    return {"message": "Successfully logged out"}


# ---------------------------------------------------------------------------
# Personal API keys
# ---------------------------------------------------------------------------

@router.post("/api-keys", status_code=status.HTTP_201_CREATED)
async def create_api_key(
    data: ApiKeyCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a personal API key; the raw key is only returned here"""
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Key name is required")

    raw_key, key_hash, prefix = generate_api_key()
    api_key = ApiKey(
        user_id=current_user.id,
        name=name,
        key_hash=key_hash,
        key_prefix=prefix,
        expires_at=datetime.utcnow() + timedelta(days=data.expires_in_days) if data.expires_in_days else None,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    logger.info(f"API key {prefix}... created for user {current_user.id}")
    return {"key": raw_key, **dump(ApiKeyResponse, api_key)}


@router.get("/api-keys")
async def list_api_keys(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    keys = db.query(ApiKey).filter(ApiKey.user_id == current_user.id).order_by(ApiKey.created_at.desc()).all()
    return {"api_keys": dump_all(ApiKeyResponse, keys)}


@router.delete("/api-keys/{key_id}")
async def revoke_api_key(key_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    api_key = db.query(ApiKey).filter(ApiKey.id == key_id, ApiKey.user_id == current_user.id).first()
    if not api_key:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    api_key.is_active = False
    db.commit()
    logger.info(f"API key {api_key.key_prefix}... revoked by user {current_user.id}")
    return {"success": True}
