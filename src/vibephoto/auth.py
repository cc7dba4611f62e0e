"""
Authentication utilities and JWT token handling
"""
import os
import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional, Tuple
from jose import JWTError, jwt
from passlib.context import CryptContext
import bcrypt
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .db.engine import get_db
from .db.models import User, ApiKey

logger = logging.getLogger(__name__)


def get_secret_key():
    """Get secret key from config module"""
    from .config import config
    return config.SECRET_KEY


# Security configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 120  # 2 hours

# Each increment doubles the time: 12 -> ~300ms, 13 -> ~600ms
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
BCRYPT_MAX_BYTES = 72

API_KEY_PREFIX = "vp_"
API_KEY_HEADER = "X-API-Key"

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS
)
http_bearer = HTTPBearer(auto_error=False)


def _password_bytes(password: str) -> bytes:
    """Passwords over bcrypt's 72-byte limit are pre-hashed with SHA-256 (64-byte hex)"""
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > BCRYPT_MAX_BYTES:
        return hashlib.sha256(password_bytes).hexdigest().encode('utf-8')
    return password_bytes


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not plain_password or not hashed_password:
        return False

    candidate = _password_bytes(plain_password)
    try:
        return pwd_context.verify(candidate.decode('utf-8'), hashed_password)
    except ValueError:
        # passlib rejects some hashes produced by newer bcrypt releases
        if hashed_password.startswith('$2'):
            return bcrypt.checkpw(candidate, hashed_password.encode('utf-8'))
        return False


def get_password_hash(password: str) -> str:
    """Hash a password, handling bcrypt's 72-byte limit"""
    if not password:
        raise ValueError("Password cannot be empty")

    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(_password_bytes(password), salt).decode('utf-8')


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """
    Create a JWT access token

    Args:
        data: Dictionary with user data (must include 'sub' - user ID)
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
    return jwt.encode(to_encode, get_secret_key(), algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token; None when invalid or expired"""
    try:
        return jwt.decode(token, get_secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token verification failed: Token has expired")
        return None
    except jwt.JWTClaimsError as e:
        logger.warning(f"Token verification failed: Invalid token claims - {str(e)}")
        return None
    except JWTError as e:
        logger.warning(f"Token verification failed: {type(e).__name__} - {str(e)}")
        return None


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode('utf-8')).hexdigest()


def generate_api_key() -> Tuple[str, str, str]:
    """
    Create a new personal API key

    Returns:
        (raw key shown once to the user, SHA-256 hash to store, display prefix)
    """
    raw_key = API_KEY_PREFIX + secrets.token_urlsafe(32)
    return raw_key, hash_api_key(raw_key), raw_key[:len(API_KEY_PREFIX) + 6]


def authenticate_api_key(db: Session, raw_key: str) -> Optional[User]:
    api_key = db.query(ApiKey).filter(
        ApiKey.key_hash == hash_api_key(raw_key),
        ApiKey.is_active == True  # noqa: E712
    ).first()
    if api_key is None:
        return None
    if api_key.expires_at and api_key.expires_at < datetime.utcnow():
        logger.warning(f"API key {api_key.key_prefix}... is expired")
        return None

    api_key.last_used_at = datetime.utcnow()
    db.commit()
    return db.query(User).filter(User.id == api_key.user_id).first()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_auth_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> Optional[str]:
    """
    Extract authentication token from Authorization header or cookie.
    Returns None if no token is found.
    """
    if credentials and credentials.credentials:
        return credentials.credentials

    cookie_token = request.cookies.get("auth_token")
    if cookie_token:
        logger.debug("Using token from cookie (no Authorization header present)")
        return cookie_token
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user

    Accepts a Bearer token, the auth_token cookie, or an X-API-Key header.
    """
    user = None

    raw_api_key = request.headers.get(API_KEY_HEADER)
    if raw_api_key and not (token and token.strip()):
        user = authenticate_api_key(db, raw_api_key.strip())
        if user is None:
            logger.warning("Authentication failed: invalid API key")
            raise _unauthorized("Invalid API key")
    else:
        if not token or not token.strip():
            logger.warning("Authentication failed: No authorization credentials provided")
            raise _unauthorized("Authentication token is missing. Please log in again.")

        payload = verify_token(token.strip())
        if payload is None:
            raise _unauthorized("Invalid or expired authentication token. Please log in again.")

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("Authentication failed: Token payload missing user ID")
            raise _unauthorized("Invalid token format: missing user identifier")

        user = db.query(User).filter(User.id == str(user_id)).first()
        if user is None:
            logger.warning(f"Authentication failed: User with ID {user_id} not found in database")
            raise _unauthorized("User account not found. Please log in again.")

    if not user.is_active:
        logger.warning(f"Authentication failed: User {user.id} account is inactive")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return user


def require_cron_secret(request: Request):
    """Cron endpoints require `Authorization: Bearer {CRON_SECRET}`"""
    from .config import config

    expected = config.CRON_SECRET
    if not expected:
        logger.error("CRON_SECRET not configured - rejecting cron request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode(), f"Bearer {expected}".encode()):
        logger.warning("Cron request rejected: invalid secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
