"""
Invoiceflow Authentication

Signed JWT sessions. Login checks the password hash and issues an HS256
access token; every request decodes it and re-loads the user so a
deactivated account loses access immediately.
"""

import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr

import jwt
from passlib.context import CryptContext

from invoiceflow.services.errors import UnauthorizedError

# Configuration
SECRET_KEY = os.getenv("INVOICEFLOW_SECRET_KEY", secrets.token_urlsafe(32))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("INVOICEFLOW_TOKEN_TTL_MINUTES", "1440"))

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Bearer token security
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Resolved identity for one request."""
    user_id: str
    company_id: str
    role: str
    email: str = ""
    name: str = ""


class LoginRequest(BaseModel):
    """Login request."""
    email: EmailStr
    password: str


def hash_password(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognized or corrupt hash
        return False


def create_access_token(
    user_id: str,
    email: str,
    company_id: str,
    role: str = "user",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "company": company_id,
        "role": role,
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def authenticate(db, email: str, password: str) -> Dict[str, Any]:
    """Return the user row for valid credentials, else raise UnauthorizedError."""
    user = db.get_user_by_email(email.strip().lower())
    if not user or not user.get("password_hash"):
        raise UnauthorizedError("Invalid email or password")
    if not verify_password(password, user["password_hash"]):
        raise UnauthorizedError("Invalid email or password")
    if not user.get("is_active"):
        raise UnauthorizedError("User account is inactive")
    return user


def issue_session(user: Dict[str, Any]) -> Dict[str, Any]:
    token = create_access_token(
        user_id=user["id"],
        email=user["email"],
        company_id=user["company_id"],
        role=user["role"],
    )
    return {
        "access_token": token,
        "token_type": "Bearer",
        "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Resolve the caller from the Authorization: Bearer <jwt> header."""
    if not credentials or not credentials.credentials:
        raise UnauthorizedError()

    payload = decode_token(credentials.credentials)
    if payload.get("type") != "access" or not payload.get("sub"):
        raise UnauthorizedError("Invalid token type")

    db = request.app.state.container.db
    user = db.get_user(payload["sub"])
    if not user or not user.get("is_active"):
        raise UnauthorizedError("User not found or inactive")

    # Role and company come from the store, not the token, so changes apply at once
    return CurrentUser(
        user_id=user["id"],
        company_id=user["company_id"],
        role=user["role"],
        email=user["email"],
        name=user["name"],
    )
