import hashlib
import secrets
from uuid import uuid4
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel
from oilmart.core.config import settings
from oilmart.models.models import UserRole

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

PBKDF2_ITERATIONS = 260_000


class TokenData(BaseModel):
    sub: str
    role: str
    email: Optional[str] = None
    name: Optional[str] = None
    jti: Optional[str] = None
    type: Optional[str] = None


class CurrentUser(BaseModel):
    """The authenticated caller, resolved per request and handed to every operation."""
    id: int
    role: UserRole
    email: Optional[str] = None
    name: str = ""

    @property
    def is_owner(self) -> bool:
        return self.role == UserRole.OWNER

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.STAFF, UserRole.OWNER)


# Password hashing

def get_password_hash(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest}"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        algorithm, iterations, salt, digest = hashed_password.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    test = hashlib.pbkdf2_hmac("sha256", plain_password.encode(), salt.encode(), int(iterations)).hex()
    return secrets.compare_digest(test, digest)


# JWT helpers

def _encode(payload: dict) -> str:
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(
    subject: str,
    role: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_minutes: Optional[int] = None,
    jti: Optional[str] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    payload = {
        "sub": subject, "role": role, "email": email, "name": name,
        "exp": expire, "iat": now, "jti": jti or str(uuid4()),
    }
    return _encode(payload)


def create_refresh_token(
    subject: str,
    role: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_days: Optional[int] = None,
    jti: Optional[str] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(days=expires_days or settings.refresh_token_expire_days)
    payload = {
        "sub": subject, "role": role, "email": email, "name": name,
        "exp": expire, "iat": now, "jti": jti or str(uuid4()), "type": "refresh",
    }
    return _encode(payload)


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return TokenData(
            sub=payload.get("sub"),
            role=payload.get("role"),
            email=payload.get("email"),
            name=payload.get("name"),
            jti=payload.get("jti"),
            type=payload.get("type"),
        )
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials")


# Dependencies

def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Extract the caller from the access token."""
    td = decode_token(token)
    if td.type == "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh tokens cannot be used for API access",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return CurrentUser(id=int(td.sub), role=UserRole(td.role), email=td.email, name=td.name or "")
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_roles(*roles: UserRole) -> Callable[..., CurrentUser]:
    """Build a dependency that only lets the given roles through."""
    allowed = set(roles)

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(sorted(r.value.title() for r in allowed))} access required",
            )
        return user

    return dependency


require_owner = require_roles(UserRole.OWNER)
require_staff = require_roles(UserRole.STAFF, UserRole.OWNER)
