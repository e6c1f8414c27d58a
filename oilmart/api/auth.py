from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException, status, Body
from pydantic import BaseModel, EmailStr, Field, field_validator
from uuid import uuid4

from oilmart.core.database import pg_cursor, row_to_dict, update_row
from oilmart.core.config import settings
from oilmart.core.exceptions import BadRequestError, ConflictError, DatabaseError, NotFoundError, AppError
from oilmart.core.logging import logger
from oilmart.core.security import (
    CurrentUser,
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
)
from oilmart.models.models import ProfileUpdate, User, UserRole
from oilmart.utils.validation import validate_phone

router = APIRouter()

USER_COLUMNS = "id, email, role, name, phone, address, photo_url, is_active, created_at"


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    refresh_token: str
    expires_in: int
    user: User

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2, max_length=50)
    phone: str = ""
    address: str = ""

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value: str) -> str:
        value = value.strip()
        if value and not validate_phone(value):
            raise ValueError("Please enter a valid 10-digit phone number")
        return value

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class RefreshRequest(BaseModel):
    refresh_token: str


def user_from_row(row: Dict[str, Any]) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        role=row["role"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        profile={
            "name": row["name"],
            "phone": row["phone"],
            "address": row["address"],
            "photo_url": row["photo_url"],
        },
    )


def _issue_tokens(cur, user: Dict[str, Any]) -> TokenResponse:
    jti = str(uuid4())
    claims = {"subject": str(user["id"]), "role": user["role"], "email": user["email"], "name": user["name"]}
    access = create_access_token(jti=jti, **claims)
    refresh = create_refresh_token(jti=jti, **claims)
    cur.execute(
        """
        INSERT INTO refresh_tokens (user_id, jti, revoked, expires_at)
        VALUES (%s, %s, false, %s)
        """,
        (user["id"], jti, datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days)),
    )
    return TokenResponse(
        access_token=access,
        refresh_token=refresh,
        expires_in=60 * settings.access_token_expire_minutes,
        user=user_from_row(user),
    )


@router.post("/register", response_model=User, status_code=201)
async def register(payload: RegisterRequest):
    logger.info("POST /api/auth/register | email=%s", payload.email)
    try:
        with pg_cursor(commit=True) as cur:
            cur.execute("SELECT 1 FROM users WHERE lower(email) = lower(%s)", (payload.email,))
            if cur.fetchone():
                raise ConflictError("Email already registered")
            # The first account bootstraps the shop owner
            cur.execute("SELECT COUNT(*) FROM users")
            total_users = cur.fetchone()[0]
            role = UserRole.OWNER if total_users == 0 else UserRole.CUSTOMER
            cur.execute(
                f"""
                INSERT INTO users (email, hashed_password, role, name, phone, address)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {USER_COLUMNS}
                """,
                (payload.email, get_password_hash(payload.password), role.value,
                 payload.name.strip(), payload.phone, payload.address.strip()),
            )
            row = row_to_dict(cur)
        logger.info("User %s registered with role %s", row["id"], role.value)
        return user_from_row(row)
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to register %s: %s", payload.email, e)
        raise DatabaseError("Failed to register user")


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest):
    logger.info("POST /api/auth/login | email=%s", payload.email)
    with pg_cursor() as cur:
        cur.execute(
            f"SELECT {USER_COLUMNS}, hashed_password FROM users WHERE lower(email) = lower(%s)",
            (payload.email,),
        )
        user = row_to_dict(cur)
    if not user or not verify_password(payload.password, user["hashed_password"]):
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect email or password")
    if not user["is_active"]:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is blocked")

    with pg_cursor(commit=True) as cur:
        tokens = _issue_tokens(cur, user)
    logger.info("User %s logged in", user["id"])
    return tokens


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(payload: RefreshRequest):
    td = decode_token(payload.refresh_token)
    if td.type != "refresh" or not td.jti:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    with pg_cursor(commit=True) as cur:
        cur.execute("SELECT user_id, revoked, expires_at FROM refresh_tokens WHERE jti = %s FOR UPDATE", (td.jti,))
        row = cur.fetchone()
        if not row:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh session not found")
        user_id, revoked, expires_at = row
        if revoked or (expires_at and expires_at < datetime.now(timezone.utc)):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token expired or revoked")

        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
        user = row_to_dict(cur)
        if not user or not user["is_active"]:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User is blocked")

        # Rotate: the old session is revoked in the same transaction
        cur.execute("UPDATE refresh_tokens SET revoked = true WHERE jti = %s", (td.jti,))
        tokens = _issue_tokens(cur, user)
    return tokens


@router.post("/logout")
async def logout(token: str = Body(..., embed=True)):
    td = decode_token(token)
    if td.jti:
        with pg_cursor(commit=True) as cur:
            cur.execute("UPDATE refresh_tokens SET revoked = true WHERE jti = %s", (td.jti,))
    return {"success": True}


@router.get("/me", response_model=User)
async def me(user: CurrentUser = Depends(get_current_user)):
    with pg_cursor() as cur:
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user.id,))
        row = row_to_dict(cur)
    if not row:
        raise NotFoundError("User not found")
    return user_from_row(row)


@router.put("/me", response_model=User)
async def update_me(payload: ProfileUpdate, user: CurrentUser = Depends(get_current_user)):
    """Update the caller's own profile."""
    logger.info("PUT /api/auth/me | user=%s", user.id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "phone" in changes and changes["phone"] and not validate_phone(changes["phone"]):
        raise BadRequestError("Please enter a valid 10-digit phone number", extra={"field": "phone"})
    try:
        with pg_cursor(commit=True) as cur:
            if changes:
                update_row(cur, "users", user.id, changes)
            cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user.id,))
            row = row_to_dict(cur)
        if not row:
            raise NotFoundError("User not found")
        return user_from_row(row)
    except NotFoundError:
        logger.error("User %s not found", user.id)
        raise
    except Exception as e:
        logger.error("Failed to update profile %s: %s", user.id, e)
        raise DatabaseError("Failed to update profile")
