from typing import List
from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field

from oilmart.api.auth import USER_COLUMNS, user_from_row
from oilmart.core.database import pg_cursor, row_to_dict, rows_to_dicts
from oilmart.core.exceptions import AppError, BadRequestError, ConflictError, DatabaseError, NotFoundError
from oilmart.core.logging import logger
from oilmart.core.security import CurrentUser, require_owner, get_password_hash
from oilmart.models.models import User, UserRole

router = APIRouter(dependencies=[Depends(require_owner)])

class CreateUserRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2, max_length=50)
    phone: str = ""
    address: str = ""
    role: UserRole = UserRole.STAFF

class UpdateRoleRequest(BaseModel):
    role: UserRole

class UpdateActiveRequest(BaseModel):
    is_active: bool


@router.get("/users", response_model=List[User])
async def list_users(role: UserRole | None = None):
    logger.info("GET /api/admin/users | role=%s", role.value if role else None)
    sql = f"SELECT {USER_COLUMNS} FROM users"
    params = []
    if role:
        sql += " WHERE role = %s"
        params.append(role.value)
    sql += " ORDER BY id ASC"
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return [user_from_row(r) for r in rows_to_dicts(cur)]
    except Exception as e:
        logger.error("Failed to list users: %s", e)
        raise DatabaseError("Failed to list users")


@router.post("/users", response_model=User, status_code=201)
async def create_user(payload: CreateUserRequest):
    logger.info("POST /api/admin/users | email=%s role=%s", payload.email, payload.role.value)
    try:
        with pg_cursor(commit=True) as cur:
            cur.execute("SELECT 1 FROM users WHERE lower(email) = lower(%s)", (payload.email,))
            if cur.fetchone():
                raise ConflictError("Email already exists")
            cur.execute(
                f"""
                INSERT INTO users (email, hashed_password, role, name, phone, address)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING {USER_COLUMNS}
                """,
                (payload.email, get_password_hash(payload.password), payload.role.value,
                 payload.name.strip(), payload.phone.strip(), payload.address.strip()),
            )
            row = row_to_dict(cur)
        logger.info("User %s created with role %s", row["id"], payload.role.value)
        return user_from_row(row)
    except AppError:
        raise
    except Exception as e:
        logger.error("Failed to create user %s: %s", payload.email, e)
        raise DatabaseError("Failed to create user")


@router.patch("/users/{user_id}/role")
async def update_role(user_id: int, payload: UpdateRoleRequest, owner: CurrentUser = Depends(require_owner)):
    logger.info("PATCH /api/admin/users/%s/role | role=%s", user_id, payload.role.value)
    if user_id == owner.id and payload.role != UserRole.OWNER:
        raise BadRequestError("You cannot remove your own owner role")
    with pg_cursor(commit=True) as cur:
        cur.execute("UPDATE users SET role = %s WHERE id = %s RETURNING id", (payload.role.value, user_id))
        if cur.fetchone() is None:
            raise NotFoundError("User not found")
    return {"success": True}


@router.patch("/users/{user_id}/active")
async def update_active(user_id: int, payload: UpdateActiveRequest, owner: CurrentUser = Depends(require_owner)):
    logger.info("PATCH /api/admin/users/%s/active | is_active=%s", user_id, payload.is_active)
    if user_id == owner.id and not payload.is_active:
        raise BadRequestError("You cannot block your own account")
    with pg_cursor(commit=True) as cur:
        cur.execute("UPDATE users SET is_active = %s WHERE id = %s RETURNING id", (payload.is_active, user_id))
        if cur.fetchone() is None:
            raise NotFoundError("User not found")
        if not payload.is_active:
            cur.execute("UPDATE refresh_tokens SET revoked = true WHERE user_id = %s", (user_id,))
    return {"success": True}


@router.delete("/users/{user_id}")
async def delete_user(user_id: int, owner: CurrentUser = Depends(require_owner)):
    logger.info("DELETE /api/admin/users/%s", user_id)
    if user_id == owner.id:
        raise BadRequestError("You cannot delete your own account")
    with pg_cursor(commit=True) as cur:
        cur.execute("UPDATE refresh_tokens SET revoked = true WHERE user_id = %s", (user_id,))
        cur.execute("DELETE FROM users WHERE id = %s RETURNING id", (user_id,))
        if cur.fetchone() is None:
            raise NotFoundError("User not found")
    return {"success": True}
