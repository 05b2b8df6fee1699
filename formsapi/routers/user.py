import logging
from typing import Annotated, List

import sqlalchemy
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import get_connection, permission_table, submission_table, user_table, workflow_step_table
from formsapi.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from formsapi.models.user import Role, User, UserIn, UserUpdateIn
from formsapi.security import get_current_user, get_password_hash, get_user_by_id, require_roles

logger = logging.getLogger(__name__)
router = APIRouter()

# fields a user may change on their own account
SELF_SERVICE_FIELDS = {"full_name", "email", "password"}


async def ensure_available(conn: AsyncConnection, username=None, email=None, exclude_id=None) -> None:
    if username is not None:
        query = sqlalchemy.select(user_table.c.id).where(user_table.c.username == username)
        if exclude_id is not None:
            query = query.where(user_table.c.id != exclude_id)
        if (await conn.execute(query)).first():
            raise ConflictError("A user with that username already exists")
    if email is not None:
        query = sqlalchemy.select(user_table.c.id).where(user_table.c.email == email)
        if exclude_id is not None:
            query = query.where(user_table.c.id != exclude_id)
        if (await conn.execute(query)).first():
            raise ConflictError("A user with that email already exists")


@router.get("", response_model=List[User])
async def list_users(
    current_user: Annotated[User, Depends(require_roles(Role.admin))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    query = user_table.select().order_by(user_table.c.created_at.desc(), user_table.c.id.desc())
    logger.debug(query)
    return [User(**row._mapping) for row in await conn.execute(query)]


@router.get("/{uid}", response_model=User)
async def get_specific_user(
    uid: int,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    if current_user.id != uid and current_user.role != Role.admin:
        raise AuthorizationError("Insufficient permissions")
    user = await get_user_by_id(conn, uid)
    if user is None:
        raise NotFoundError("User not found")
    return User(**user.model_dump(exclude={"password_hash"}))


@router.post("", response_model=User, status_code=201)
async def create_user(
    user: UserIn,
    current_user: Annotated[User, Depends(require_roles(Role.admin))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    if not user.password:
        raise ValidationError("Password is required")
    await ensure_available(conn, username=user.username, email=user.email)
    query = user_table.insert().values(
        full_name=user.full_name,
        username=user.username,
        email=user.email,
        password_hash=get_password_hash(user.password),
        company=user.company.value,
        role=user.role.value,
        designation=user.designation,
    )
    logger.debug(query)
    result = await conn.execute(query)
    uid = result.inserted_primary_key[0]
    logger.info(f"{current_user.username} created user {user.username}")
    created = await get_user_by_id(conn, uid)
    return User(**created.model_dump(exclude={"password_hash"}))


@router.put("/{uid}", response_model=User)
async def update_user(
    uid: int,
    user: UserUpdateIn,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    existing_user = await get_user_by_id(conn, uid)
    if existing_user is None:
        raise NotFoundError("User not found")
    is_self = existing_user.id == current_user.id
    is_admin = current_user.role == Role.admin

    changes = user.model_dump(exclude_unset=True, exclude_none=True)
    if not is_admin:
        if not is_self:
            raise AuthorizationError("You do not have permission to update this user")
        forbidden = set(changes) - SELF_SERVICE_FIELDS
        if forbidden:
            raise AuthorizationError(f"Only administrators can change: {', '.join(sorted(forbidden))}")

    await ensure_available(conn, username=changes.get("username"), email=changes.get("email"), exclude_id=uid)

    update_values = {}
    for key, value in changes.items():
        if key == "password":
            update_values["password_hash"] = get_password_hash(value)
        elif key in ("company", "role"):
            update_values[key] = value.value
        else:
            update_values[key] = value

    if update_values:
        query = user_table.update().where(user_table.c.id == uid).values(**update_values)
        logger.debug(query)
        await conn.execute(query)
        logger.info(f"{current_user.username} updated user {uid}: {', '.join(sorted(changes))}")

    updated = await get_user_by_id(conn, uid)
    return User(**updated.model_dump(exclude={"password_hash"}))


@router.delete("/{uid}", status_code=200)
async def delete_user(
    uid: int,
    current_user: Annotated[User, Depends(require_roles(Role.admin))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    if await get_user_by_id(conn, uid) is None:
        raise NotFoundError("User not found")
    if uid == current_user.id:
        raise ConflictError("You cannot delete your own account")

    owns = await conn.scalar(
        sqlalchemy.select(sqlalchemy.func.count())
        .select_from(submission_table)
        .where(submission_table.c.user_id == uid)
    )
    assigned = await conn.scalar(
        sqlalchemy.select(sqlalchemy.func.count())
        .select_from(workflow_step_table)
        .where(workflow_step_table.c.user_id == uid)
    )
    if owns or assigned:
        raise ConflictError("User still owns submissions or is assigned workflow steps")

    await conn.execute(permission_table.delete().where(permission_table.c.user_id == uid))
    query = user_table.delete().where(user_table.c.id == uid)
    logger.debug(query)
    await conn.execute(query)
    logger.info(f"{current_user.username} deleted user {uid}")
    return {"detail": "User deleted successfully", "user_id": uid}
