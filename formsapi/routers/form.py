import logging
from typing import Annotated, List

import sqlalchemy
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import form_table, get_connection, permission_table
from formsapi.errors import NotFoundError
from formsapi.models.form import Form, PermissionsIn
from formsapi.models.user import Role, User
from formsapi.security import get_current_user, get_user_by_id, require_roles
from formsapi.submissions import get_form_by_slug

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=List[Form])
async def list_forms(
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    query = form_table.select().order_by(form_table.c.created_at, form_table.c.id)
    try:
        return [Form(**row._mapping) for row in await conn.execute(query)]
    except SQLAlchemyError:
        logger.exception("Listing form templates failed")
        return []


@router.get("/permissions/{user_id}", response_model=List[int])
async def get_permissions(
    user_id: int,
    current_user: Annotated[User, Depends(require_roles(Role.admin))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    if await get_user_by_id(conn, user_id) is None:
        raise NotFoundError("User not found")
    query = (
        sqlalchemy.select(permission_table.c.form_id)
        .where(permission_table.c.user_id == user_id)
        .order_by(permission_table.c.form_id)
    )
    return [row.form_id for row in await conn.execute(query)]


@router.put("/permissions/{user_id}", response_model=List[int])
async def set_permissions(
    user_id: int,
    permissions: PermissionsIn,
    current_user: Annotated[User, Depends(require_roles(Role.admin))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    if await get_user_by_id(conn, user_id) is None:
        raise NotFoundError("User not found")
    form_ids = sorted(set(permissions.form_ids))
    if form_ids:
        found = await conn.execute(sqlalchemy.select(form_table.c.id).where(form_table.c.id.in_(form_ids)))
        missing = set(form_ids) - {row.id for row in found}
        if missing:
            raise NotFoundError(f"Unknown form ids: {', '.join(str(m) for m in sorted(missing))}")

    await conn.execute(permission_table.delete().where(permission_table.c.user_id == user_id))
    for form_id in form_ids:
        await conn.execute(permission_table.insert().values(user_id=user_id, form_id=form_id))
    logger.info(f"{current_user.username} set form permissions of user {user_id} to {form_ids}")
    return form_ids


@router.get("/{slug}", response_model=Form)
async def get_form(
    slug: str,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    row = await get_form_by_slug(conn, slug)
    return Form(**row._mapping)
