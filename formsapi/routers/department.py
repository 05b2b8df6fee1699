import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import department_table, get_connection
from formsapi.models.form import Department
from formsapi.models.user import User
from formsapi.security import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=List[Department])
async def list_departments(
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    query = department_table.select().order_by(department_table.c.name)
    try:
        return [Department(**row._mapping) for row in await conn.execute(query)]
    except SQLAlchemyError:
        logger.exception("Listing departments failed")
        return []
