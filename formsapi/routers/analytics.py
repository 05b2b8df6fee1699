import datetime
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi import submissions
from formsapi.database import get_connection
from formsapi.errors import InfrastructureError, ValidationError
from formsapi.models.analytics import RejectionAnalytics
from formsapi.models.user import User
from formsapi.security import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()


def parse_date(value: Optional[str], name: str) -> Optional[datetime.date]:
    if not value:
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)") from e


@router.get("/rejections", response_model=RejectionAnalytics)
async def rejections(
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
    from_date: Annotated[Optional[str], Query(alias="fromDate")] = None,
    to_date: Annotated[Optional[str], Query(alias="toDate")] = None,
):
    start = parse_date(from_date, "fromDate")
    end = parse_date(to_date, "toDate")
    try:
        return await submissions.aggregate(conn, start, end)
    except SQLAlchemyError as e:
        logger.exception("Rejection analytics query failed")
        raise InfrastructureError("Could not load rejection analytics") from e
