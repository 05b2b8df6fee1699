import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi import submissions, workflow_engine
from formsapi.database import get_connection
from formsapi.models.submission import Submission
from formsapi.models.user import Role, User
from formsapi.models.workflow import ApproveIn, AssignIn, WorkflowStep
from formsapi.security import get_current_user, require_roles

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/tasks/pending", response_model=List[Submission])
async def pending_tasks(
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    try:
        ids = await workflow_engine.pending_submission_ids(conn, current_user.id)
        return await submissions.get_many(conn, ids)
    except SQLAlchemyError:
        logger.exception(f"Listing pending tasks of {current_user.username} failed")
        return []


@router.get("/{submission_id}", response_model=List[WorkflowStep])
async def list_steps(
    submission_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    row = await workflow_engine.get_submission_row(conn, submission_id)
    await submissions.ensure_form_access(conn, current_user, row["form_id"])
    return await workflow_engine.list_steps(conn, submission_id)


@router.post("/{submission_id}/assign", response_model=List[WorkflowStep], status_code=201)
async def assign(
    submission_id: int,
    body: AssignIn,
    current_user: Annotated[User, Depends(require_roles(Role.admin, Role.ceo))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    return await workflow_engine.assign_workflow(conn, submission_id, body.approvers)


@router.get("/{submission_id}/can-approve")
async def can_approve(
    submission_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    row = await workflow_engine.get_submission_row(conn, submission_id)
    await submissions.ensure_form_access(conn, current_user, row["form_id"])
    allowed = await workflow_engine.can_step_approve(conn, submission_id, current_user.id)
    return {"submission_id": submission_id, "can_approve": allowed}


@router.post("/{submission_id}/approve", response_model=WorkflowStep)
async def approve(
    submission_id: int,
    body: ApproveIn,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    return await workflow_engine.advance_step(
        conn, submission_id, current_user.id, body.updated_fields, body.comments
    )
