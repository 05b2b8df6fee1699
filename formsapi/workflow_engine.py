"""Sequential approval chain attached to a submission.

Each submission may carry an ordered list of workflow steps, one per approver.
A step can only be approved once every step before it is approved; the last
approval moves the submission to ``completed``.

Every function here runs on the caller's connection, so the request's
transaction covers the check, the patch, the sign-off and the completion.
"""
import datetime
import hashlib
import logging
from typing import Any, Dict, List, Optional, Sequence

import sqlalchemy
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import (
    step_signature_table,
    submission_table,
    user_table,
    workflow_step_table,
)
from formsapi.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from formsapi.models.workflow import ApproverIn, SubmissionStatus, WorkflowStep

logger = logging.getLogger(__name__)

RESERVED_KEYS = ("signature",)


def validate_chain(approvers: Sequence[ApproverIn]) -> None:
    if not approvers:
        raise ValidationError("At least one approver is required")
    orders = sorted(a.sequence_order for a in approvers)
    if orders != list(range(1, len(approvers) + 1)):
        raise ValidationError("Sequence orders must be unique and run 1..N without gaps")
    user_ids = [a.user_id for a in approvers]
    if len(set(user_ids)) != len(user_ids):
        raise ValidationError("An approver may hold only one step in a workflow")


def check_turn(steps: Sequence[Dict[str, Any]], user_id: int) -> Optional[str]:
    """Return why ``user_id`` may not approve now, or None when it is their turn."""
    mine = next((s for s in steps if s["user_id"] == user_id), None)
    if mine is None:
        return "No workflow step is assigned to you on this submission"
    if mine["signed"]:
        return "Your workflow step is already approved"
    if any(not s["signed"] for s in steps if s["sequence_order"] < mine["sequence_order"]):
        return "Not your turn: predecessor steps are incomplete"
    return None


def merge_fields(data: Dict[str, Any], patch: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(data or {})
    for key, value in (patch or {}).items():
        if key in RESERVED_KEYS:
            continue
        merged[key] = value
    return merged


async def get_submission_row(conn: AsyncConnection, submission_id: int, for_update: bool = False) -> Dict[str, Any]:
    query = submission_table.select().where(submission_table.c.id == submission_id)
    if for_update:
        query = query.with_for_update()
    row = (await conn.execute(query)).first()
    if not row:
        raise NotFoundError("Submission not found")
    return dict(row._mapping)


async def get_step_rows(conn: AsyncConnection, submission_id: int) -> List[Dict[str, Any]]:
    query = (
        workflow_step_table.select()
        .where(workflow_step_table.c.submission_id == submission_id)
        .order_by(workflow_step_table.c.sequence_order)
    )
    result = await conn.execute(query)
    return [dict(row._mapping) for row in result]


async def list_steps(conn: AsyncConnection, submission_id: int) -> List[WorkflowStep]:
    await get_submission_row(conn, submission_id)
    query = (
        sqlalchemy.select(
            workflow_step_table,
            user_table.c.full_name.label("user_name"),
            user_table.c.designation,
        )
        .select_from(
            workflow_step_table.join(
                user_table, workflow_step_table.c.user_id == user_table.c.id, isouter=True
            )
        )
        .where(workflow_step_table.c.submission_id == submission_id)
        .order_by(workflow_step_table.c.sequence_order)
    )
    result = await conn.execute(query)
    return [WorkflowStep(**row._mapping) for row in result]


async def assign_workflow(
    conn: AsyncConnection, submission_id: int, approvers: Sequence[ApproverIn]
) -> List[WorkflowStep]:
    validate_chain(approvers)

    submission = await get_submission_row(conn, submission_id, for_update=True)
    if await get_step_rows(conn, submission_id):
        raise ConflictError("A workflow is already assigned to this submission")

    user_ids = [a.user_id for a in approvers]
    found = await conn.execute(
        sqlalchemy.select(user_table.c.id).where(user_table.c.id.in_(user_ids))
    )
    missing = set(user_ids) - {row.id for row in found}
    if missing:
        raise NotFoundError(f"Unknown approver ids: {', '.join(str(m) for m in sorted(missing))}")

    for approver in sorted(approvers, key=lambda a: a.sequence_order):
        query = workflow_step_table.insert().values(
            submission_id=submission_id,
            user_id=approver.user_id,
            approver_role=approver.approver_role.value,
            sequence_order=approver.sequence_order,
            signed=False,
        )
        logger.debug(query)
        await conn.execute(query)

    if submission["status"] == SubmissionStatus.pending.value:
        await conn.execute(
            submission_table.update()
            .where(submission_table.c.id == submission_id)
            .values(status=SubmissionStatus.in_progress.value)
        )

    logger.info(f"Assigned {len(approvers)}-step workflow to submission {submission_id}")
    return await list_steps(conn, submission_id)


async def can_step_approve(conn: AsyncConnection, submission_id: int, user_id: int) -> bool:
    steps = await get_step_rows(conn, submission_id)
    return check_turn(steps, user_id) is None


async def advance_step(
    conn: AsyncConnection,
    submission_id: int,
    user_id: int,
    updated_fields: Optional[Dict[str, Any]] = None,
    comments: Optional[str] = None,
) -> WorkflowStep:
    now = datetime.datetime.now(datetime.timezone.utc)

    submission = await get_submission_row(conn, submission_id, for_update=True)
    steps = await get_step_rows(conn, submission_id)
    if not steps:
        raise ConflictError("No workflow is assigned to this submission")

    reason = check_turn(steps, user_id)
    if reason:
        logger.warning(f"User {user_id} refused on submission {submission_id}: {reason}")
        raise AuthorizationError(reason)
    step = next(s for s in steps if s["user_id"] == user_id)

    if updated_fields:
        if submission["is_signed"]:
            raise ConflictError("Submission is locked; unlock it before editing")
        result = await conn.execute(
            submission_table.update()
            .where(
                (submission_table.c.id == submission_id)
                & (submission_table.c.is_signed == False)  # noqa: E712
            )
            .values(
                submission_data=merge_fields(submission["submission_data"], updated_fields),
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            raise ConflictError("Submission is locked; unlock it before editing")

    result = await conn.execute(
        workflow_step_table.update()
        .where(
            (workflow_step_table.c.id == step["id"])
            & (workflow_step_table.c.signed == False)  # noqa: E712
        )
        .values(
            signed=True,
            signed_at=now,
            updated_fields=updated_fields,
            comments=comments,
        )
    )
    if result.rowcount != 1:
        raise ConflictError("Your workflow step is already approved")

    signature_hash = hashlib.sha256(
        f"{submission_id}-{user_id}-{now.isoformat()}".encode()
    ).hexdigest()
    await conn.execute(
        step_signature_table.insert().values(
            submission_id=submission_id,
            user_id=user_id,
            signature_hash=signature_hash,
            created_at=now,
        )
    )

    pending = await conn.scalar(
        sqlalchemy.select(sqlalchemy.func.count())
        .select_from(workflow_step_table)
        .where(
            (workflow_step_table.c.submission_id == submission_id)
            & (workflow_step_table.c.signed == False)  # noqa: E712
        )
    )
    if pending == 0:
        await conn.execute(
            submission_table.update()
            .where(submission_table.c.id == submission_id)
            .values(status=SubmissionStatus.completed.value, updated_at=now)
        )
        logger.info(f"Submission {submission_id} completed its workflow")

    logger.info(f"User {user_id} approved step {step['sequence_order']} of submission {submission_id}")
    steps = await list_steps(conn, submission_id)
    return next(s for s in steps if s.user_id == user_id)


async def pending_submission_ids(conn: AsyncConnection, user_id: int) -> List[int]:
    """Submissions whose next actionable step belongs to ``user_id``, newest first."""
    earlier = workflow_step_table.alias("earlier")
    blocked = (
        sqlalchemy.select(earlier.c.id)
        .where(
            (earlier.c.submission_id == workflow_step_table.c.submission_id)
            & (earlier.c.sequence_order < workflow_step_table.c.sequence_order)
            & (earlier.c.signed == False)  # noqa: E712
        )
        .exists()
    )
    query = (
        sqlalchemy.select(submission_table.c.id)
        .select_from(
            submission_table.join(
                workflow_step_table,
                workflow_step_table.c.submission_id == submission_table.c.id,
            )
        )
        .where(
            (workflow_step_table.c.user_id == user_id)
            & (workflow_step_table.c.signed == False)  # noqa: E712
            & (submission_table.c.status == SubmissionStatus.in_progress.value)
            & ~blocked
        )
        .order_by(submission_table.c.created_at.desc(), submission_table.c.id.desc())
    )
    result = await conn.execute(query)
    return [row.id for row in result]
