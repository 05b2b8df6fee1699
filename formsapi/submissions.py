"""Submission store: CRUD with the duplicate guard, analytics and cleanup."""
import datetime
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

import sqlalchemy
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import (
    form_table,
    permission_table,
    step_signature_table,
    submission_table,
    user_table,
    workflow_step_table,
)
from formsapi.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from formsapi.models.analytics import DepartmentTotal, RejectionAnalytics
from formsapi.models.submission import Person, Submission
from formsapi.models.user import User
from formsapi.models.workflow import ApproverIn, SubmissionStatus
from formsapi.signing import SIGNATURE_KEY
from formsapi.workflow_engine import assign_workflow, get_submission_row

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("customerName", "serialNumber")
DUPLICATE_MESSAGE = "A submission for this serial number and customer already exists."

submitter = user_table.alias("submitter")
signer = user_table.alias("signer")
session_owner = user_table.alias("session_owner")


def submission_select():
    """Submissions joined with their template slug and the people involved."""
    return sqlalchemy.select(
        submission_table,
        form_table.c.slug.label("form_slug"),
        submitter.c.full_name.label("submitter_name"),
        signer.c.full_name.label("signer_name"),
        session_owner.c.full_name.label("session_owner_name"),
    ).select_from(
        submission_table
        .join(form_table, submission_table.c.form_id == form_table.c.id)
        .join(submitter, submission_table.c.user_id == submitter.c.id, isouter=True)
        .join(signer, submission_table.c.signed_by == signer.c.id, isouter=True)
        .join(session_owner, submission_table.c.signed_session_by == session_owner.c.id, isouter=True)
    )


def _person(user_id: Optional[int], name: Optional[str]) -> Optional[Person]:
    if user_id is None or name is None:
        return None
    return Person(id=user_id, full_name=name)


def to_submission(row) -> Submission:
    data = dict(row._mapping)
    return Submission(
        **{k: v for k, v in data.items() if k in Submission.model_fields},
        submitted_by=_person(data["user_id"], data.get("submitter_name")),
        signed_by_user=_person(data["signed_by"], data.get("signer_name")),
        signed_in_session_of=_person(data["signed_session_by"], data.get("session_owner_name")),
    )


def duplicate_key(data: Dict[str, Any]):
    serial = str(data.get("serialNumber") or "").strip()
    customer = str(data.get("customerName") or "").strip()
    if not serial or not customer:
        return None
    return serial, customer


def clean_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop the reserved signature key and require the identifying fields."""
    payload = {k: v for k, v in (data or {}).items() if k != SIGNATURE_KEY}
    missing = [f for f in REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


async def get_form_by_slug(conn: AsyncConnection, slug: str):
    row = (await conn.execute(form_table.select().where(form_table.c.slug == slug))).first()
    if not row:
        raise NotFoundError(f"Form '{slug}' not found")
    return row


async def ensure_form_access(conn: AsyncConnection, user: User, form_id: int) -> None:
    if user.can_sign:
        return
    query = sqlalchemy.select(permission_table.c.id).where(
        (permission_table.c.user_id == user.id) & (permission_table.c.form_id == form_id)
    )
    if (await conn.execute(query)).first() is None:
        logger.warning(f"User {user.username} has no permission on form {form_id}")
        raise AuthorizationError("You do not have access to this form")


async def ensure_unique(
    conn: AsyncConnection, form_id: int, data: Dict[str, Any], exclude_id: Optional[int] = None
) -> None:
    key = duplicate_key(data)
    query = sqlalchemy.select(submission_table.c.id, submission_table.c.submission_data).where(
        submission_table.c.form_id == form_id
    )
    if exclude_id is not None:
        query = query.where(submission_table.c.id != exclude_id)
    for row in await conn.execute(query):
        if duplicate_key(row.submission_data or {}) == key:
            raise ConflictError(DUPLICATE_MESSAGE)


async def get(conn: AsyncConnection, submission_id: int) -> Submission:
    query = submission_select().where(submission_table.c.id == submission_id)
    row = (await conn.execute(query)).first()
    if not row:
        raise NotFoundError("Submission not found")
    return to_submission(row)


async def get_many(conn: AsyncConnection, ids: Sequence[int]) -> List[Submission]:
    if not ids:
        return []
    query = submission_select().where(submission_table.c.id.in_(ids))
    by_id = {row.id: to_submission(row) for row in await conn.execute(query)}
    return [by_id[i] for i in ids if i in by_id]


async def create(
    conn: AsyncConnection,
    user: User,
    form_slug: str,
    payload: Dict[str, Any],
    approvers: Optional[Sequence[ApproverIn]] = None,
) -> Submission:
    form = await get_form_by_slug(conn, form_slug)
    await ensure_form_access(conn, user, form.id)
    data = clean_payload(payload)
    await ensure_unique(conn, form.id, data)

    query = submission_table.insert().values(
        user_id=user.id,
        form_id=form.id,
        company=user.company.value,
        submission_data=data,
        status=SubmissionStatus.pending.value,
        is_signed=False,
        created_at=datetime.datetime.now(datetime.timezone.utc),
    )
    logger.debug(query)
    result = await conn.execute(query)
    submission_id = result.inserted_primary_key[0]
    logger.info(f"User {user.username} created submission {submission_id} on {form_slug}")

    if approvers:
        await assign_workflow(conn, submission_id, approvers)
    return await get(conn, submission_id)


async def query(conn: AsyncConnection, user: User, form_slug: str) -> List[Submission]:
    form = await get_form_by_slug(conn, form_slug)
    await ensure_form_access(conn, user, form.id)
    stmt = (
        submission_select()
        .where(submission_table.c.form_id == form.id)
        .order_by(submission_table.c.created_at.desc(), submission_table.c.id.desc())
    )
    return [to_submission(row) for row in await conn.execute(stmt)]


async def query_mine(conn: AsyncConnection, user: User) -> List[Submission]:
    """Everything ``user`` created, across templates, newest first."""
    stmt = (
        submission_select()
        .where(submission_table.c.user_id == user.id)
        .order_by(submission_table.c.created_at.desc(), submission_table.c.id.desc())
    )
    return [to_submission(row) for row in await conn.execute(stmt)]


async def update(conn: AsyncConnection, submission_id: int, payload: Dict[str, Any], user: User) -> Submission:
    row = await get_submission_row(conn, submission_id, for_update=True)
    if row["user_id"] != user.id and not user.can_sign:
        raise AuthorizationError("Only the creator, administrators and CEOs can edit this submission")
    if row["is_signed"]:
        raise ConflictError("Submission is locked; unlock it before editing")

    data = clean_payload(payload)
    await ensure_unique(conn, row["form_id"], data, exclude_id=submission_id)
    result = await conn.execute(
        submission_table.update()
        .where(
            (submission_table.c.id == submission_id)
            & (submission_table.c.is_signed == False)  # noqa: E712
        )
        .values(submission_data=data, updated_at=datetime.datetime.now(datetime.timezone.utc))
    )
    if result.rowcount != 1:
        raise ConflictError("Submission is locked; unlock it before editing")
    logger.info(f"Submission {submission_id} updated by {user.username}")
    return await get(conn, submission_id)


async def _delete_ids(conn: AsyncConnection, ids: Sequence[int]) -> int:
    if not ids:
        return 0
    await conn.execute(step_signature_table.delete().where(step_signature_table.c.submission_id.in_(ids)))
    await conn.execute(workflow_step_table.delete().where(workflow_step_table.c.submission_id.in_(ids)))
    result = await conn.execute(submission_table.delete().where(submission_table.c.id.in_(ids)))
    return result.rowcount


async def delete(conn: AsyncConnection, submission_id: int, actor: User) -> None:
    if not actor.can_sign:
        raise AuthorizationError("Only administrators and CEOs can delete submissions")
    await get_submission_row(conn, submission_id)
    await _delete_ids(conn, [submission_id])
    logger.info(f"Submission {submission_id} deleted by {actor.username}")


async def set_pdf_url(conn: AsyncConnection, submission_id: int, pdf_url: str) -> Submission:
    result = await conn.execute(
        submission_table.update()
        .where(
            (submission_table.c.id == submission_id)
            & (submission_table.c.is_signed == True)  # noqa: E712
        )
        .values(pdf_url=pdf_url)
    )
    if result.rowcount != 1:
        raise ConflictError("Only signed submissions can be archived")
    return await get(conn, submission_id)


def parse_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return 0.0


def departments_of(data: Dict[str, Any]) -> List[str]:
    value = data.get("responsibleDepartment")
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    seen = []
    for name in value:
        name = str(name).strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def _created_date(created_at) -> Optional[datetime.date]:
    if created_at is None:
        return None
    if isinstance(created_at, str):
        created_at = datetime.datetime.fromisoformat(created_at)
    return created_at.date()


def aggregate_rows(
    rows: Iterable[Dict[str, Any]],
    from_date: Optional[datetime.date] = None,
    to_date: Optional[datetime.date] = None,
) -> RejectionAnalytics:
    """Discount totals per responsible department.

    A submission naming several departments counts its full discount towards
    each of them, so department totals can exceed ``grand_total``.
    """
    totals: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    series: Dict[str, float] = defaultdict(float)
    grand_total = 0.0
    count = 0

    for row in rows:
        created = _created_date(row.get("created_at"))
        if from_date and (created is None or created < from_date):
            continue
        if to_date and (created is None or created > to_date):
            continue
        data = row.get("submission_data") or {}
        amount = parse_amount(data.get("totalDiscount"))
        for department in departments_of(data):
            totals[department] += amount
            counts[department] += 1
        grand_total += amount
        count += 1
        if created is not None:
            series[created.strftime("%Y-%m")] += amount

    departments = [
        DepartmentTotal(department=name, total=totals[name], count=counts[name])
        for name in sorted(totals, key=lambda n: (-totals[n], n))
    ]
    return RejectionAnalytics(
        from_date=from_date,
        to_date=to_date,
        departments=departments,
        grand_total=grand_total,
        submission_count=count,
        time_series=dict(sorted(series.items())),
    )


async def aggregate(
    conn: AsyncConnection,
    from_date: Optional[datetime.date] = None,
    to_date: Optional[datetime.date] = None,
) -> RejectionAnalytics:
    if from_date and to_date and from_date > to_date:
        raise ValidationError("fromDate must not be after toDate")
    query = sqlalchemy.select(
        submission_table.c.submission_data, submission_table.c.created_at
    )
    rows = [dict(row._mapping) for row in await conn.execute(query)]
    return aggregate_rows(rows, from_date, to_date)


def find_duplicates(rows: Iterable[Dict[str, Any]]) -> List[int]:
    """Ids to delete so each (form, serial number, customer) keeps its earliest row."""
    groups: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
    for row in rows:
        key = duplicate_key(row.get("submission_data") or {})
        if key is None:
            continue
        groups[(row["form_id"],) + key].append(row)

    doomed = []
    for members in groups.values():
        if len(members) < 2:
            continue
        members.sort(key=lambda r: (str(r.get("created_at") or ""), r["id"]))
        doomed.extend(r["id"] for r in members[1:])
    return sorted(doomed)


async def remove_duplicates(conn: AsyncConnection) -> List[int]:
    query = sqlalchemy.select(
        submission_table.c.id,
        submission_table.c.form_id,
        submission_table.c.submission_data,
        submission_table.c.created_at,
    )
    rows = [dict(row._mapping) for row in await conn.execute(query)]
    doomed = find_duplicates(rows)
    deleted = await _delete_ids(conn, doomed)
    logger.info(f"Duplicate cleanup removed {deleted} submissions")
    return doomed
