import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi import signing, submissions
from formsapi.database import get_connection
from formsapi.errors import ConflictError, ValidationError
from formsapi.models.submission import CleanupResult, SignIn, Submission, SubmissionIn, SubmissionUpdateIn
from formsapi.models.user import Role, User
from formsapi.security import authenticate_signer, get_current_user, require_roles
from formsapi.storage import PdfArchive, get_archive
from formsapi.workflow_engine import get_submission_row

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/maintenance/remove-duplicates", response_model=CleanupResult)
async def remove_duplicates(
    current_user: Annotated[User, Depends(require_roles(Role.admin))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    deleted_ids = await submissions.remove_duplicates(conn)
    return CleanupResult(deleted=len(deleted_ids), deleted_ids=deleted_ids)


@router.get("/form/{form_slug}", response_model=List[Submission])
async def list_submissions(
    form_slug: str,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    try:
        return await submissions.query(conn, current_user, form_slug)
    except SQLAlchemyError:
        logger.exception(f"Listing submissions of {form_slug} failed")
        return []


@router.get("/mine", response_model=List[Submission])
async def list_my_submissions(
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    try:
        return await submissions.query_mine(conn, current_user)
    except SQLAlchemyError:
        logger.exception(f"Listing submissions of {current_user.username} failed")
        return []


@router.post("/{form_slug}", response_model=Submission, status_code=201)
async def create_submission(
    form_slug: str,
    submission: SubmissionIn,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    return await submissions.create(
        conn, current_user, form_slug, submission.submission_data, submission.approvers
    )


@router.get("/{submission_id}", response_model=Submission)
async def get_submission(
    submission_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    submission = await submissions.get(conn, submission_id)
    await submissions.ensure_form_access(conn, current_user, submission.form_id)
    return submission


@router.put("/{submission_id}", response_model=Submission)
async def update_submission(
    submission_id: int,
    submission: SubmissionUpdateIn,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    return await submissions.update(conn, submission_id, submission.submission_data, current_user)


@router.delete("/{submission_id}", status_code=200)
async def delete_submission(
    submission_id: int,
    current_user: Annotated[User, Depends(require_roles(Role.admin, Role.ceo))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    await submissions.delete(conn, submission_id, current_user)
    return {"detail": "Submission deleted", "submission_id": submission_id}


@router.post("/{submission_id}/sign", response_model=Submission)
async def sign_submission(
    submission_id: int,
    body: SignIn,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    signer = await authenticate_signer(conn, body.username, body.password)
    await signing.sign(conn, submission_id, body.signature, signer, current_user)
    return await submissions.get(conn, submission_id)


@router.post("/{submission_id}/unlock", response_model=Submission)
async def unlock_submission(
    submission_id: int,
    current_user: Annotated[User, Depends(require_roles(Role.admin, Role.ceo))],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
):
    await signing.unlock(conn, submission_id, current_user)
    return await submissions.get(conn, submission_id)


@router.post("/{submission_id}/pdf", response_model=Submission)
async def upload_pdf(
    submission_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    conn: Annotated[AsyncConnection, Depends(get_connection)],
    archive: Annotated[PdfArchive, Depends(get_archive)],
    file: UploadFile = File(...),
):
    if not file or not file.filename:
        raise ValidationError("No file provided")
    row = await get_submission_row(conn, submission_id)
    await submissions.ensure_form_access(conn, current_user, row["form_id"])
    if not signing.is_locked(row):
        raise ConflictError("Only signed submissions can be archived")

    content = await file.read()
    pdf_url = await run_in_threadpool(
        archive.upload, submission_id, file.filename, content, file.content_type or "application/pdf"
    )
    return await submissions.set_pdf_url(conn, submission_id, pdf_url)
