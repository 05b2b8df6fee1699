"""Signing locks a submission; unlocking is the only way back to an editable state."""
import base64
import binascii
import datetime
import logging
import re
from typing import Any, Dict, NamedTuple

from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import submission_table
from formsapi.errors import AuthorizationError, ConflictError, ValidationError
from formsapi.models.user import User
from formsapi.workflow_engine import get_submission_row

logger = logging.getLogger(__name__)

SIGNATURE_KEY = "signature"
DATA_URI_RE = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,(?P<payload>.+)$", re.DOTALL)


class SignatureImage(NamedTuple):
    mime_type: str
    content: bytes
    data_uri: str


def parse_signature(data_uri: str) -> SignatureImage:
    match = DATA_URI_RE.match((data_uri or "").strip())
    if not match:
        raise ValidationError("Signature must be an image data URI")
    try:
        content = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Signature payload is not valid base64") from e
    if not content:
        raise ValidationError("Signature image is empty")
    return SignatureImage(match.group("mime"), content, data_uri.strip())


def is_locked(row: Dict[str, Any]) -> bool:
    return bool(row["is_signed"])


async def sign(
    conn: AsyncConnection, submission_id: int, signature: str, signer: User, acting_user: User
) -> Dict[str, Any]:
    """Lock ``submission_id`` with ``signer``'s signature.

    ``signer`` was verified by its own credentials; ``acting_user`` is whoever
    owns the session the request came through. Both are recorded.
    """
    if not signer.can_sign:
        raise AuthorizationError("Only administrators and CEOs can sign forms.")
    image = parse_signature(signature)
    now = datetime.datetime.now(datetime.timezone.utc)

    row = await get_submission_row(conn, submission_id, for_update=True)
    if is_locked(row):
        raise ConflictError("Submission is already signed")
    data = dict(row["submission_data"] or {})
    data[SIGNATURE_KEY] = image.data_uri
    # compare-and-swap on the unsigned state
    result = await conn.execute(
        submission_table.update()
        .where(
            (submission_table.c.id == submission_id)
            & (submission_table.c.is_signed == False)  # noqa: E712
        )
        .values(
            is_signed=True,
            signed_by=signer.id,
            signed_session_by=acting_user.id,
            signed_at=now,
            submission_data=data,
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        raise ConflictError("Submission is already signed")

    logger.info(
        f"Submission {submission_id} signed by {signer.username} "
        f"in the session of {acting_user.username} ({image.mime_type}, {len(image.content)} bytes)"
    )
    return await get_submission_row(conn, submission_id)


async def unlock(conn: AsyncConnection, submission_id: int, actor: User) -> Dict[str, Any]:
    # TODO: keep the previous signer somewhere before clearing it; unlock currently leaves no trace
    if not actor.can_sign:
        raise AuthorizationError("Only administrators and CEOs can unlock forms.")

    row = await get_submission_row(conn, submission_id, for_update=True)
    if not is_locked(row):
        raise ConflictError("Submission is not signed")
    data = dict(row["submission_data"] or {})
    data.pop(SIGNATURE_KEY, None)
    result = await conn.execute(
        submission_table.update()
        .where(
            (submission_table.c.id == submission_id)
            & (submission_table.c.is_signed == True)  # noqa: E712
        )
        .values(
            is_signed=False,
            signed_by=None,
            signed_session_by=None,
            signed_at=None,
            pdf_url=None,
            submission_data=data,
            updated_at=datetime.datetime.now(datetime.timezone.utc),
        )
    )
    if result.rowcount != 1:
        raise ConflictError("Submission is not signed")

    logger.info(f"Submission {submission_id} unlocked by {actor.username}")
    return await get_submission_row(conn, submission_id)
