from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from formsapi.models.workflow import ApproverIn, SubmissionStatus


class SubmissionIn(BaseModel):
    submission_data: Dict[str, Any]
    approvers: Optional[List[ApproverIn]] = None


class SubmissionUpdateIn(BaseModel):
    submission_data: Dict[str, Any]


class SignIn(BaseModel):
    # canvas export, e.g. "data:image/png;base64,iVBORw0..."
    signature: str
    username: str
    password: str


class Person(BaseModel):
    id: int
    full_name: str


class Submission(BaseModel):
    id: int
    form_id: int
    form_slug: Optional[str] = None
    user_id: int
    company: str
    submission_data: Dict[str, Any]
    status: SubmissionStatus
    is_signed: bool = False
    signed_by: Optional[int] = None
    signed_session_by: Optional[int] = None
    signed_at: Optional[datetime] = None
    pdf_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    submitted_by: Optional[Person] = None
    signed_by_user: Optional[Person] = None
    signed_in_session_of: Optional[Person] = None


class CleanupResult(BaseModel):
    deleted: int
    deleted_ids: List[int] = []
