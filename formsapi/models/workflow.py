from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SubmissionStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    # allowed by the schema, nothing transitions into it yet
    rejected = "rejected"


class ApproverRole(str, Enum):
    department_review = "department_review"
    sales = "sales"
    executive = "executive"
    finance = "finance"


class ApproverIn(BaseModel):
    user_id: int
    sequence_order: int = Field(ge=1)
    approver_role: ApproverRole


class AssignIn(BaseModel):
    approvers: List[ApproverIn]


class WorkflowStep(BaseModel):
    id: Optional[int] = None
    submission_id: int
    user_id: int
    approver_role: ApproverRole
    sequence_order: int
    signed: bool = False
    signed_at: Optional[datetime] = None
    updated_fields: Optional[Dict[str, Any]] = None
    comments: Optional[str] = None
    user_name: Optional[str] = None
    designation: Optional[str] = None


class ApproveIn(BaseModel):
    updated_fields: Optional[Dict[str, Any]] = None
    comments: Optional[str] = None
