from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class Form(BaseModel):
    id: Optional[int] = None
    name: str
    slug: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class PermissionsIn(BaseModel):
    form_ids: List[int] = []


class Department(BaseModel):
    id: Optional[int] = None
    name: str
