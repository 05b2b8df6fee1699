from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    admin = "admin"
    employee = "employee"
    ceo = "ceo"


class Company(str, Enum):
    caesarpack_holdings = "Caesarpack Holdings"
    caesarpac_kuwait = "Caesarpac Kuwait"
    kuwait_boxes = "KuwaitBoxes"
    caesarpac_iraq = "Caesarpac Iraq"
    demo_company = "Demo Company"


SIGNING_ROLES = (Role.admin, Role.ceo)


class User(BaseModel):
    id: int | None = None
    full_name: str
    username: str
    email: str | None = None
    company: Company
    role: Role = Role.employee
    designation: str | None = None
    created_at: datetime | None = None

    @property
    def can_sign(self) -> bool:
        return self.role in SIGNING_ROLES


class UserInDB(User):
    password_hash: str


class UserIn(BaseModel):
    full_name: str
    username: str
    email: str | None = None
    password: str
    company: Company
    role: Role = Role.employee
    designation: str | None = None


class UserUpdateIn(BaseModel):
    full_name: str | None = None
    username: str | None = None
    email: str | None = None
    password: str | None = None
    company: Company | None = None
    role: Role | None = None
    designation: str | None = None


class Credentials(BaseModel):
    username: str
    password: str
