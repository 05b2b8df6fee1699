from typing import Optional

from pydantic import BaseModel


class HealthStatus(BaseModel):
    healthy: bool
    status: str  # ok | degraded
    message: str
    details: Optional[str] = None
