from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel


class DepartmentTotal(BaseModel):
    department: str
    total: float
    count: int


class RejectionAnalytics(BaseModel):
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    departments: List[DepartmentTotal] = []
    grand_total: float = 0.0
    submission_count: int = 0
    # "YYYY-MM" -> discount total of the submissions created that month
    time_series: Dict[str, float] = {}
