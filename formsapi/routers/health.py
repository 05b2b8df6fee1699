from fastapi import APIRouter, Response

from formsapi.health import check_health
from formsapi.models.health import HealthStatus

router = APIRouter()


@router.get("/health", response_model=HealthStatus)
async def health(response: Response):
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return await check_health()
