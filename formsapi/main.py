import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from formsapi.config import config
from formsapi.database import create_tables, engine
from formsapi.errors import register_exception_handlers
from formsapi.logging_conf import configure_logging
from formsapi.routers.analytics import router as analytics_router
from formsapi.routers.auth import router as auth_router
from formsapi.routers.department import router as department_router
from formsapi.routers.form import router as form_router
from formsapi.routers.health import router as health_router
from formsapi.routers.submission import router as submission_router
from formsapi.routers.user import router as user_router
from formsapi.routers.workflow import router as workflow_router
from formsapi.seed import seed_reference_data

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # create tables and reference data
    await create_tables()
    async with engine.begin() as conn:
        await seed_reference_data(conn)
    logger.info(f"Forms API started (demo mode {'on' if config.DEMO_MODE else 'off'})")
    yield
    await engine.dispose()


app = FastAPI(
    title="Customer Rejection Forms API",
    description="Submission, approval workflow and signing of customer rejection forms",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(user_router, prefix="/api/user", tags=["User"])
app.include_router(form_router, prefix="/api/form", tags=["Form"])
app.include_router(department_router, prefix="/api/department", tags=["Department"])
app.include_router(submission_router, prefix="/api/submission", tags=["Submission"])
app.include_router(workflow_router, prefix="/api/workflow", tags=["Workflow"])
app.include_router(analytics_router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(health_router, prefix="/api/admin", tags=["Health"])
