from typing import AsyncIterator

import sqlalchemy
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from formsapi.config import config

metadata = sqlalchemy.MetaData()


user_table = sqlalchemy.Table(
    "users",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("full_name", sqlalchemy.String(256), nullable=False),
    sqlalchemy.Column("username", sqlalchemy.String(128), unique=True, nullable=False),
    sqlalchemy.Column("email", sqlalchemy.String(256), unique=True, nullable=True),
    sqlalchemy.Column("password_hash", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("company", sqlalchemy.String(64), nullable=False),  # Company enum value
    sqlalchemy.Column("role", sqlalchemy.String(16), nullable=False),  # admin | employee | ceo
    sqlalchemy.Column("designation", sqlalchemy.String(128)),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), default=sqlalchemy.func.now()),
)

form_table = sqlalchemy.Table(
    "forms",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String(128), nullable=False),
    sqlalchemy.Column("slug", sqlalchemy.String(128), unique=True, nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), default=sqlalchemy.func.now()),
)

permission_table = sqlalchemy.Table(
    "user_form_permissions",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), default=sqlalchemy.func.now()),
    sqlalchemy.UniqueConstraint("user_id", "form_id", name="uq_user_form_permission"),
)

department_table = sqlalchemy.Table(
    "departments",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String(128), unique=True, nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), default=sqlalchemy.func.now()),
)

submission_table = sqlalchemy.Table(
    "form_submissions",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.ForeignKey("users.id"), nullable=False),
    sqlalchemy.Column("form_id", sqlalchemy.ForeignKey("forms.id"), nullable=False),
    sqlalchemy.Column("company", sqlalchemy.String(64), nullable=False),
    sqlalchemy.Column("submission_data", sqlalchemy.JSON, nullable=False),
    # pending | in_progress | completed | rejected
    sqlalchemy.Column("status", sqlalchemy.String(16), nullable=False, default="pending"),
    sqlalchemy.Column("is_signed", sqlalchemy.Boolean, nullable=False, default=False),
    sqlalchemy.Column("signed_by", sqlalchemy.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    # whose session was active when the signing principal countersigned
    sqlalchemy.Column("signed_session_by", sqlalchemy.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    sqlalchemy.Column("signed_at", sqlalchemy.DateTime(timezone=True), nullable=True),
    sqlalchemy.Column("pdf_url", sqlalchemy.String(512), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), default=sqlalchemy.func.now()),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime(timezone=True), onupdate=sqlalchemy.func.now()),
    sqlalchemy.CheckConstraint(
        "status IN ('pending', 'in_progress', 'completed', 'rejected')",
        name="ck_submission_status",
    ),
)

workflow_step_table = sqlalchemy.Table(
    "workflow_steps",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("submission_id", sqlalchemy.ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False),
    sqlalchemy.Column("user_id", sqlalchemy.ForeignKey("users.id"), nullable=False),
    sqlalchemy.Column("approver_role", sqlalchemy.String(32), nullable=False),
    sqlalchemy.Column("sequence_order", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("signed", sqlalchemy.Boolean, nullable=False, default=False),
    sqlalchemy.Column("signed_at", sqlalchemy.DateTime(timezone=True), nullable=True),
    sqlalchemy.Column("updated_fields", sqlalchemy.JSON, nullable=True),
    sqlalchemy.Column("comments", sqlalchemy.Text, nullable=True),
    sqlalchemy.UniqueConstraint("submission_id", "sequence_order", name="uq_workflow_step_order"),
    sqlalchemy.UniqueConstraint("submission_id", "user_id", name="uq_workflow_step_user"),
)

step_signature_table = sqlalchemy.Table(
    "step_signatures",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("submission_id", sqlalchemy.ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False),
    sqlalchemy.Column("user_id", sqlalchemy.ForeignKey("users.id"), nullable=False),
    sqlalchemy.Column("signature_hash", sqlalchemy.String(128), nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), default=sqlalchemy.func.now()),
)


is_sqlite = config.DATABASE_URL.startswith("sqlite")
engine = create_async_engine(config.DATABASE_URL)

if is_sqlite:
    # let SQLAlchemy own BEGIN so savepoints and rollbacks behave on sqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def get_connection() -> AsyncIterator[AsyncConnection]:
    """One transaction per request: committed on success, rolled back on any error."""
    async with engine.begin() as conn:
        yield conn
