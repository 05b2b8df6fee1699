import os

os.environ["ENV_STATE"] = "test"

from typing import AsyncGenerator, Dict

import pytest
import sqlalchemy
from httpx import ASGITransport, AsyncClient

from formsapi.database import create_tables, engine, form_table, get_connection, permission_table, user_table
from formsapi.main import app
from formsapi.security import get_password_hash
from formsapi.seed import seed_reference_data
from formsapi.storage import PdfArchive, get_archive

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)
FORM_SLUG = "customer-rejection"
# 1x1 transparent PNG
SIGNATURE = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db() -> AsyncGenerator:
    """One outer transaction per test; every request runs in a savepoint on it."""
    await create_tables()
    async with engine.connect() as conn:
        trans = await conn.begin()
        await seed_reference_data(conn)

        async def override_get_connection():
            async with conn.begin_nested():
                yield conn

        app.dependency_overrides[get_connection] = override_get_connection
        yield conn
        app.dependency_overrides.clear()
        await trans.rollback()
    await engine.dispose()


@pytest.fixture
async def async_client(db) -> AsyncGenerator:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db):
    async def _make(username: str, role: str = "employee", designation=None, forms=(FORM_SLUG,)) -> Dict:
        result = await db.execute(
            user_table.insert().values(
                full_name=username.title(),
                username=username,
                email=f"{username}@example.com",
                password_hash=PASSWORD_HASH,
                company="Demo Company",
                role=role,
                designation=designation,
            )
        )
        uid = result.inserted_primary_key[0]
        for slug in forms:
            form_id = await db.scalar(sqlalchemy.select(form_table.c.id).where(form_table.c.slug == slug))
            await db.execute(permission_table.insert().values(user_id=uid, form_id=form_id))
        return {"id": uid, "username": username, "role": role}

    return _make


@pytest.fixture
def login(async_client):
    async def _login(username: str, password: str = PASSWORD) -> Dict[str, str]:
        response = await async_client.post(
            "/api/auth/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        # keep requests explicit about who they act as
        async_client.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login


async def _user_with_headers(make_user, login, username, role, designation=None):
    user = await make_user(username, role, designation)
    user["headers"] = await login(username)
    return user


@pytest.fixture
async def admin(make_user, login):
    return await _user_with_headers(make_user, login, "alice", "admin", "System Administrator")


@pytest.fixture
async def ceo(make_user, login):
    return await _user_with_headers(make_user, login, "hoz", "ceo", "Chief Executive Officer")


@pytest.fixture
async def employee(make_user, login):
    return await _user_with_headers(make_user, login, "bob", "employee", "Quality Engineer")


@pytest.fixture
def create_submission(async_client):
    async def _create(headers, approvers=None, **fields):
        data = {
            "customerName": "Acme",
            "serialNumber": "S-100",
            "totalDiscount": "1000",
            "responsibleDepartment": ["Sales"],
        }
        data.update(fields)
        body = {"submission_data": data}
        if approvers is not None:
            body["approvers"] = approvers
        response = await async_client.post(f"/api/submission/{FORM_SLUG}", json=body, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


class FakeBlob:
    def __init__(self, store, name):
        self.store = store
        self.name = name

    def upload_from_string(self, data, content_type=None):
        self.store[self.name] = (data, content_type)


class FakeBucket:
    def __init__(self, store):
        self.store = store

    def blob(self, name):
        return FakeBlob(self.store, name)


class FakeStorageClient:
    def __init__(self):
        self.objects = {}

    def bucket(self, name):
        return FakeBucket(self.objects)


@pytest.fixture
def storage_client(db):
    client = FakeStorageClient()
    app.dependency_overrides[get_archive] = lambda: PdfArchive(client, "test-bucket", "submissions")
    return client
