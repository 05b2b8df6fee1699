import pytest

from formsapi.errors import ValidationError
from formsapi.signing import parse_signature

from conftest import PASSWORD, SIGNATURE

pytestmark = pytest.mark.anyio


def test_parse_signature():
    image = parse_signature(SIGNATURE)
    assert image.mime_type == "image/png"
    assert image.content.startswith(b"\x89PNG")


@pytest.mark.parametrize(
    "value",
    ["", "hello", "data:text/plain;base64,aGVsbG8=", "data:image/png;base64,***", "data:image/png;base64,"],
)
def test_parse_signature_rejects(value):
    with pytest.raises(ValidationError):
        parse_signature(value)


def assert_signing_invariant(submission):
    signed = submission["is_signed"]
    assert signed == (submission["signed_by"] is not None)
    assert signed == (submission["signed_at"] is not None)
    assert signed == bool(submission["submission_data"].get("signature"))


async def sign(async_client, submission_id, headers, username="hoz", password=PASSWORD, signature=SIGNATURE):
    return await async_client.post(
        f"/api/submission/{submission_id}/sign",
        json={"signature": signature, "username": username, "password": password},
        headers=headers,
    )


async def test_ceo_countersigns_in_employee_session(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    response = await sign(async_client, submission["id"], employee["headers"])
    assert response.status_code == 200, response.text
    signed = response.json()
    assert signed["is_signed"] is True
    assert signed["signed_by"] == ceo["id"]
    assert signed["signed_session_by"] == employee["id"]
    assert signed["signed_by_user"]["full_name"] == "Hoz"
    assert signed["signed_in_session_of"]["full_name"] == "Bob"
    assert signed["submission_data"]["signature"] == SIGNATURE
    assert_signing_invariant(signed)


async def test_employee_cannot_sign(async_client, employee, create_submission):
    submission = await create_submission(employee["headers"])
    response = await sign(async_client, submission["id"], employee["headers"], username="bob")
    assert response.status_code == 403
    assert response.json() == {"error": "Only administrators and CEOs can sign forms."}

    current = (await async_client.get(f"/api/submission/{submission['id']}", headers=employee["headers"])).json()
    assert current["is_signed"] is False
    assert_signing_invariant(current)


async def test_wrong_signer_password(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    response = await sign(async_client, submission["id"], employee["headers"], password="wrong")
    assert response.status_code == 401


async def test_empty_signature_is_rejected(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    response = await sign(async_client, submission["id"], employee["headers"], signature="")
    assert response.status_code == 400


async def test_signing_twice_conflicts(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    await sign(async_client, submission["id"], employee["headers"])
    response = await sign(async_client, submission["id"], employee["headers"])
    assert response.status_code == 409
    assert response.json() == {"error": "Submission is already signed"}


async def test_signed_submission_is_locked(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    await sign(async_client, submission["id"], employee["headers"])
    response = await async_client.put(
        f"/api/submission/{submission['id']}",
        json={"submission_data": dict(submission["submission_data"], totalDiscount="1")},
        headers=employee["headers"],
    )
    assert response.status_code == 409
    assert response.json() == {"error": "Submission is locked; unlock it before editing"}


async def test_unlock_restores_editable_state(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    signed = (await sign(async_client, submission["id"], employee["headers"])).json()

    response = await async_client.post(f"/api/submission/{submission['id']}/unlock", headers=ceo["headers"])
    assert response.status_code == 200
    unlocked = response.json()
    assert unlocked["is_signed"] is False
    assert unlocked["signed_by"] is None
    assert unlocked["signed_session_by"] is None
    assert unlocked["signed_at"] is None
    assert "signature" not in unlocked["submission_data"]
    assert_signing_invariant(unlocked)

    untouched = ("id", "form_id", "user_id", "company", "status", "created_at")
    assert {k: unlocked[k] for k in untouched} == {k: signed[k] for k in untouched}
    assert unlocked["submission_data"] == submission["submission_data"]


async def test_employee_cannot_unlock(async_client, employee, ceo, create_submission):
    submission = await create_submission(employee["headers"])
    await sign(async_client, submission["id"], employee["headers"])
    response = await async_client.post(f"/api/submission/{submission['id']}/unlock", headers=employee["headers"])
    assert response.status_code == 403


async def test_unlock_unsigned_conflicts(async_client, employee, admin, create_submission):
    submission = await create_submission(employee["headers"])
    response = await async_client.post(f"/api/submission/{submission['id']}/unlock", headers=admin["headers"])
    assert response.status_code == 409
    assert response.json() == {"error": "Submission is not signed"}


async def test_sign_missing_submission(async_client, employee, ceo):
    response = await sign(async_client, 9999, employee["headers"])
    assert response.status_code == 404


def test_only_admins_and_ceos_can_sign():
    from formsapi.models.user import User

    def user(role):
        return User(id=1, full_name="X", username="x", company="Demo Company", role=role)

    assert user("admin").can_sign
    assert user("ceo").can_sign
    assert not user("employee").can_sign
