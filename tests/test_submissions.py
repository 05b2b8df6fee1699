import pytest
import sqlalchemy

from formsapi.database import submission_table

from conftest import FORM_SLUG

pytestmark = pytest.mark.anyio


async def test_create_submission(async_client, employee, create_submission):
    submission = await create_submission(employee["headers"])
    assert submission["status"] == "pending"
    assert submission["form_slug"] == FORM_SLUG
    assert submission["company"] == "Demo Company"
    assert submission["is_signed"] is False
    assert submission["submitted_by"] == {"id": employee["id"], "full_name": "Bob"}
    assert submission["submission_data"]["customerName"] == "Acme"


async def test_required_fields(async_client, employee):
    response = await async_client.post(
        f"/api/submission/{FORM_SLUG}",
        json={"submission_data": {"customerName": "Acme"}},
        headers=employee["headers"],
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: serialNumber"}


async def test_create_on_unknown_form(async_client, employee):
    response = await async_client.post(
        "/api/submission/unknown-form",
        json={"submission_data": {"customerName": "Acme", "serialNumber": "S-1"}},
        headers=employee["headers"],
    )
    assert response.status_code == 404


async def test_duplicate_submission_is_a_conflict(async_client, db, employee, create_submission):
    await create_submission(employee["headers"])
    response = await async_client.post(
        f"/api/submission/{FORM_SLUG}",
        json={"submission_data": {"customerName": "Acme", "serialNumber": "S-100"}},
        headers=employee["headers"],
    )
    assert response.status_code == 409
    assert response.json() == {"error": "A submission for this serial number and customer already exists."}

    count = await db.scalar(sqlalchemy.select(sqlalchemy.func.count()).select_from(submission_table))
    assert count == 1


async def test_same_serial_for_other_customer_is_allowed(employee, create_submission):
    await create_submission(employee["headers"])
    other = await create_submission(employee["headers"], customerName="Globex")
    assert other["submission_data"]["customerName"] == "Globex"


async def test_signature_cannot_be_smuggled_in(employee, create_submission):
    submission = await create_submission(employee["headers"], signature="data:image/png;base64,AAAA")
    assert "signature" not in submission["submission_data"]
    assert submission["is_signed"] is False


async def test_list_newest_first(async_client, employee, create_submission):
    first = await create_submission(employee["headers"], serialNumber="S-1")
    second = await create_submission(employee["headers"], serialNumber="S-2")
    response = await async_client.get(f"/api/submission/form/{FORM_SLUG}", headers=employee["headers"])
    assert response.status_code == 200
    assert [s["id"] for s in response.json()] == [second["id"], first["id"]]


async def test_get_missing_submission(async_client, employee):
    response = await async_client.get("/api/submission/9999", headers=employee["headers"])
    assert response.status_code == 404
    assert response.json() == {"error": "Submission not found"}


async def test_update_submission(async_client, employee, create_submission):
    submission = await create_submission(employee["headers"])
    data = dict(submission["submission_data"], totalDiscount="1500")
    response = await async_client.put(
        f"/api/submission/{submission['id']}", json={"submission_data": data}, headers=employee["headers"]
    )
    assert response.status_code == 200
    assert response.json()["submission_data"]["totalDiscount"] == "1500"


async def test_update_cannot_collide_with_another_submission(async_client, employee, create_submission):
    await create_submission(employee["headers"], serialNumber="S-1")
    second = await create_submission(employee["headers"], serialNumber="S-2")
    data = dict(second["submission_data"], serialNumber="S-1")
    response = await async_client.put(
        f"/api/submission/{second['id']}", json={"submission_data": data}, headers=employee["headers"]
    )
    assert response.status_code == 409


async def test_other_employee_cannot_update(async_client, employee, make_user, login, create_submission):
    submission = await create_submission(employee["headers"])
    await make_user("carol")
    headers = await login("carol")
    response = await async_client.put(
        f"/api/submission/{submission['id']}",
        json={"submission_data": submission["submission_data"]},
        headers=headers,
    )
    assert response.status_code == 403


async def test_delete_requires_privileged_role(async_client, employee, admin, create_submission):
    submission = await create_submission(employee["headers"])
    response = await async_client.delete(f"/api/submission/{submission['id']}", headers=employee["headers"])
    assert response.status_code == 403

    response = await async_client.delete(f"/api/submission/{submission['id']}", headers=admin["headers"])
    assert response.status_code == 200
    response = await async_client.get(f"/api/submission/{submission['id']}", headers=admin["headers"])
    assert response.status_code == 404


async def test_delete_removes_workflow_steps(async_client, db, employee, ceo, create_submission):
    submission = await create_submission(
        employee["headers"],
        approvers=[{"user_id": employee["id"], "sequence_order": 1, "approver_role": "department_review"}],
    )
    response = await async_client.delete(f"/api/submission/{submission['id']}", headers=ceo["headers"])
    assert response.status_code == 200
    response = await async_client.get(f"/api/workflow/{submission['id']}", headers=ceo["headers"])
    assert response.status_code == 404


async def test_my_submissions(async_client, employee, make_user, login, create_submission):
    first = await create_submission(employee["headers"], serialNumber="S-1")
    second = await create_submission(employee["headers"], serialNumber="S-2")
    await make_user("carol")
    carol = await login("carol")
    await create_submission(carol, serialNumber="S-3")

    response = await async_client.get("/api/submission/mine", headers=employee["headers"])
    assert response.status_code == 200
    mine = response.json()
    assert [s["id"] for s in mine] == [second["id"], first["id"]]
    assert all(s["submitted_by"]["full_name"] == "Bob" for s in mine)


async def test_my_submissions_empty(async_client, employee):
    response = await async_client.get("/api/submission/mine", headers=employee["headers"])
    assert response.status_code == 200
    assert response.json() == []
