import datetime

import pytest

from formsapi.submissions import aggregate_rows, departments_of, parse_amount

from conftest import PASSWORD, SIGNATURE

pytestmark = pytest.mark.anyio


def row(discount, departments, created="2024-03-10T09:00:00"):
    return {
        "submission_data": {"totalDiscount": discount, "responsibleDepartment": departments},
        "created_at": datetime.datetime.fromisoformat(created),
    }


def test_parse_amount():
    assert parse_amount("1,250.50") == 1250.5
    assert parse_amount(300) == 300.0
    assert parse_amount("n/a") == 0.0
    assert parse_amount(None) == 0.0


def test_departments_of():
    assert departments_of({"responsibleDepartment": "Sales"}) == ["Sales"]
    assert departments_of({"responsibleDepartment": ["Ink", "Ink", " Quality "]}) == ["Ink", "Quality"]
    assert departments_of({}) == []


def test_single_department_totals_sum_to_grand_total():
    rows = [row("100", ["Sales"]), row("250", ["Ink"]), row("50", ["Sales"], "2024-04-01T00:00:00")]
    result = aggregate_rows(rows)
    assert result.grand_total == 400
    assert sum(d.total for d in result.departments) == result.grand_total
    assert result.submission_count == 3
    assert {d.department: (d.total, d.count) for d in result.departments} == {
        "Sales": (150, 2),
        "Ink": (250, 1),
    }
    assert result.time_series == {"2024-03": 350, "2024-04": 50}


def test_multi_department_discount_counts_in_full_for_each():
    result = aggregate_rows([row("900", ["Sales", "Quality"])])
    assert result.grand_total == 900
    assert {d.department: d.total for d in result.departments} == {"Sales": 900, "Quality": 900}


def test_date_range_is_inclusive():
    rows = [
        row("1", ["Sales"], "2024-01-31T23:59:00"),
        row("2", ["Sales"], "2024-02-01T00:00:00"),
        row("4", ["Sales"], "2024-02-29T18:00:00"),
        row("8", ["Sales"], "2024-03-01T00:00:00"),
    ]
    result = aggregate_rows(rows, datetime.date(2024, 2, 1), datetime.date(2024, 2, 29))
    assert result.grand_total == 6
    assert result.submission_count == 2


async def test_rejection_analytics_after_signing(async_client, employee, ceo, create_submission):
    month = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m")
    before = (await async_client.get("/api/analytics/rejections", headers=employee["headers"])).json()
    sales_before = next((d["total"] for d in before["departments"] if d["department"] == "Sales"), 0)

    submission = await create_submission(
        employee["headers"],
        customerName="Acme",
        serialNumber="S-100",
        totalDiscount="1000",
        responsibleDepartment=["Sales"],
    )
    response = await async_client.post(
        f"/api/submission/{submission['id']}/sign",
        json={"signature": SIGNATURE, "username": "hoz", "password": PASSWORD},
        headers=employee["headers"],
    )
    assert response.json()["is_signed"] is True

    after = (await async_client.get("/api/analytics/rejections", headers=employee["headers"])).json()
    sales_after = next(d["total"] for d in after["departments"] if d["department"] == "Sales")
    assert sales_after == sales_before + 1000
    assert after["time_series"][month] >= 1000


async def test_rejection_analytics_date_filter(async_client, employee, create_submission):
    await create_submission(employee["headers"])
    today = datetime.datetime.now(datetime.timezone.utc).date()
    response = await async_client.get(
        "/api/analytics/rejections",
        params={"fromDate": (today - datetime.timedelta(days=400)).isoformat(),
                "toDate": (today - datetime.timedelta(days=200)).isoformat()},
        headers=employee["headers"],
    )
    assert response.status_code == 200
    assert response.json()["submission_count"] == 0


async def test_rejection_analytics_bad_date(async_client, employee):
    response = await async_client.get(
        "/api/analytics/rejections", params={"fromDate": "yesterday"}, headers=employee["headers"]
    )
    assert response.status_code == 400
    assert response.json() == {"error": "fromDate must be an ISO date (YYYY-MM-DD)"}
