# This project was developed with assistance from AI tools.
"""Admin portal flows: RBAC gate, search, export, status moves, roles, audit."""

import csv
import io
from decimal import Decimal

import pytest
from db import AuditLogEntry, BankAccount, LoanApplication, RateLimitWindow
from db.enums import ApplicationStatus, AuditAction, LoanType
from sqlalchemy import select

from loanflow.services.rate_limit import RATE_LIMITS, RateLimitRule

from .mock_db import make_mock_session
from .personas import ALEX_USER_ID, JORDAN_USER_ID, admin, borrower_alex, customer_service, super_admin

URL = "/api/admin"


async def _seed(session_factory) -> list[int]:
    async with session_factory() as session:
        apps = [
            LoanApplication(
                application_number="HBF-2026-060-00001",
                user_id=ALEX_USER_ID,
                loan_type=LoanType.PURCHASE,
                amount_requested=Decimal("250000"),
                first_name="Alex",
                last_name="Rivera",
                email="alex@rivera-logistics.com",
                business_name="Rivera Logistics LLC",
                status=ApplicationStatus.SUBMITTED,
            ),
            LoanApplication(
                application_number="HBF-2026-060-00002",
                user_id=JORDAN_USER_ID,
                loan_type=LoanType.WORKING_CAPITAL,
                amount_requested=Decimal("80000"),
                first_name="Jordan",
                last_name="Blake",
                email="jordan@blakebakery.com",
                business_name="=Blake Bakery",
                status=ApplicationStatus.UNDER_REVIEW,
            ),
        ]
        session.add_all(apps)
        await session.commit()
        return [a.id for a in apps]


async def _audit_actions(session_factory) -> list[AuditAction]:
    async with session_factory() as session:
        result = await session.execute(select(AuditLogEntry.action).order_by(AuditLogEntry.id))
        return list(result.scalars().all())


@pytest.mark.parametrize("persona", [borrower_alex, customer_service])
@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/applications"),
        ("get", "/applications/stats"),
        ("get", "/bank-accounts"),
        ("get", "/audit"),
        ("get", "/audit/verify"),
    ],
)
def test_non_admins_are_refused(make_client, persona, method, path):
    session = make_mock_session()
    client = make_client(persona(), session)
    resp = client.request(method, f"{URL}{path}")
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Insufficient permissions"
    session.execute.assert_not_awaited()


MUTATION_BODY = {
    "status": "approved",
    "admin_id": "reviewer-7",
    "role": "underwriter",
}


@pytest.mark.parametrize("persona", [borrower_alex, customer_service])
@pytest.mark.parametrize(
    "method,path,endpoint",
    [
        ("get", "/applications/export", "admin:export"),
        ("patch", "/applications/{id}/status", "admin:update-status"),
        ("post", "/applications/batch-status", "admin:batch-update-status"),
        ("put", "/applications/{id}/assignment", "admin:assign"),
        ("post", f"/users/{JORDAN_USER_ID}/roles", "admin:manage-roles"),
    ],
)
async def test_mutations_count_against_limit_before_role_check(
    client_factory, session_factory, persona, method, path, endpoint,
):
    ids = await _seed(session_factory)
    client = client_factory(persona())
    body = {**MUTATION_BODY, "applicationIds": [ids[0]]}

    resp = await client.request(method, f"{URL}{path.format(id=ids[0])}", json=body)

    assert resp.status_code == 403
    async with session_factory() as session:
        (window,) = (await session.execute(select(RateLimitWindow))).scalars().all()
        application = await session.get(LoanApplication, ids[0])
    assert (window.identifier, window.endpoint, window.request_count) == (
        persona().user_id, endpoint, 1,
    )
    assert application.status == ApplicationStatus.SUBMITTED


async def test_over_limit_non_admin_gets_429_not_403(client_factory, session_factory, monkeypatch):
    monkeypatch.setitem(RATE_LIMITS, "admin:update-status", RateLimitRule(1, 60))
    ids = await _seed(session_factory)
    client = client_factory(borrower_alex())
    path = f"{URL}/applications/{ids[0]}/status"

    first = await client.patch(path, json={"status": "approved"})
    second = await client.patch(path, json={"status": "approved"})

    assert first.status_code == 403
    assert second.status_code == 429
    assert "retry-after" in second.headers


async def test_search_and_detail(client_factory, session_factory):
    ids = await _seed(session_factory)
    client = client_factory(admin())

    body = (await client.get(f"{URL}/applications", params={"search": "rivera"})).json()
    assert body["pagination"]["total"] == 1
    assert body["data"][0]["id"] == ids[0]

    body = (await client.get(f"{URL}/applications", params={"status": "under_review"})).json()
    assert [a["id"] for a in body["data"]] == [ids[1]]

    detail = await client.get(f"{URL}/applications/{ids[0]}")
    assert detail.status_code == 200
    assert detail.json()["business_name"] == "Rivera Logistics LLC"
    assert (await client.get(f"{URL}/applications/999")).status_code == 404

    actions = await _audit_actions(session_factory)
    assert actions.count(AuditAction.VIEW_LOAN_APPLICATIONS) == 2
    assert AuditAction.VIEW_LOAN_APPLICATION_DETAIL in actions


async def test_stats(client_factory, session_factory):
    await _seed(session_factory)
    body = (await client_factory(admin()).get(f"{URL}/applications/stats")).json()

    assert body["total"] == 2
    assert body["by_status"] == {"submitted": 1, "under_review": 1}
    assert body["total_amount"] == 330_000


async def test_export_csv(client_factory, session_factory):
    await _seed(session_factory)
    resp = await client_factory(admin()).get(f"{URL}/applications/export")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.headers["content-disposition"].startswith('attachment; filename="loan_applications_')
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0][0] == "Application Number"
    assert len(rows) == 3
    assert any("'=Blake Bakery" in row for row in rows[1:])
    assert AuditAction.EXPORT_DATA in await _audit_actions(session_factory)


async def test_status_update_and_history(client_factory, session_factory):
    ids = await _seed(session_factory)
    client = client_factory(admin())

    resp = await client.patch(
        f"{URL}/applications/{ids[0]}/status", json={"status": "approved", "notes": "verified"},
    )
    assert resp.status_code == 200
    assert resp.json()["previous_status"] == "submitted"

    history = (await client.get(f"{URL}/applications/{ids[0]}/history")).json()
    assert history["count"] == 1
    assert history["history"][0]["changed_by"] == admin().user_id
    async with session_factory() as session:
        (entry,) = (
            await session.execute(
                select(AuditLogEntry).where(
                    AuditLogEntry.action == AuditAction.VIEW_LOAN_APPLICATION_DETAIL
                )
            )
        ).scalars().all()
    assert entry.resource_id == str(ids[0])
    assert entry.details["view"] == "status_history"

    assert (await client.get(f"{URL}/applications/999/history")).status_code == 404

    resp = await client.patch(f"{URL}/applications/{ids[0]}/status", json={"status": "draft"})
    assert resp.status_code == 409


async def test_batch_status_reports_each_item(client_factory, session_factory):
    ids = await _seed(session_factory)
    resp = await client_factory(admin()).post(
        f"{URL}/applications/batch-status",
        json={"applicationIds": [ids[0], ids[1], 999], "status": "approved"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert (body["total"], body["succeeded"], body["failed"]) == (3, 2, 1)
    assert body["results"][2]["success"] is False


async def test_assignment_lifecycle(client_factory, session_factory):
    ids = await _seed(session_factory)
    client = client_factory(admin())
    path = f"{URL}/applications/{ids[0]}/assignment"

    resp = await client.put(path, json={"admin_id": "reviewer-7", "notes": "first look"})
    assert resp.status_code == 200
    assert resp.json()["admin_id"] == "reviewer-7"
    assert resp.json()["assigned_by"] == admin().user_id

    body = (await client.get(f"{URL}/applications", params={"assigned_to": "reviewer-7"})).json()
    assert body["pagination"]["total"] == 1

    assert (await client.delete(path)).status_code == 204
    resp = await client.delete(path)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No assignment found"


async def test_role_management_is_super_admin_only(client_factory):
    target = f"{URL}/users/{JORDAN_USER_ID}/roles"

    resp = await client_factory(admin()).post(target, json={"role": "underwriter"})
    assert resp.status_code == 403

    client = client_factory(super_admin())
    resp = await client.post(target, json={"role": "underwriter"})
    assert resp.status_code == 200
    assert resp.json()["changed"] is True
    assert resp.json()["roles"] == ["underwriter"]

    assert (await client.get(target)).json() == ["underwriter"]

    resp = await client.delete(f"{target}/underwriter")
    assert resp.json()["changed"] is True
    assert resp.json()["roles"] == []


async def test_bank_accounts_masked_unless_requested(client_factory, session_factory):
    async with session_factory() as session:
        session.add(
            BankAccount(
                user_id=ALEX_USER_ID,
                account_holder_name="Alex Rivera",
                bank_name="First Community",
                account_number="123456789",
                routing_number="021000021",
            )
        )
        await session.commit()
    client = client_factory(admin())

    masked = (await client.get(f"{URL}/bank-accounts")).json()
    assert masked["data"][0]["account_number"] == "****6789"
    assert masked["data"][0]["routing_number"] == "*****0021"

    raw = (await client.get(f"{URL}/bank-accounts", params={"unmasked": "true"})).json()
    assert raw["unmasked"] is True
    assert raw["data"][0]["account_number"] == "123456789"

    actions = await _audit_actions(session_factory)
    assert actions.count(AuditAction.VIEW_BANK_ACCOUNTS) == 2


async def test_audit_search_and_verify(client_factory, session_factory):
    ids = await _seed(session_factory)
    client = client_factory(admin())
    await client.patch(f"{URL}/applications/{ids[0]}/status", json={"status": "approved"})

    body = (
        await client.get(f"{URL}/audit", params={"action": "UPDATE_APPLICATION_STATUS"})
    ).json()
    assert body["pagination"]["total"] == 1
    assert body["data"][0]["resource_id"] == str(ids[0])

    verify = (await client.get(f"{URL}/audit/verify")).json()
    assert verify["status"] == "OK"
    assert verify["entries_checked"] >= 2
