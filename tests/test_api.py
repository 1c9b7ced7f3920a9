from decimal import Decimal
from typing import List, Optional

import pytest
from httpx import AsyncClient

from app.api.v1.imports.service import BOM
from app.core.container import ServiceContainer
from app.core.enums import AccountRole
from app.core.schemas import School, Student
from tests.conftest import (
    ADMIN_EMAIL,
    USERS,
    FakeDocumentStore,
    FakeIdentityService,
    api_client,
    sign_in,
)


# --- Schools & students ---


@pytest.mark.asyncio
async def test_school_crud(client: AsyncClient) -> None:
    created = await client.post("/api/v1/schools", json={"name": "مدرسة الأمل", "email": "info@alamal.om"})
    assert created.status_code == 201
    school_id = created.json()["id"]

    updated = await client.put(f"/api/v1/schools/{school_id}", json={"phone": "+968 24111111"})
    assert updated.status_code == 200
    assert updated.json()["name"] == "مدرسة الأمل"
    assert updated.json()["phone"] == "+968 24111111"

    listed = await client.get("/api/v1/schools")
    assert [s["id"] for s in listed.json()] == [school_id]

    assert (await client.delete(f"/api/v1/schools/{school_id}")).status_code == 204
    assert (await client.get(f"/api/v1/schools/{school_id}")).status_code == 404
    assert (await client.delete(f"/api/v1/schools/{school_id}")).status_code == 404


@pytest.mark.asyncio
async def test_create_school_requires_name(client: AsyncClient) -> None:
    response = await client.post("/api/v1/schools", json={"name": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_student_crud_and_grade_filter(client: AsyncClient, school: School) -> None:
    payload = {"name": "Sara", "grade": "الصف الثاني", "school_id": school.id, "phone": "+968 95000000"}
    created = await client.post("/api/v1/students", json=payload)
    assert created.status_code == 201
    student = created.json()
    assert student["student_number"]

    other = {"name": "Omar", "grade": "الصف الأول", "school_id": school.id}
    await client.post("/api/v1/students", json=other)

    filtered = await client.get("/api/v1/students", params={"school_id": school.id, "grade": ["الصف الثاني"]})
    assert [s["name"] for s in filtered.json()] == ["Sara"]

    both = await client.get(
        "/api/v1/students", params={"school_id": school.id, "grade": ["الصف الثاني", "الصف الأول"]}
    )
    assert len(both.json()) == 2

    renamed = await client.put(f"/api/v1/students/{student['id']}", json={"name": "Sara A."})
    assert renamed.json()["name"] == "Sara A."
    assert renamed.json()["student_number"] == student["student_number"]

    assert (await client.delete(f"/api/v1/students/{student['id']}")).status_code == 204
    assert (await client.get(f"/api/v1/students/{student['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_duplicate_student_number_conflicts(client: AsyncClient, student: Student) -> None:
    payload = {"name": "Copy", "student_number": student.student_number, "grade": "الصف الأول", "school_id": student.school_id}
    response = await client.post("/api/v1/students", json=payload)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_update_missing_student_is_404(client: AsyncClient) -> None:
    response = await client.put("/api/v1/students/missing", json={"name": "Nobody"})
    assert response.status_code == 404


# --- Fees & installments ---


@pytest.mark.asyncio
async def test_fee_lifecycle(client: AsyncClient, student: Student) -> None:
    created = await client.post(
        "/api/v1/fees",
        json={
            "student_id": student.id,
            "fee_type": "tuition",
            "amount": "1000",
            "discount": "100",
            "due_date": "2024-09-01",
        },
    )
    assert created.status_code == 201
    fee = created.json()
    assert fee["student_name"] == "Ali"
    assert fee["school_id"] == student.school_id
    assert Decimal(fee["balance"]) == Decimal("900")
    assert fee["status"] == "unpaid"

    paid = await client.post(f"/api/v1/fees/{fee['id']}/payments", json={"amount": "400"})
    assert paid.status_code == 200
    assert Decimal(paid.json()["paid"]) == Decimal("400")
    assert paid.json()["status"] == "partial"

    settled = await client.post(f"/api/v1/fees/{fee['id']}/payments", json={"amount": "500"})
    assert Decimal(settled.json()["balance"]) == Decimal("0")
    assert settled.json()["status"] == "paid"

    summary = await client.get("/api/v1/fees/summary", params={"school_id": student.school_id})
    assert summary.status_code == 200
    assert Decimal(summary.json()["total_paid"]) == Decimal("900")
    assert summary.json()["paid_count"] == 1

    assert (await client.delete(f"/api/v1/fees/{fee['id']}")).status_code == 204
    assert (await client.get(f"/api/v1/fees/{fee['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_fee_requires_existing_student(client: AsyncClient, school: School) -> None:
    response = await client.post(
        "/api/v1/fees",
        json={"student_id": "missing", "fee_type": "books", "amount": "50", "due_date": "2024-09-01", "school_id": school.id},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_payment_must_be_positive(client: AsyncClient, student: Student) -> None:
    fee = (
        await client.post(
            "/api/v1/fees",
            json={"student_id": student.id, "fee_type": "books", "amount": "50", "due_date": "2024-09-01"},
        )
    ).json()
    response = await client.post(f"/api/v1/fees/{fee['id']}/payments", json={"amount": "0"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_installment_plan_uses_school_default(client: AsyncClient, student: Student) -> None:
    fee = (
        await client.post(
            "/api/v1/fees",
            json={"student_id": student.id, "fee_type": "tuition", "amount": "1000", "due_date": "2024-01-31"},
        )
    ).json()

    response = await client.post(f"/api/v1/fees/{fee['id']}/installments", json={})

    assert response.status_code == 201
    installments = response.json()
    assert len(installments) == 4
    assert sum(Decimal(i["amount"]) for i in installments) == Decimal("1000")
    assert [i["due_date"] for i in installments] == ["2024-01-31", "2024-02-29", "2024-03-31", "2024-04-30"]
    assert all(i["status"] == "overdue" for i in installments)

    first = installments[0]["id"]
    paid = await client.post(f"/api/v1/installments/{first}/pay", json={"paid_date": "2024-01-20"})
    assert paid.json()["status"] == "paid"

    listed = await client.get("/api/v1/installments", params={"fee_id": fee["id"]})
    assert len(listed.json()) == 4


@pytest.mark.asyncio
async def test_installment_plan_for_missing_fee(client: AsyncClient) -> None:
    response = await client.post("/api/v1/fees/missing/installments", json={"count": 2})
    assert response.status_code == 404


# --- Settings ---


@pytest.mark.asyncio
async def test_settings_defaults_and_update(client: AsyncClient, school: School) -> None:
    defaults = await client.get(f"/api/v1/settings/{school.id}")
    assert defaults.status_code == 200
    assert defaults.json()["default_installments"] == 4

    body = {**defaults.json(), "default_installments": 6, "transportation_fee_two_way": "350"}
    updated = await client.put(f"/api/v1/settings/{school.id}", json=body)
    assert updated.json()["default_installments"] == 6

    again = await client.get(f"/api/v1/settings/{school.id}")
    assert Decimal(again.json()["transportation_fee_two_way"]) == Decimal("350")


# --- Import / export ---


@pytest.mark.asyncio
async def test_import_students_csv(client: AsyncClient, school: School) -> None:
    content = BOM + "اسم الطالب,رقم الطالب,الصف,النقل\nأحمد,S2001,الصف الأول,اتجاهين\nمريم,S2002,الصف الثاني,لا يوجد\n"

    preview = await client.post("/api/v1/imports/preview", json={"school_id": school.id, "content": content})
    assert preview.status_code == 200
    assert len(preview.json()["students"]) == 2
    assert (await client.get("/api/v1/students", params={"school_id": school.id})).json() == []

    imported = await client.post("/api/v1/imports", json={"school_id": school.id, "content": content})
    assert imported.status_code == 200
    assert imported.json() == {"students_count": 2, "fees_count": 1, "students_processed": 2, "fees_processed": 1}

    (fee,) = (await client.get("/api/v1/fees", params={"school_id": school.id})).json()
    assert fee["fee_type"] == "transportation"
    assert Decimal(fee["balance"]) == Decimal("300")


@pytest.mark.asyncio
async def test_import_rejects_empty_csv(client: AsyncClient, school: School) -> None:
    response = await client.post("/api/v1/imports", json={"school_id": school.id, "content": ""})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_csv_templates_and_export(client: AsyncClient, student: Student) -> None:
    template = await client.get("/api/v1/imports/templates/students")
    assert template.status_code == 200
    assert template.headers["content-type"].startswith("text/csv")
    assert "attachment" in template.headers["content-disposition"]
    assert template.text.startswith(BOM + "اسم الطالب")

    fees = await client.get("/api/v1/imports/templates/fees")
    assert "S1001" in fees.text

    export = await client.get("/api/v1/imports/export/students", params={"school_id": student.school_id})
    assert export.status_code == 200
    assert "Ali,S1001" in export.text


# --- Accounts ---


@pytest.mark.asyncio
async def test_account_endpoints_hide_password(
    client: AsyncClient, remote: FakeDocumentStore, school: School
) -> None:
    created = await client.post(
        "/api/v1/accounts",
        json={"email": "head@alnoor.om", "password": "secret123", "name": "Head", "school_id": school.id},
    )
    assert created.status_code == 201
    account = created.json()
    assert "password_hash" not in account
    assert account["school_name"] == school.name
    assert account["id"] in remote.collections[USERS]

    duplicate = await client.post(
        "/api/v1/accounts", json={"email": "head@alnoor.om", "password": "secret123", "name": "Again"}
    )
    assert duplicate.status_code == 409

    listed = await client.get("/api/v1/accounts")
    assert all("password_hash" not in a for a in listed.json())

    assert (await client.delete(f"/api/v1/accounts/{account['id']}")).status_code == 204
    assert (await client.get(f"/api/v1/accounts/{account['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_account_for_missing_school_is_404(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/accounts",
        json={"email": "x@school.om", "password": "secret123", "name": "X", "school_id": "missing"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_sync_status_and_fix(client: AsyncClient, remote: FakeDocumentStore) -> None:
    await remote.create(
        USERS,
        "r1",
        {"name": "Remote", "email": "remote@school.om", "username": "remote", "role": "gradeManager"},
    )

    status = await client.get("/api/v1/accounts/sync/status")
    assert status.status_code == 200
    assert status.json()["is_synced"] is False
    assert [a["id"] for a in status.json()["remote_only"]] == ["r1"]

    fixed = await client.post("/api/v1/accounts/sync/fix")
    assert fixed.json()["fixed_remote_accounts"] == ["r1"]
    assert fixed.json()["is_synced"] is True

    synced = await client.post("/api/v1/accounts/sync")
    assert synced.json() == {"synced": True}


# --- Auth ---

@pytest.mark.asyncio
async def test_login_and_me(anon_client: AsyncClient, identity: FakeIdentityService) -> None:
    assert (await anon_client.get("/api/v1/auth/me")).status_code == 401

    identity.register("u1", "head@alnoor.om", "pw-123", "Head")
    login = await anon_client.post("/api/v1/auth/login", json={"identifier": "head@alnoor.om", "password": "pw-123"})
    assert login.status_code == 200
    body = login.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["id"] == "u1"
    assert "password_hash" not in body["user"]

    headers = {"Authorization": f"Bearer {body['access_token']}"}
    me = await anon_client.get("/api/v1/auth/me", headers=headers)
    assert me.json()["email"] == "head@alnoor.om"

    assert (await anon_client.post("/api/v1/auth/logout", headers=headers)).status_code == 204
    assert (await anon_client.get("/api/v1/auth/me", headers=headers)).status_code == 401


@pytest.mark.asyncio
async def test_login_with_bad_credentials(anon_client: AsyncClient) -> None:
    response = await anon_client.post("/api/v1/auth/login", json={"identifier": "nobody@school.om", "password": "x"})
    assert response.status_code == 401


# --- Messages & reset ---


@pytest.mark.asyncio
async def test_send_messages_endpoint(client: AsyncClient, student: Student) -> None:
    response = await client.post(
        "/api/v1/messages/send",
        json={"school_id": student.school_id, "student_ids": [student.id], "template": "payment_reminder", "amount": "100"},
    )
    assert response.status_code == 201
    (message,) = response.json()
    assert message["status"] == "delivered"

    history = await client.get("/api/v1/messages", params={"student_id": student.id})
    assert [m["id"] for m in history.json()] == [message["id"]]


@pytest.mark.asyncio
async def test_reset_requires_confirmation(client: AsyncClient, school: School, remote: FakeDocumentStore) -> None:
    await remote.create(USERS, "r1", {"name": "Remote", "email": "remote@school.om"})

    refused = await client.post("/api/v1/system/reset", json={})
    assert refused.status_code == 400
    assert len((await client.get("/api/v1/schools")).json()) == 1

    done = await client.post("/api/v1/system/reset", json={"confirm": True})
    assert done.status_code == 200
    assert done.json()["success"] is True
    assert (await client.get("/api/v1/schools")).json() == []
    assert [d["email"] for d in remote.collections[USERS].values()] == [ADMIN_EMAIL]


# --- Access control ---


async def _staff_member(
    container: ServiceContainer,
    identity: FakeIdentityService,
    email: str,
    role: AccountRole,
    school_id: str,
    grade_levels: Optional[List[str]] = None,
) -> None:
    account = await container.accounts.create_account(
        email=email, password="secret123", name=email, role=role, school_id=school_id, grade_levels=grade_levels
    )
    identity.register(account.id, email, "pw-123")


@pytest.mark.asyncio
async def test_routes_require_a_session(anon_client: AsyncClient, school: School) -> None:
    for method, url, body in (
        ("GET", "/api/v1/students", None),
        ("GET", "/api/v1/schools", None),
        ("GET", "/api/v1/accounts", None),
        ("GET", f"/api/v1/settings/{school.id}", None),
        ("POST", "/api/v1/system/reset", {"confirm": True}),
    ):
        response = await anon_client.request(method, url, json=body)
        assert response.status_code == 401, url
        assert response.headers["www-authenticate"] == "Bearer"

    bogus = await anon_client.get("/api/v1/students", headers={"Authorization": "Bearer not-a-session"})
    assert bogus.status_code == 401


@pytest.mark.asyncio
async def test_session_belongs_to_its_caller(
    container: ServiceContainer, client: AsyncClient, school: School
) -> None:
    assert (await client.get("/api/v1/auth/me")).json()["email"] == ADMIN_EMAIL

    async with api_client(container) as other:
        assert (await other.get("/api/v1/auth/me")).status_code == 401
        assert (await other.post("/api/v1/system/reset", json={"confirm": True})).status_code == 401

    assert [s["id"] for s in (await client.get("/api/v1/schools")).json()] == [school.id]


@pytest.mark.asyncio
async def test_school_admin_cannot_reset_or_manage_accounts(
    container: ServiceContainer, identity: FakeIdentityService, school: School
) -> None:
    await _staff_member(container, identity, "head@alnoor.om", AccountRole.SCHOOL_ADMIN, school.id)
    other_school = await container.store.save_school({"name": "مدرسة الأمل"})

    async with api_client(container) as ac:
        user = await sign_in(ac, "head@alnoor.om", "pw-123")
        assert user["role"] == "schoolAdmin"

        assert (await ac.post("/api/v1/system/reset", json={"confirm": True})).status_code == 403
        assert (await ac.get("/api/v1/accounts")).status_code == 403
        assert (await ac.post("/api/v1/schools", json={"name": "New"})).status_code == 403

        schools = await ac.get("/api/v1/schools")
        assert [s["id"] for s in schools.json()] == [school.id]
        assert (await ac.get(f"/api/v1/schools/{other_school.id}")).status_code == 403
        assert (await ac.get(f"/api/v1/settings/{other_school.id}")).status_code == 403

    assert len(await container.store.get_schools()) == 2


@pytest.mark.asyncio
async def test_grade_manager_sees_only_assigned_grades(
    container: ServiceContainer, identity: FakeIdentityService, school: School, student: Student
) -> None:
    second = await container.store.save_student(
        {"name": "Mona", "student_number": "S1002", "grade": "الصف الثاني", "school_id": school.id}
    )
    other_school = await container.store.save_school({"name": "مدرسة الأمل"})
    await _staff_member(
        container, identity, "grade1@alnoor.om", AccountRole.GRADE_MANAGER, school.id, ["الصف الأول"]
    )

    async with api_client(container) as ac:
        await sign_in(ac, "grade1@alnoor.om", "pw-123")

        listed = await ac.get("/api/v1/students", params={"school_id": school.id})
        assert [s["id"] for s in listed.json()] == [student.id]
        assert [s["id"] for s in (await ac.get("/api/v1/students")).json()] == [student.id]

        assert (await ac.get("/api/v1/students", params={"grade": ["الصف الثاني"]})).status_code == 403
        assert (await ac.get(f"/api/v1/students/{second.id}")).status_code == 403
        assert (await ac.get(f"/api/v1/students/{student.id}")).status_code == 200
        assert (await ac.get("/api/v1/students", params={"school_id": other_school.id})).status_code == 403

        moved = await ac.put(f"/api/v1/students/{student.id}", json={"grade": "الصف الثاني"})
        assert moved.status_code == 403
        created = await ac.post(
            "/api/v1/students", json={"name": "Huda", "grade": "الصف الثاني", "school_id": school.id}
        )
        assert created.status_code == 403
