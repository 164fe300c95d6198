from decimal import Decimal

from app.scheduling.models import WaveStatus
from tests.conftest import STAFF_HEADERS, make_wave

STUDENT = {"first_name": "Rija", "last_name": "Randria", "phone": "034 12 345 67"}


async def post_enrollment(client, wave_id, **extra):
    return await client.post(
        "/api/v1/enrollments",
        json={"student": STUDENT, "wave_id": wave_id, **extra},
        headers=STAFF_HEADERS,
    )


async def test_enroll_pay_and_void_over_http(client, session, catalog):
    wave = await make_wave(session, catalog)

    response = await post_enrollment(client, wave.id)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    ledger_id = body["data"]["ledger_id"]

    response = await client.post(
        f"/api/v1/billing/ledgers/{ledger_id}/payments",
        json={"amount": "20000", "fee_category": "registration"},
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 201
    assert response.json()["data"]["recorded_by_id"] == 1

    response = await client.post(
        f"/api/v1/billing/ledgers/{ledger_id}/payments",
        json={"amount": "160000", "fee_category": "tuition", "method": "bank_transfer"},
        headers=STAFF_HEADERS,
    )
    tuition_id = response.json()["data"]["id"]

    ledger = (await client.get(f"/api/v1/billing/ledgers/{ledger_id}")).json()["data"]
    assert ledger["status"] == "paid"
    assert Decimal(ledger["amount_remaining"]) == 0
    assert len(ledger["payments"]) == 2

    response = await client.delete(
        f"/api/v1/billing/payments/{tuition_id}", headers=STAFF_HEADERS
    )
    assert response.status_code == 200

    ledger = (await client.get(f"/api/v1/billing/ledgers/{ledger_id}")).json()["data"]
    assert ledger["status"] == "partial"
    assert Decimal(ledger["amount_paid"]) == Decimal("20000")
    assert Decimal(ledger["amount_remaining"]) == Decimal("160000")
    assert ledger["registration_fee_paid"] is True


async def test_error_envelopes(client, session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    wave_id = wave.id

    response = await client.get("/api/v1/enrollments/999")
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "NOT_FOUND"
    assert body["path"] == "/api/v1/enrollments/999"

    await post_enrollment(client, wave_id)

    response = await client.post(
        "/api/v1/enrollments",
        json={"student": {**STUDENT, "phone": "0331234567"}, "wave_id": wave_id},
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "CAPACITY_EXCEEDED"

    response = await client.post(
        "/api/v1/billing/ledgers/1/payments",
        json={"amount": "500000", "fee_category": "tuition"},
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"
    assert response.json()["message"] == "payment cannot exceed remaining balance"

    response = await client.delete("/api/v1/billing/payments/999", headers=STAFF_HEADERS)
    assert response.status_code == 404


async def test_duplicate_enrollment_is_409(client, session, catalog):
    wave = await make_wave(session, catalog)

    await post_enrollment(client, wave.id)
    response = await post_enrollment(client, wave.id)

    assert response.status_code == 409
    assert response.json()["message"] == "already enrolled in this wave"


async def test_closed_wave_is_400(client, session, catalog):
    wave = await make_wave(session, catalog, status=WaveStatus.completed)

    response = await post_enrollment(client, wave.id)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_STATE"


async def test_mutations_require_staff_role(client, session, catalog):
    wave = await make_wave(session, catalog)

    response = await client.post(
        "/api/v1/enrollments", json={"student": STUDENT, "wave_id": wave.id}
    )
    assert response.status_code == 403

    response = await client.post(
        "/api/v1/enrollments",
        json={"student": STUDENT, "wave_id": wave.id},
        headers={"X-User-Id": "2", "X-User-Role": "teacher"},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "AUTHORIZATION_ERROR"


async def test_invalid_phone_is_422(client, session, catalog):
    wave = await make_wave(session, catalog)

    response = await client.post(
        "/api/v1/enrollments",
        json={"student": {**STUDENT, "phone": "0211234567"}, "wave_id": wave.id},
        headers=STAFF_HEADERS,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_public_enrollment_and_review(client, session, catalog):
    wave = await make_wave(session, catalog)

    waves = (await client.get("/api/v1/public/waves")).json()["data"]
    assert [w["id"] for w in waves] == [wave.id]

    response = await client.post(
        "/api/v1/public/enrollments",
        json={**STUDENT, "wave_id": wave.id},
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending_review"
    assert Decimal(data["total_due"]) == Decimal("180000")
    enrollment_id = data["enrollment_id"]

    lookup = (await client.get("/api/v1/public/enrollments/0341234567")).json()["data"]
    assert lookup[0]["status"] == "pending_review"

    pending = (await client.get("/api/v1/enrollments/pending")).json()
    assert pending["total"] == 1
    assert pending["page"] == 1

    response = await client.put(
        f"/api/v1/enrollments/{enrollment_id}/review",
        json={"approve": True},
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "active"
    assert response.json()["data"]["reviewed_by_id"] == 1


async def test_status_change_and_withdraw(client, session, catalog):
    wave = await make_wave(session, catalog)
    created = (await post_enrollment(client, wave.id)).json()["data"]

    response = await client.patch(
        f"/api/v1/enrollments/{created['enrollment_id']}/status",
        json={"status": "abandoned"},
        headers=STAFF_HEADERS,
    )
    assert response.json()["data"]["status"] == "abandoned"

    response = await client.delete(
        f"/api/v1/waves/{wave.id}/students/{created['student_id']}",
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 200

    response = await client.get(f"/api/v1/enrollments/{created['enrollment_id']}")
    assert response.status_code == 404


async def test_ledger_listing_and_stats(client, session, catalog):
    wave = await make_wave(session, catalog)
    await post_enrollment(client, wave.id, initial_payment={"amount": "20000"})
    await client.post(
        "/api/v1/enrollments",
        json={
            "student": {**STUDENT, "phone": "0321234567"},
            "wave_id": wave.id,
        },
        headers=STAFF_HEADERS,
    )

    partial = (await client.get("/api/v1/billing/ledgers", params={"status": "partial"})).json()
    assert partial["total"] == 1
    assert partial["data"][0]["phone"] == "0341234567"

    unpaid = (await client.get("/api/v1/billing/ledgers", params={"status": "unpaid"})).json()
    assert unpaid["total"] == 1

    stats = (await client.get("/api/v1/billing/stats")).json()["data"]
    assert stats["ledger_count"] == 2
    assert Decimal(stats["total_due"]) == Decimal("360000")
    assert Decimal(stats["total_paid"]) == Decimal("20000")
    assert stats["by_status"] == {"unpaid": 1, "partial": 1, "paid": 0}
    assert Decimal(stats["by_method"]["cash"]) == Decimal("20000")


async def test_level_and_wave_endpoints(client, session, catalog):
    response = await client.post(
        "/api/v1/levels",
        json={
            "code": "l3",
            "name": "Niveau 3",
            "registration_fee": "25000",
            "tuition_fee": "180000",
            "book_fee": "12000",
            "required_book_count": 2,
        },
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 201
    level_id = response.json()["data"]["id"]

    fees = (await client.get(f"/api/v1/levels/{level_id}/fee-schedule")).json()["data"]
    assert Decimal(fees["total_due"]) == Decimal("229000")

    response = await client.post(
        "/api/v1/waves",
        json={
            "name": "Vague L3",
            "level_id": level_id,
            "room_id": catalog.room.id,
            "start_date": "2026-11-02",
            "schedules": [{"day_id": catalog.monday.id, "time_slot_id": catalog.morning.id}],
        },
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 201
    wave = response.json()["data"]
    assert wave["capacity"]["remaining_seats"] == catalog.room.capacity

    response = await client.get(
        "/api/v1/waves/availability",
        params={
            "resource_kind": "room",
            "resource_id": catalog.room.id,
            "day_id": catalog.monday.id,
            "time_slot_id": catalog.morning.id,
        },
    )
    assert response.json()["data"]["available"] is False

    response = await client.delete(f"/api/v1/levels/{level_id}", headers=STAFF_HEADERS)
    assert response.status_code == 409

    response = await client.put(
        f"/api/v1/waves/{wave['id']}",
        json={"status": "cancelled"},
        headers=STAFF_HEADERS,
    )
    assert response.json()["data"]["status"] == "cancelled"

    response = await client.delete(f"/api/v1/waves/{wave['id']}", headers=STAFF_HEADERS)
    assert response.status_code == 200

    response = await client.delete(f"/api/v1/levels/{level_id}", headers=STAFF_HEADERS)
    assert response.status_code == 200
