from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    CapacityExceededError,
    ConflictError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.billing.models.ledgers import BillingLedger, LedgerStatus
from app.billing.models.payments import FeeCategory, Payment, PaymentMethod
from app.billing.crud.ledger import apply_payment, get_ledger_by_id
from app.billing.schemas.payments import PaymentCreate
from app.enrollment.crud.enrollments import (
    change_enrollment_status,
    enroll,
    enroll_public,
    get_enrollment_details,
    get_pending_enrollments,
    lookup_enrollments_by_phone,
    review_enrollment,
    withdraw,
)
from app.enrollment.models.enrollments import Enrollment, EnrollmentStatus
from app.enrollment.models.students import Student
from app.enrollment.schemas.enrollments import InitialPayment, PublicEnrollmentCreate
from app.scheduling.models.waves import WaveStatus

from tests.conftest import make_wave, student_info


async def count(session, model):
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar()


async def test_enroll_creates_student_enrollment_and_unpaid_ledger(session, catalog):
    wave = await make_wave(session, catalog)

    result = await enroll(session, student_info(), wave.id)

    ledger = await get_ledger_by_id(session, result.ledger_id)
    assert ledger.enrollment_id == result.enrollment_id
    assert ledger.total_due == Decimal("180000")
    assert ledger.amount_remaining == Decimal("180000")
    assert ledger.status == LedgerStatus.unpaid

    student = await session.get(Student, result.student_id)
    assert student.phone == "0341234567"
    assert student.is_active is True


async def test_existing_student_is_reused_by_phone(session, catalog):
    first_wave = await make_wave(session, catalog, name="Vague A")
    second_wave = await make_wave(
        session, catalog, name="Vague B", slots=[(catalog.tuesday, catalog.afternoon)]
    )

    first = await enroll(session, student_info(phone="+261 34 12 345 67"), first_wave.id)
    second = await enroll(session, student_info(phone="0341234567"), second_wave.id)

    assert first.student_id == second.student_id
    assert await count(session, Student) == 1


async def test_duplicate_enrollment_is_rejected(session, catalog):
    wave = await make_wave(session, catalog)
    await enroll(session, student_info(), wave.id)

    with pytest.raises(ConflictError) as exc_info:
        await enroll(session, student_info(), wave.id)

    assert exc_info.value.message == "already enrolled in this wave"
    assert await count(session, Enrollment) == 1
    assert await count(session, BillingLedger) == 1


async def test_unknown_wave(session, catalog):
    with pytest.raises(NotFoundError):
        await enroll(session, student_info(), 4242)


@pytest.mark.parametrize("status", [WaveStatus.completed, WaveStatus.cancelled])
async def test_closed_wave_rejects_enrollment(session, catalog, status):
    wave = await make_wave(session, catalog, status=status)

    with pytest.raises(InvalidStateError) as exc_info:
        await enroll(session, student_info(), wave.id)

    assert exc_info.value.message == "wave not open for enrollment"
    assert await count(session, Student) == 0


async def test_in_progress_wave_accepts_enrollment(session, catalog):
    wave = await make_wave(session, catalog, status=WaveStatus.in_progress)
    result = await enroll(session, student_info(), wave.id)
    assert result.enrollment_id


async def test_last_seat_goes_to_first_request(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    wave_id = wave.id

    await enroll(session, student_info(phone="0341111111"), wave.id)
    with pytest.raises(CapacityExceededError) as exc_info:
        await enroll(session, student_info(phone="0342222222"), wave.id)

    assert exc_info.value.details == {
        "wave_id": wave_id,
        "capacity_max": 1,
        "enrolled_count": 1,
    }
    assert await count(session, Enrollment) == 1


async def test_unlimited_wave_without_capacity(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=None)
    for i in range(5):
        await enroll(session, student_info(phone=f"03400000{i:02d}"), wave.id)
    assert await count(session, Enrollment) == 5


async def test_initial_payment_splits_registration_and_tuition(session, catalog):
    wave = await make_wave(session, catalog)

    result = await enroll(
        session,
        student_info(),
        wave.id,
        initial_payment=InitialPayment(amount=Decimal("50000")),
        recorded_by_id=catalog.admin.id,
    )

    details = await get_enrollment_details(session, result.enrollment_id)
    categories = [(p.fee_category, p.amount) for p in details.payments]
    assert categories == [
        (FeeCategory.registration, Decimal("20000")),
        (FeeCategory.tuition, Decimal("30000")),
    ]
    assert details.ledger.amount_paid == Decimal("50000")
    assert details.ledger.amount_remaining == Decimal("130000")
    assert details.ledger.registration_fee_paid is True
    assert details.ledger.status == LedgerStatus.partial
    assert all(p.recorded_by_id == catalog.admin.id for p in details.payments)


async def test_small_initial_payment_is_all_registration(session, catalog):
    wave = await make_wave(session, catalog)
    result = await enroll(
        session, student_info(), wave.id, initial_payment=InitialPayment(amount=Decimal("5000"))
    )

    details = await get_enrollment_details(session, result.enrollment_id)
    assert [(p.fee_category, p.amount) for p in details.payments] == [
        (FeeCategory.registration, Decimal("5000"))
    ]


async def test_failed_initial_payment_rolls_back_enrollment(session, catalog):
    wave = await make_wave(session, catalog)
    wave_id = wave.id

    with pytest.raises(InvalidAmountError):
        await enroll(
            session,
            student_info(),
            wave.id,
            initial_payment=InitialPayment(amount=Decimal("999999")),
        )

    assert await count(session, Enrollment) == 0
    assert await count(session, BillingLedger) == 0
    assert await count(session, Payment) == 0

    result = await enroll(session, student_info(), wave_id)
    assert result.enrollment_id


async def test_mobile_money_initial_payment_needs_reference(session, catalog):
    wave = await make_wave(session, catalog)

    with pytest.raises(ValidationError):
        await enroll(
            session,
            student_info(),
            wave.id,
            initial_payment=InitialPayment(
                amount=Decimal("20000"), method=PaymentMethod.mobile_money
            ),
        )
    assert await count(session, Enrollment) == 0


async def test_withdraw_removes_payments_ledger_and_enrollment(session, catalog):
    wave = await make_wave(session, catalog)
    result = await enroll(session, student_info(), wave.id)
    await apply_payment(
        session,
        result.ledger_id,
        PaymentCreate(amount=Decimal("20000"), fee_category=FeeCategory.registration),
    )

    assert await withdraw(session, wave.id, result.student_id) is True

    assert await count(session, Enrollment) == 0
    assert await count(session, BillingLedger) == 0
    assert await count(session, Payment) == 0
    assert await count(session, Student) == 1


async def test_withdraw_unknown_pair(session, catalog):
    wave = await make_wave(session, catalog)
    with pytest.raises(NotFoundError):
        await withdraw(session, wave.id, 77)


async def test_public_enrollment_waits_for_review(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    request = PublicEnrollmentCreate(
        first_name="Fara",
        last_name="Rabe",
        phone="033 98 765 43",
        wave_id=wave.id,
    )

    result = await enroll_public(session, request)

    assert result.status == EnrollmentStatus.pending_review
    assert result.total_due == Decimal("180000")
    assert result.amount_remaining == Decimal("180000")

    pending, total = await get_pending_enrollments(session)
    assert total == 1
    assert pending[0].phone == "0339876543"


async def test_public_enrollment_rejected_when_wave_full(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    wave_id = wave.id
    await enroll(session, student_info(), wave_id)
    request = PublicEnrollmentCreate(
        first_name="Fara",
        last_name="Rabe",
        phone="033 98 765 43",
        wave_id=wave_id,
    )

    with pytest.raises(CapacityExceededError):
        await enroll_public(session, request)

    assert await count(session, Enrollment) == 1
    assert await count(session, Student) == 1


async def test_review_approve_takes_a_seat(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    pending = await enroll(
        session, student_info(), wave.id, status=EnrollmentStatus.pending_review
    )

    enrollment = await review_enrollment(
        session, pending.enrollment_id, approve=True, reviewer_id=catalog.admin.id
    )

    assert enrollment.status == EnrollmentStatus.active
    assert enrollment.reviewed_by_id == catalog.admin.id
    assert enrollment.reviewed_at is not None

    with pytest.raises(InvalidStateError):
        await review_enrollment(session, pending.enrollment_id, approve=False)


async def test_review_approve_rechecks_capacity(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    pending = await enroll(
        session, student_info(), wave.id, status=EnrollmentStatus.pending_review
    )
    await enroll(session, student_info(phone="0321234567"), wave.id)

    with pytest.raises(CapacityExceededError):
        await review_enrollment(session, pending.enrollment_id, approve=True)

    rejected = await review_enrollment(session, pending.enrollment_id, approve=False)
    assert rejected.status == EnrollmentStatus.rejected


async def test_status_transitions(session, catalog):
    wave = await make_wave(session, catalog, capacity_max=1)
    first = await enroll(session, student_info(), wave.id)

    abandoned = await change_enrollment_status(
        session, first.enrollment_id, EnrollmentStatus.abandoned
    )
    assert abandoned.status == EnrollmentStatus.abandoned

    # the freed seat can be taken by someone else
    await enroll(session, student_info(phone="0321234567"), wave.id)

    with pytest.raises(CapacityExceededError):
        await change_enrollment_status(
            session, first.enrollment_id, EnrollmentStatus.active
        )

    with pytest.raises(InvalidStateError):
        await change_enrollment_status(
            session, first.enrollment_id, EnrollmentStatus.rejected
        )


async def test_lookup_by_phone(session, catalog):
    wave = await make_wave(session, catalog)
    await enroll(session, student_info(), wave.id)

    summaries = await lookup_enrollments_by_phone(session, "+261341234567")

    assert len(summaries) == 1
    assert summaries[0].wave_name == wave.name
    assert summaries[0].payment_status == "unpaid"

    with pytest.raises(NotFoundError):
        await lookup_enrollments_by_phone(session, "0389999999")

    with pytest.raises(ValidationError):
        await lookup_enrollments_by_phone(session, "12345")


async def test_inactive_level_cannot_be_enrolled(session, catalog):
    wave = await make_wave(session, catalog)
    catalog.level.active = False
    await session.commit()

    with pytest.raises(NotFoundError):
        await enroll(session, student_info(), wave.id)
    assert await count(session, Enrollment) == 0
