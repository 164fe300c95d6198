"""
Enrollment workflow: enroll, withdraw, review and status changes.

Every mutating operation is one transaction. The wave row is locked before
the capacity check so concurrent enrollments on the same wave serialize.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy import and_, delete, func
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import ConflictError, InvalidStateError, NotFoundError
from app.core.logging_utils import log_business_event
from app.core.validations import clean_phone_number
from app.catalog.crud.levels import resolve_fee_schedule
from app.catalog.models.levels import Level
from app.scheduling.crud.capacity import ensure_capacity
from app.scheduling.crud.waves import get_wave_by_id
from app.scheduling.models.waves import Wave
from app.billing.crud.ledger import (
    get_ledger_by_id,
    record_payment,
    seed_ledger,
    validate_payment,
)
from app.billing.crud.payments import list_ledger_payments
from app.billing.models.ledgers import BillingLedger
from app.billing.models.payments import FeeCategory, Payment
from app.billing.schemas.payments import LedgerRead, PaymentCreate, PaymentRead
from app.enrollment.crud.books import list_book_deliveries, seed_book_deliveries
from app.enrollment.crud.students import find_or_create_student, get_student_by_phone
from app.enrollment.models.books import BookDelivery
from app.enrollment.models.enrollments import Enrollment, EnrollmentStatus
from app.enrollment.models.students import Student
from app.enrollment.schemas.enrollments import (
    BookDeliveryRead,
    EnrollmentDetails,
    EnrollmentResult,
    EnrollmentSummary,
    InitialPayment,
    PublicEnrollmentCreate,
    PublicEnrollmentResult,
    StudentInfo,
    StudentRead,
)

logger = logging.getLogger(__name__)

# Transitions allowed through change_enrollment_status; pending_review and
# rejected are only reachable through the public flow and review_enrollment
STATUS_TRANSITIONS = {
    EnrollmentStatus.active: {EnrollmentStatus.abandoned, EnrollmentStatus.completed},
    EnrollmentStatus.abandoned: {EnrollmentStatus.active},
    EnrollmentStatus.completed: {EnrollmentStatus.active},
}

PUBLIC_CONFIRMATION_MESSAGE = (
    "Your enrollment request has been received. The school will confirm it "
    "by SMS or e-mail after review."
)


async def get_enrollment_by_id(
    session: AsyncSession, enrollment_id: int, for_update: bool = False
) -> Enrollment:
    query = select(Enrollment).where(Enrollment.id == enrollment_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await session.execute(query)
    enrollment = result.scalar_one_or_none()

    if not enrollment:
        raise NotFoundError("Enrollment", str(enrollment_id))

    return enrollment


async def _get_open_wave_locked(session: AsyncSession, wave_id: int) -> Wave:
    wave = await get_wave_by_id(session, wave_id, for_update=True)
    if not wave.is_open:
        raise InvalidStateError(
            "wave not open for enrollment",
            details={"wave_id": wave_id, "status": wave.status.value},
        )
    return wave


async def _ensure_not_enrolled(session: AsyncSession, student_id: int, wave_id: int):
    result = await session.execute(
        select(Enrollment.id).where(
            and_(Enrollment.student_id == student_id, Enrollment.wave_id == wave_id)
        )
    )
    if result.first() is not None:
        raise ConflictError(
            "already enrolled in this wave",
            details={"student_id": student_id, "wave_id": wave_id},
        )


async def _apply_initial_payment(
    session: AsyncSession,
    ledger: BillingLedger,
    registration_fee: Decimal,
    initial_payment: InitialPayment,
    recorded_by_id: Optional[int],
) -> List[Payment]:
    """
    The part of the amount covering the registration fee is journaled as
    ``registration``, any remainder as ``tuition``.
    """
    common = initial_payment.model_dump(exclude={"amount"})
    validate_payment(
        ledger,
        PaymentCreate(
            amount=initial_payment.amount,
            fee_category=FeeCategory.registration,
            **common,
        ),
    )

    registration_part = min(initial_payment.amount, registration_fee)
    tuition_part = initial_payment.amount - registration_part

    payments = []
    if registration_part > 0:
        payments.append(
            await record_payment(
                session,
                ledger,
                PaymentCreate(
                    amount=registration_part,
                    fee_category=FeeCategory.registration,
                    **common,
                ),
                recorded_by_id,
            )
        )
    if tuition_part > 0:
        payments.append(
            await record_payment(
                session,
                ledger,
                PaymentCreate(
                    amount=tuition_part,
                    fee_category=FeeCategory.tuition,
                    **common,
                ),
                recorded_by_id,
            )
        )
    return payments


@db_operation
async def enroll(
    session: AsyncSession,
    student_info: StudentInfo,
    wave_id: int,
    initial_payment: Optional[InitialPayment] = None,
    status: EnrollmentStatus = EnrollmentStatus.active,
    notes: Optional[str] = None,
    recorded_by_id: Optional[int] = None,
) -> EnrollmentResult:
    """
    Enroll a student (found or created by phone) into a wave and seed the
    billing ledger, all or nothing.

    Checks, first failure wins: wave exists and is open, capacity (seats
    are held by active enrollments only), student resolution, no existing
    enrollment for the pair.

    Raises:
        NotFoundError: unknown wave, or its level is missing/inactive
        InvalidStateError: wave is completed or cancelled
        CapacityExceededError: wave is full
        ConflictError: student already enrolled in this wave
        InvalidAmountError: initial payment above the total due
    """

    async def _enroll_operation(session: AsyncSession):
        wave = await _get_open_wave_locked(session, wave_id)
        await ensure_capacity(session, wave)

        student = await find_or_create_student(session, student_info)
        await _ensure_not_enrolled(session, student.id, wave.id)

        enrollment = Enrollment(
            student_id=student.id,
            wave_id=wave.id,
            status=status,
            notes=notes,
        )
        session.add(enrollment)
        try:
            await session.flush()
        except IntegrityError as e:
            raise ConflictError(
                "already enrolled in this wave",
                details={"student_id": student.id, "wave_id": wave.id},
            ) from e

        fees = await resolve_fee_schedule(session, wave.level_id)
        ledger = await seed_ledger(session, enrollment.id, fees.total_due)
        await seed_book_deliveries(session, enrollment.id, fees.required_book_count)

        if initial_payment is not None and initial_payment.amount > 0:
            await _apply_initial_payment(
                session, ledger, fees.registration_fee, initial_payment, recorded_by_id
            )

        return EnrollmentResult(
            enrollment_id=enrollment.id,
            student_id=student.id,
            ledger_id=ledger.id,
        )

    result = await with_db_transaction(session, _enroll_operation)

    log_business_event(
        "enrollment_created",
        "enrollment",
        result.enrollment_id,
        {
            "wave_id": wave_id,
            "student_id": result.student_id,
            "ledger_id": result.ledger_id,
            "status": EnrollmentStatus(status).value,
            "initial_payment": str(initial_payment.amount) if initial_payment else None,
        },
    )
    return result


@db_operation
async def enroll_public(
    session: AsyncSession, request: PublicEnrollmentCreate
) -> PublicEnrollmentResult:
    """Self-enrollment: same workflow, left in pending_review for staff"""
    result = await enroll(
        session,
        request.to_student_info(),
        request.wave_id,
        initial_payment=request.initial_payment,
        status=EnrollmentStatus.pending_review,
    )
    ledger = await get_ledger_by_id(session, result.ledger_id)

    return PublicEnrollmentResult(
        **result.model_dump(),
        status=EnrollmentStatus.pending_review,
        total_due=ledger.total_due,
        amount_paid=ledger.amount_paid,
        amount_remaining=ledger.amount_remaining,
        confirmation_message=PUBLIC_CONFIRMATION_MESSAGE,
    )


@db_operation
async def withdraw(session: AsyncSession, wave_id: int, student_id: int) -> bool:
    """
    Remove a student from a wave: journal entries, ledger, book deliveries
    and enrollment are deleted together.

    Raises:
        NotFoundError: no enrollment for the pair
    """

    async def _withdraw_operation(session: AsyncSession):
        result = await session.execute(
            select(Enrollment)
            .where(
                and_(Enrollment.wave_id == wave_id, Enrollment.student_id == student_id)
            )
            .with_for_update()
        )
        enrollment = result.scalar_one_or_none()
        if not enrollment:
            raise NotFoundError("Enrollment", f"wave={wave_id}, student={student_id}")

        ledger_ids = select(BillingLedger.id).where(
            BillingLedger.enrollment_id == enrollment.id
        )
        payment_result = await session.execute(
            delete(Payment)
            .where(Payment.ledger_id.in_(ledger_ids))
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(BillingLedger)
            .where(BillingLedger.enrollment_id == enrollment.id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(BookDelivery)
            .where(BookDelivery.enrollment_id == enrollment.id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Enrollment)
            .where(Enrollment.id == enrollment.id)
            .execution_options(synchronize_session=False)
        )
        return enrollment.id, payment_result.rowcount

    enrollment_id, payments_deleted = await with_db_transaction(
        session, _withdraw_operation
    )

    log_business_event(
        "enrollment_withdrawn",
        "enrollment",
        enrollment_id,
        {
            "wave_id": wave_id,
            "student_id": student_id,
            "payments_deleted": payments_deleted,
        },
    )
    return True


@db_operation
async def review_enrollment(
    session: AsyncSession,
    enrollment_id: int,
    approve: bool,
    reviewer_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> Enrollment:
    """
    Approve (pending_review -> active) or reject a self-enrollment.
    Approval re-checks that the wave is open and has a free seat.

    Raises:
        NotFoundError: unknown enrollment
        InvalidStateError: enrollment is not pending review, or wave closed
        CapacityExceededError: wave is full
    """

    async def _review_operation(session: AsyncSession):
        current = await get_enrollment_by_id(session, enrollment_id)
        if approve:
            wave = await _get_open_wave_locked(session, current.wave_id)

        enrollment = await get_enrollment_by_id(session, enrollment_id, for_update=True)
        if enrollment.status != EnrollmentStatus.pending_review:
            raise InvalidStateError(
                "enrollment is not pending review",
                details={
                    "enrollment_id": enrollment_id,
                    "status": enrollment.status.value,
                },
            )

        if approve:
            await ensure_capacity(session, wave)
            enrollment.status = EnrollmentStatus.active
        else:
            enrollment.status = EnrollmentStatus.rejected

        enrollment.reviewed_by_id = reviewer_id
        enrollment.reviewed_at = datetime.now(timezone.utc)
        if notes is not None:
            enrollment.notes = notes

        await session.flush()
        return enrollment

    enrollment = await with_db_transaction(session, _review_operation)

    log_business_event(
        "enrollment_reviewed",
        "enrollment",
        enrollment_id,
        {"approved": approve, "reviewer_id": reviewer_id},
    )
    return enrollment


@db_operation
async def change_enrollment_status(
    session: AsyncSession,
    enrollment_id: int,
    new_status: EnrollmentStatus,
    notes: Optional[str] = None,
) -> Enrollment:
    """
    Staff status changes between active, abandoned and completed.
    Re-activation takes a seat again, so it re-checks the wave.
    """

    async def _change_status_operation(session: AsyncSession):
        current = await get_enrollment_by_id(session, enrollment_id)
        wave = None
        if new_status == EnrollmentStatus.active:
            wave = await _get_open_wave_locked(session, current.wave_id)

        enrollment = await get_enrollment_by_id(session, enrollment_id, for_update=True)
        old_status = enrollment.status

        if new_status not in STATUS_TRANSITIONS.get(old_status, set()):
            raise InvalidStateError(
                f"cannot change enrollment status from {old_status.value} to {EnrollmentStatus(new_status).value}",
                details={
                    "enrollment_id": enrollment_id,
                    "status": old_status.value,
                    "requested_status": EnrollmentStatus(new_status).value,
                },
            )

        if wave is not None:
            await ensure_capacity(session, wave)

        enrollment.status = new_status
        if notes is not None:
            enrollment.notes = notes

        await session.flush()
        return enrollment, old_status

    enrollment, old_status = await with_db_transaction(
        session, _change_status_operation
    )

    log_business_event(
        "enrollment_status_changed",
        "enrollment",
        enrollment_id,
        {"from": old_status.value, "to": enrollment.status.value},
    )
    return enrollment


@db_operation
async def get_enrollment_details(
    session: AsyncSession, enrollment_id: int
) -> EnrollmentDetails:
    result = await session.execute(
        select(Enrollment, Student, Wave, Level, BillingLedger)
        .join(Student, Enrollment.student_id == Student.id)
        .join(Wave, Enrollment.wave_id == Wave.id)
        .join(Level, Wave.level_id == Level.id)
        .join(BillingLedger, BillingLedger.enrollment_id == Enrollment.id)
        .where(Enrollment.id == enrollment_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        raise NotFoundError("Enrollment", str(enrollment_id))

    enrollment, student, wave, level, ledger = row
    payments = await list_ledger_payments(session, ledger.id)
    books = await list_book_deliveries(session, enrollment.id)

    return EnrollmentDetails(
        id=enrollment.id,
        student_id=enrollment.student_id,
        wave_id=enrollment.wave_id,
        enrollment_date=enrollment.enrollment_date,
        status=enrollment.status,
        notes=enrollment.notes,
        reviewed_by_id=enrollment.reviewed_by_id,
        reviewed_at=enrollment.reviewed_at,
        student=StudentRead.model_validate(student),
        wave_name=wave.name,
        level_name=level.name,
        ledger=LedgerRead.model_validate(ledger),
        payments=[PaymentRead.model_validate(p) for p in payments],
        books=[BookDeliveryRead.model_validate(b) for b in books],
    )


def _summary_query():
    return (
        select(Enrollment, Student, Wave, BillingLedger)
        .join(Student, Enrollment.student_id == Student.id)
        .join(Wave, Enrollment.wave_id == Wave.id)
        .join(BillingLedger, BillingLedger.enrollment_id == Enrollment.id)
    )


def _build_summary(enrollment, student, wave, ledger) -> EnrollmentSummary:
    return EnrollmentSummary(
        id=enrollment.id,
        status=enrollment.status,
        enrollment_date=enrollment.enrollment_date,
        student_name=student.full_name,
        phone=student.phone,
        wave_id=wave.id,
        wave_name=wave.name,
        total_due=ledger.total_due,
        amount_paid=ledger.amount_paid,
        amount_remaining=ledger.amount_remaining,
        payment_status=ledger.status.value,
    )


@db_operation
async def lookup_enrollments_by_phone(
    session: AsyncSession, phone: str
) -> List[EnrollmentSummary]:
    """
    Public status check for a phone number

    Raises:
        ValidationError: phone is not a valid Madagascar mobile number
        NotFoundError: no student with that phone
    """
    normalized = clean_phone_number(phone)
    student = await get_student_by_phone(session, normalized)
    if not student:
        raise NotFoundError("Student", normalized)

    result = await session.execute(
        _summary_query()
        .where(Enrollment.student_id == student.id)
        .order_by(Enrollment.enrollment_date.desc(), Enrollment.id.desc())
    )
    return [_build_summary(*row) for row in result.all()]


@db_operation
async def get_pending_enrollments(
    session: AsyncSession, skip: int = 0, limit: int = 20
) -> Tuple[List[EnrollmentSummary], int]:
    """Self-enrollments waiting for staff review, oldest first"""
    total_result = await session.execute(
        select(func.count(Enrollment.id)).where(
            Enrollment.status == EnrollmentStatus.pending_review
        )
    )
    total = total_result.scalar() or 0

    result = await session.execute(
        _summary_query()
        .where(Enrollment.status == EnrollmentStatus.pending_review)
        .order_by(Enrollment.created_at, Enrollment.id)
        .offset(skip)
        .limit(limit)
    )
    return [_build_summary(*row) for row in result.all()], total
