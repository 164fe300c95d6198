"""Book delivery desk: which enrolled students have received their books"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import InvalidStateError, NotFoundError
from app.core.logging_utils import log_business_event
from app.billing.models.ledgers import BillingLedger
from app.enrollment.models.books import BookDelivery, DeliveryStatus
from app.enrollment.models.enrollments import Enrollment, EnrollmentStatus
from app.enrollment.models.students import Student
from app.enrollment.schemas.enrollments import UndeliveredBook
from app.scheduling.models.waves import Wave

logger = logging.getLogger(__name__)

# Books are only handed out once the enrollment is accepted
DELIVERABLE_STATUSES = (
    EnrollmentStatus.active,
    EnrollmentStatus.completed,
    EnrollmentStatus.abandoned,
)


async def seed_book_deliveries(
    session: AsyncSession, enrollment_id: int, book_count: int
) -> List[BookDelivery]:
    """One not_delivered row per required book. Runs in the caller's transaction."""
    books = [
        BookDelivery(
            enrollment_id=enrollment_id,
            book_number=number,
            status=DeliveryStatus.not_delivered,
        )
        for number in range(1, book_count + 1)
    ]
    session.add_all(books)
    await session.flush()
    return books


async def list_book_deliveries(
    session: AsyncSession, enrollment_id: int
) -> List[BookDelivery]:
    result = await session.execute(
        select(BookDelivery)
        .where(BookDelivery.enrollment_id == enrollment_id)
        .order_by(BookDelivery.book_number)
    )
    return list(result.scalars().all())


@db_operation
async def set_book_delivery(
    session: AsyncSession,
    enrollment_id: int,
    book_number: int,
    delivered: bool,
    staff_id: Optional[int] = None,
) -> BookDelivery:
    """
    Mark one book as handed over (or undo it).

    Raises:
        NotFoundError: no such book for the enrollment
        InvalidStateError: enrollment is pending review or rejected
    """

    async def _delivery_operation(session: AsyncSession):
        result = await session.execute(
            select(BookDelivery, Enrollment.status)
            .join(Enrollment, BookDelivery.enrollment_id == Enrollment.id)
            .where(
                and_(
                    BookDelivery.enrollment_id == enrollment_id,
                    BookDelivery.book_number == book_number,
                )
            )
            .with_for_update(of=BookDelivery)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("Book", f"enrollment={enrollment_id}, book={book_number}")

        book, enrollment_status = row
        if enrollment_status not in DELIVERABLE_STATUSES:
            raise InvalidStateError(
                "books are only delivered for accepted enrollments",
                details={
                    "enrollment_id": enrollment_id,
                    "status": enrollment_status.value,
                },
            )

        if delivered:
            book.status = DeliveryStatus.delivered
            book.delivered_at = datetime.now(timezone.utc)
            book.delivered_by_id = staff_id
        else:
            book.status = DeliveryStatus.not_delivered
            book.delivered_at = None
            book.delivered_by_id = None

        await session.flush()
        return book

    book = await with_db_transaction(session, _delivery_operation)

    log_business_event(
        "book_delivery_updated",
        "enrollment",
        enrollment_id,
        {"book_number": book_number, "delivered": delivered, "staff_id": staff_id},
    )
    return book


@db_operation
async def get_undelivered_books(
    session: AsyncSession,
    wave_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[UndeliveredBook], int]:
    """Books still owed to active students, optionally for one wave"""
    filters = [
        BookDelivery.status == DeliveryStatus.not_delivered,
        Enrollment.status == EnrollmentStatus.active,
    ]
    if wave_id is not None:
        filters.append(Enrollment.wave_id == wave_id)

    total_result = await session.execute(
        select(func.count(BookDelivery.id))
        .join(Enrollment, BookDelivery.enrollment_id == Enrollment.id)
        .where(*filters)
    )
    total = total_result.scalar() or 0

    result = await session.execute(
        select(BookDelivery, Student, Wave, BillingLedger.book_fee_paid)
        .join(Enrollment, BookDelivery.enrollment_id == Enrollment.id)
        .join(Student, Enrollment.student_id == Student.id)
        .join(Wave, Enrollment.wave_id == Wave.id)
        .join(BillingLedger, BillingLedger.enrollment_id == Enrollment.id)
        .where(*filters)
        .order_by(Wave.id, Student.last_name, Student.first_name, BookDelivery.book_number)
        .offset(skip)
        .limit(limit)
    )

    books = [
        UndeliveredBook(
            enrollment_id=book.enrollment_id,
            book_number=book.book_number,
            student_name=student.full_name,
            phone=student.phone,
            wave_id=wave.id,
            wave_name=wave.name,
            book_fee_paid=book_fee_paid,
        )
        for book, student, wave, book_fee_paid in result.all()
    ]
    return books, total
