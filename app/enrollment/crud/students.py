"""Student lookup, find-or-create by phone number and activation"""
import logging
from typing import Optional
from sqlalchemy.future import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import NotFoundError
from app.core.logging_utils import log_business_event
from app.enrollment.models.students import Student
from app.enrollment.schemas.enrollments import StudentInfo

logger = logging.getLogger(__name__)


async def get_student_by_phone(session: AsyncSession, phone: str) -> Optional[Student]:
    result = await session.execute(select(Student).where(Student.phone == phone))
    return result.scalar_one_or_none()


@db_operation
async def get_student_by_id(
    session: AsyncSession, student_id: int, for_update: bool = False
) -> Student:
    query = select(Student).where(Student.id == student_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await session.execute(query)
    student = result.scalar_one_or_none()
    if not student:
        raise NotFoundError("Student", str(student_id))
    return student


async def find_or_create_student(
    session: AsyncSession, student_info: StudentInfo
) -> Student:
    """
    Resolve the student by normalized phone, creating an active one if absent.

    Runs inside the caller's transaction. The insert sits in a SAVEPOINT so a
    concurrent request creating the same phone does not abort the outer
    transaction: on the unique violation the row committed by the other
    request is read back instead.
    """
    student = await get_student_by_phone(session, student_info.phone)
    if student:
        return student

    student = Student(
        first_name=student_info.first_name,
        last_name=student_info.last_name,
        phone=student_info.phone,
        email=student_info.email,
        is_active=True,
    )

    try:
        async with session.begin_nested():
            session.add(student)
    except IntegrityError:
        logger.info(
            "Student created concurrently, reusing existing row",
            extra={"phone": student_info.phone},
        )
        existing = await get_student_by_phone(session, student_info.phone)
        if existing is None:
            raise
        return existing

    log_business_event("student_created", "student", student.id)
    return student


@db_operation
async def set_student_active(
    session: AsyncSession,
    student_id: int,
    is_active: bool,
    staff_id: Optional[int] = None,
) -> Student:
    """
    Deactivate or reactivate a student. Students are never deleted; their
    enrollments and ledgers stay as they are.

    Raises:
        NotFoundError: unknown student
    """

    async def _set_active_operation(session: AsyncSession):
        student = await get_student_by_id(session, student_id, for_update=True)
        changed = student.is_active != is_active
        student.is_active = is_active
        await session.flush()
        return student, changed

    student, changed = await with_db_transaction(session, _set_active_operation)

    if changed:
        log_business_event(
            "student_activated" if is_active else "student_deactivated",
            "student",
            student_id,
            {"staff_id": staff_id},
        )
    return student
