"""Level catalog and fee schedule resolution"""
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import ConflictError, NotFoundError
from app.core.logging_utils import log_business_event
from app.catalog.models.levels import Level
from app.catalog.schemas.levels import FeeSchedule, LevelCreate, LevelUpdate
from app.scheduling.models.waves import Wave
from app.enrollment.models.enrollments import Enrollment, EnrollmentStatus

FEE_FIELDS = ("registration_fee", "tuition_fee", "book_fee", "required_book_count")


def compute_total_due(
    registration_fee: Decimal,
    tuition_fee: Decimal,
    book_fee: Decimal,
    required_book_count: int,
) -> Decimal:
    return registration_fee + tuition_fee + book_fee * required_book_count


async def get_level_by_id(session: AsyncSession, level_id: int) -> Level:
    result = await session.execute(select(Level).where(Level.id == level_id))
    level = result.scalar_one_or_none()

    if not level:
        raise NotFoundError("Level", str(level_id))

    return level


@db_operation
async def resolve_fee_schedule(session: AsyncSession, level_id: int) -> FeeSchedule:
    """
    Fee components of a level and the total a new ledger is seeded with.

    ``total_due = registration + tuition + book_fee * required_book_count``
    for every enrollment channel.

    Raises:
        NotFoundError: level does not exist or is inactive
    """
    level = await get_level_by_id(session, level_id)
    if not level.active:
        raise NotFoundError("Level", str(level_id))

    registration_fee = Decimal(level.registration_fee)
    tuition_fee = Decimal(level.tuition_fee)
    book_fee = Decimal(level.book_fee)

    return FeeSchedule(
        level_id=level.id,
        registration_fee=registration_fee,
        tuition_fee=tuition_fee,
        book_fee=book_fee,
        required_book_count=level.required_book_count,
        duration_months=level.duration_months,
        total_due=compute_total_due(
            registration_fee, tuition_fee, book_fee, level.required_book_count
        ),
    )


@db_operation
async def list_levels(session: AsyncSession, active_only: bool = False) -> List[Level]:
    query = select(Level)
    if active_only:
        query = query.where(Level.active == True)

    result = await session.execute(query.order_by(Level.code))
    return list(result.scalars().all())


async def _ensure_code_free(
    session: AsyncSession, code: str, exclude_level_id: Optional[int] = None
):
    query = select(Level.id).where(Level.code == code)
    if exclude_level_id is not None:
        query = query.where(Level.id != exclude_level_id)

    result = await session.execute(query)
    if result.first() is not None:
        raise ConflictError(
            f"Level code '{code}' already exists", details={"code": code}
        )


async def count_active_enrollments_for_level(
    session: AsyncSession, level_id: int
) -> int:
    result = await session.execute(
        select(func.count(Enrollment.id))
        .join(Wave, Enrollment.wave_id == Wave.id)
        .where(
            and_(
                Wave.level_id == level_id,
                Enrollment.status == EnrollmentStatus.active,
            )
        )
    )
    return result.scalar() or 0


@db_operation
async def create_level(session: AsyncSession, level_data: LevelCreate) -> Level:
    async def _create_level_operation(session: AsyncSession):
        await _ensure_code_free(session, level_data.code)

        db_level = Level(**level_data.model_dump())
        session.add(db_level)
        await session.flush()
        return db_level

    db_level = await with_db_transaction(session, _create_level_operation)

    log_business_event(
        "level_created", "level", db_level.id, {"code": db_level.code}
    )
    return db_level


@db_operation
async def update_level(
    session: AsyncSession, level_id: int, level_data: LevelUpdate
) -> Level:
    """
    Apply the explicitly sent fields.

    Raises:
        NotFoundError: unknown level
        ConflictError: duplicate code, or a fee field changes while a wave of
            this level has active enrollments
    """

    async def _update_level_operation(session: AsyncSession):
        db_level = await get_level_by_id(session, level_id)
        changes = level_data.model_dump(exclude_unset=True)

        if changes.get("code") and changes["code"] != db_level.code:
            await _ensure_code_free(session, changes["code"], exclude_level_id=level_id)

        changed_fees = [
            field
            for field in FEE_FIELDS
            if field in changes
            and changes[field] is not None
            and changes[field] != getattr(db_level, field)
        ]
        if changed_fees:
            active_count = await count_active_enrollments_for_level(session, level_id)
            if active_count:
                raise ConflictError(
                    "Level fees cannot change while it has active enrollments",
                    details={
                        "level_id": level_id,
                        "fields": changed_fees,
                        "active_enrollments": active_count,
                    },
                )

        for key, value in changes.items():
            if value is None and key not in ("description",):
                continue
            setattr(db_level, key, value)

        await session.flush()
        return db_level

    db_level = await with_db_transaction(session, _update_level_operation)
    await session.refresh(db_level)
    return db_level


@db_operation
async def delete_level(session: AsyncSession, level_id: int) -> bool:
    """
    Raises:
        NotFoundError: unknown level
        ConflictError: any wave references the level
    """

    async def _delete_level_operation(session: AsyncSession):
        db_level = await get_level_by_id(session, level_id)

        result = await session.execute(
            select(func.count(Wave.id)).where(Wave.level_id == level_id)
        )
        wave_count = result.scalar() or 0
        if wave_count:
            raise ConflictError(
                "level is referenced by existing waves",
                details={"level_id": level_id, "wave_count": wave_count},
            )

        await session.delete(db_level)
        return True

    await with_db_transaction(session, _delete_level_operation)

    log_business_event("level_deleted", "level", level_id)
    return True
