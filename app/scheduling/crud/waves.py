"""Wave management: schedule entries and resource bookings"""
import logging
from typing import List, Optional
from sqlalchemy import and_, delete, func
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.logging_utils import log_business_event
from app.catalog.models.calendar import Day, TimeSlot
from app.catalog.models.levels import Level
from app.catalog.models.rooms import Room
from app.catalog.models.users import StaffUser, StaffRole
from app.catalog.crud.levels import get_level_by_id
from app.scheduling.models.waves import OPEN_WAVE_STATUSES, Wave, WaveSchedule, WaveStatus
from app.scheduling.models.bookings import ResourceBooking, ResourceKind
from app.scheduling.schemas.waves import (
    ScheduleEntry,
    WaveCreate,
    WaveUpdate,
    WaveDetails,
    PublicWaveRead,
)
from app.scheduling.crud.availability import ensure_available
from app.scheduling.crud.capacity import (
    build_capacity_info,
    count_active_enrollments,
)
from app.enrollment.models.enrollments import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)

# Fields of WaveUpdate that may be explicitly cleared with null
NULLABLE_WAVE_FIELDS = ("teacher_id", "room_id", "end_date", "capacity_max", "notes")


async def get_wave_by_id(
    session: AsyncSession, wave_id: int, for_update: bool = False
) -> Wave:
    """
    Load a wave; ``for_update`` takes a row lock (SELECT ... FOR UPDATE)
    that is held until the surrounding transaction ends.
    """
    query = select(Wave).where(Wave.id == wave_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await session.execute(query)
    wave = result.scalar_one_or_none()

    if not wave:
        raise NotFoundError("Wave", str(wave_id))

    return wave


async def _load_schedules(session: AsyncSession, wave_id: int) -> List[WaveSchedule]:
    result = await session.execute(
        select(WaveSchedule)
        .where(WaveSchedule.wave_id == wave_id)
        .order_by(WaveSchedule.id)
    )
    return list(result.scalars().all())


async def _validate_references(
    session: AsyncSession,
    teacher_id: Optional[int],
    room_id: Optional[int],
    schedules: List[ScheduleEntry],
) -> Optional[Room]:
    room = None
    if room_id is not None:
        room = await session.get(Room, room_id)
        if not room or not room.active:
            raise NotFoundError("Room", str(room_id))

    if teacher_id is not None:
        teacher = await session.get(StaffUser, teacher_id)
        if not teacher or not teacher.is_active:
            raise NotFoundError("Teacher", str(teacher_id))
        if teacher.role != StaffRole.teacher:
            raise ValidationError(
                "Assigned user is not a teacher",
                details={"user_id": teacher_id, "role": teacher.role.value},
            )

    day_ids = {entry.day_id for entry in schedules}
    slot_ids = {entry.time_slot_id for entry in schedules}

    if day_ids:
        result = await session.execute(
            select(func.count(Day.id)).where(Day.id.in_(day_ids))
        )
        if (result.scalar() or 0) != len(day_ids):
            raise NotFoundError("Day", ",".join(str(i) for i in sorted(day_ids)))

    if slot_ids:
        result = await session.execute(
            select(func.count(TimeSlot.id)).where(TimeSlot.id.in_(slot_ids))
        )
        if (result.scalar() or 0) != len(slot_ids):
            raise NotFoundError(
                "Time slot", ",".join(str(i) for i in sorted(slot_ids))
            )

    return room


async def _check_resources_free(
    session: AsyncSession,
    teacher_id: Optional[int],
    room_id: Optional[int],
    schedules: List[ScheduleEntry],
    exclude_wave_id: Optional[int] = None,
):
    for entry in schedules:
        if room_id is not None:
            await ensure_available(
                session,
                ResourceKind.room,
                room_id,
                entry.day_id,
                entry.time_slot_id,
                exclude_wave_id,
            )
        if teacher_id is not None:
            await ensure_available(
                session,
                ResourceKind.teacher,
                teacher_id,
                entry.day_id,
                entry.time_slot_id,
                exclude_wave_id,
            )


async def release_bookings(session: AsyncSession, wave_id: int):
    await session.execute(
        delete(ResourceBooking).where(ResourceBooking.wave_id == wave_id)
    )


async def _book_resources(
    session: AsyncSession,
    wave: Wave,
    schedules: List[ScheduleEntry],
):
    """
    Insert one booking per (resource, day, slot). A concurrent wave that
    passed the same pre-check trips the unique constraint here.
    """
    for entry in schedules:
        if wave.room_id is not None:
            session.add(
                ResourceBooking(
                    resource_kind=ResourceKind.room,
                    resource_id=wave.room_id,
                    day_id=entry.day_id,
                    time_slot_id=entry.time_slot_id,
                    wave_id=wave.id,
                )
            )
        if wave.teacher_id is not None:
            session.add(
                ResourceBooking(
                    resource_kind=ResourceKind.teacher,
                    resource_id=wave.teacher_id,
                    day_id=entry.day_id,
                    time_slot_id=entry.time_slot_id,
                    wave_id=wave.id,
                )
            )

    try:
        await session.flush()
    except IntegrityError as e:
        if "resource_bookings" not in str(e.orig):
            raise
        raise ConflictError(
            "room or teacher is already booked for the selected slot",
            details={"wave_id": wave.id},
        ) from e


@db_operation
async def create_wave(session: AsyncSession, wave_data: WaveCreate) -> WaveDetails:
    """
    Create a planned wave with its weekly schedule and resource bookings.

    Raises:
        NotFoundError: unknown level, room, teacher, day or time slot
        ConflictError: room or teacher already booked on one of the slots
    """

    async def _create_wave_operation(session: AsyncSession):
        await get_level_by_id(session, wave_data.level_id)
        room = await _validate_references(
            session, wave_data.teacher_id, wave_data.room_id, wave_data.schedules
        )
        await _check_resources_free(
            session, wave_data.teacher_id, wave_data.room_id, wave_data.schedules
        )

        capacity_max = wave_data.capacity_max
        if capacity_max is None and room is not None:
            capacity_max = room.capacity

        db_wave = Wave(
            name=wave_data.name,
            level_id=wave_data.level_id,
            teacher_id=wave_data.teacher_id,
            room_id=wave_data.room_id,
            start_date=wave_data.start_date,
            end_date=wave_data.end_date,
            capacity_max=capacity_max,
            status=WaveStatus.planned,
            notes=wave_data.notes,
        )
        session.add(db_wave)
        await session.flush()

        for entry in wave_data.schedules:
            session.add(
                WaveSchedule(
                    wave_id=db_wave.id,
                    day_id=entry.day_id,
                    time_slot_id=entry.time_slot_id,
                )
            )
        await _book_resources(session, db_wave, wave_data.schedules)
        return db_wave

    db_wave = await with_db_transaction(session, _create_wave_operation)

    log_business_event(
        "wave_created",
        "wave",
        db_wave.id,
        {
            "level_id": db_wave.level_id,
            "room_id": db_wave.room_id,
            "teacher_id": db_wave.teacher_id,
            "slots": len(wave_data.schedules),
        },
    )
    return await get_wave_details(session, db_wave.id)


@db_operation
async def update_wave(
    session: AsyncSession, wave_id: int, wave_data: WaveUpdate
) -> WaveDetails:
    """
    Apply the explicitly sent fields, then rebuild bookings: an open wave
    re-checks availability excluding itself, a completed or cancelled wave
    releases its room and teacher.
    """

    async def _update_wave_operation(session: AsyncSession):
        db_wave = await get_wave_by_id(session, wave_id, for_update=True)
        changes = wave_data.model_dump(exclude_unset=True, exclude={"schedules"})

        for key, value in changes.items():
            if value is None and key not in NULLABLE_WAVE_FIELDS:
                continue
            setattr(db_wave, key, value)

        if "capacity_max" in changes and db_wave.capacity_max is not None:
            enrolled_count = await count_active_enrollments(session, wave_id)
            if db_wave.capacity_max < enrolled_count:
                raise ConflictError(
                    "capacity_max cannot be lower than the number of active enrollments",
                    details={
                        "capacity_max": db_wave.capacity_max,
                        "enrolled_count": enrolled_count,
                    },
                )

        if wave_data.schedules is not None:
            schedules = wave_data.schedules
        else:
            schedules = [
                ScheduleEntry(day_id=s.day_id, time_slot_id=s.time_slot_id)
                for s in await _load_schedules(session, wave_id)
            ]

        await release_bookings(session, wave_id)

        if wave_data.schedules is not None:
            await session.execute(
                delete(WaveSchedule).where(WaveSchedule.wave_id == wave_id)
            )
            for entry in schedules:
                session.add(
                    WaveSchedule(
                        wave_id=wave_id,
                        day_id=entry.day_id,
                        time_slot_id=entry.time_slot_id,
                    )
                )

        if db_wave.is_open:
            await _validate_references(
                session, db_wave.teacher_id, db_wave.room_id, schedules
            )
            await _check_resources_free(
                session, db_wave.teacher_id, db_wave.room_id, schedules, wave_id
            )
            await _book_resources(session, db_wave, schedules)
        else:
            if wave_data.schedules is not None:
                await _validate_references(session, None, None, schedules)
            await session.flush()

        return db_wave

    db_wave = await with_db_transaction(session, _update_wave_operation)

    log_business_event(
        "wave_updated",
        "wave",
        wave_id,
        {"status": db_wave.status.value, "fields": sorted(wave_data.model_fields_set)},
    )
    return await get_wave_details(session, wave_id)


@db_operation
async def delete_wave(session: AsyncSession, wave_id: int) -> bool:
    """
    Raises:
        NotFoundError: unknown wave
        ConflictError: the wave still has enrollments
    """

    async def _delete_wave_operation(session: AsyncSession):
        db_wave = await get_wave_by_id(session, wave_id, for_update=True)

        active_count = await count_active_enrollments(session, wave_id)
        result = await session.execute(
            select(func.count(Enrollment.id)).where(Enrollment.wave_id == wave_id)
        )
        total_count = result.scalar() or 0
        if total_count:
            raise ConflictError(
                "Wave has enrollments and cannot be deleted",
                details={
                    "wave_id": wave_id,
                    "active_enrollments": active_count,
                    "enrollments": total_count,
                },
            )

        await release_bookings(session, wave_id)
        await session.execute(
            delete(WaveSchedule).where(WaveSchedule.wave_id == wave_id)
        )
        await session.delete(db_wave)
        return True

    await with_db_transaction(session, _delete_wave_operation)

    log_business_event("wave_deleted", "wave", wave_id)
    return True


@db_operation
async def get_wave_details(session: AsyncSession, wave_id: int) -> WaveDetails:
    result = await session.execute(
        select(Wave)
        .options(selectinload(Wave.schedules), selectinload(Wave.level))
        .where(Wave.id == wave_id)
        .execution_options(populate_existing=True)
    )
    wave = result.scalar_one_or_none()
    if not wave:
        raise NotFoundError("Wave", str(wave_id))

    enrolled_count = await count_active_enrollments(session, wave_id)

    return WaveDetails(
        id=wave.id,
        name=wave.name,
        level_id=wave.level_id,
        teacher_id=wave.teacher_id,
        room_id=wave.room_id,
        start_date=wave.start_date,
        end_date=wave.end_date,
        capacity_max=wave.capacity_max,
        status=wave.status,
        notes=wave.notes,
        schedules=[ScheduleEntry.model_validate(s) for s in wave.schedules],
        created_at=wave.created_at,
        level_code=wave.level.code if wave.level else None,
        level_name=wave.level.name if wave.level else None,
        capacity=build_capacity_info(wave.capacity_max, enrolled_count),
    )


@db_operation
async def list_public_waves(session: AsyncSession) -> List[PublicWaveRead]:
    """Planned or in-progress waves of active levels that still have a free seat"""
    active_counts = (
        select(
            Enrollment.wave_id.label("wave_id"),
            func.count(Enrollment.id).label("enrolled"),
        )
        .where(Enrollment.status == EnrollmentStatus.active)
        .group_by(Enrollment.wave_id)
        .subquery()
    )

    result = await session.execute(
        select(Wave, Level, func.coalesce(active_counts.c.enrolled, 0))
        .join(Level, Wave.level_id == Level.id)
        .outerjoin(active_counts, active_counts.c.wave_id == Wave.id)
        .options(selectinload(Wave.schedules))
        .where(
            and_(
                Wave.status.in_(OPEN_WAVE_STATUSES),
                Level.active == True,
            )
        )
        .order_by(Wave.start_date, Wave.id)
    )

    waves = []
    for wave, level, enrolled in result.all():
        capacity = build_capacity_info(wave.capacity_max, enrolled)
        if not capacity.has_capacity:
            continue
        waves.append(
            PublicWaveRead(
                id=wave.id,
                name=wave.name,
                level_id=level.id,
                level_name=level.name,
                start_date=wave.start_date,
                end_date=wave.end_date,
                remaining_seats=capacity.remaining_seats,
                schedules=[ScheduleEntry.model_validate(s) for s in wave.schedules],
            )
        )
    return waves
