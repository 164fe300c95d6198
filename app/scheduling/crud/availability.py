"""Room/teacher availability for a weekly (day, time slot)"""
from typing import Optional
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.scheduling.models.waves import Wave, WaveSchedule, OPEN_WAVE_STATUSES
from app.scheduling.models.bookings import ResourceKind


def _resource_column(resource_kind: ResourceKind):
    if ResourceKind(resource_kind) == ResourceKind.room:
        return Wave.room_id
    return Wave.teacher_id


async def count_conflicting_waves(
    session: AsyncSession,
    resource_kind: ResourceKind,
    resource_id: int,
    day_id: int,
    time_slot_id: int,
    exclude_wave_id: Optional[int] = None,
) -> int:
    """Open waves using the resource on that exact (day, slot)"""
    conditions = [
        _resource_column(resource_kind) == resource_id,
        Wave.status.in_(OPEN_WAVE_STATUSES),
        WaveSchedule.day_id == day_id,
        WaveSchedule.time_slot_id == time_slot_id,
    ]
    if exclude_wave_id is not None:
        conditions.append(Wave.id != exclude_wave_id)

    result = await session.execute(
        select(func.count(func.distinct(Wave.id)))
        .select_from(Wave)
        .join(WaveSchedule, WaveSchedule.wave_id == Wave.id)
        .where(and_(*conditions))
    )
    return result.scalar() or 0


async def is_available(
    session: AsyncSession,
    resource_kind: ResourceKind,
    resource_id: int,
    day_id: int,
    time_slot_id: int,
    exclude_wave_id: Optional[int] = None,
) -> bool:
    """
    True iff no planned/in-progress wave other than ``exclude_wave_id`` uses
    the room or teacher on the given day and slot.

    Point-in-time check; the resource_bookings unique constraint is what
    actually prevents a concurrent double booking.
    """
    count = await count_conflicting_waves(
        session, resource_kind, resource_id, day_id, time_slot_id, exclude_wave_id
    )
    return count == 0


async def ensure_available(
    session: AsyncSession,
    resource_kind: ResourceKind,
    resource_id: int,
    day_id: int,
    time_slot_id: int,
    exclude_wave_id: Optional[int] = None,
):
    if not await is_available(
        session, resource_kind, resource_id, day_id, time_slot_id, exclude_wave_id
    ):
        kind = ResourceKind(resource_kind).value
        raise ConflictError(
            f"{kind} is already booked for the selected slot",
            details={
                "resource_kind": kind,
                "resource_id": resource_id,
                "day_id": day_id,
                "time_slot_id": time_slot_id,
            },
        )
