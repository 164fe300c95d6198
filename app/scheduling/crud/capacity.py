"""Wave capacity: enrolled_count is always counted, never stored"""
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CapacityExceededError, NotFoundError
from app.scheduling.models.waves import Wave
from app.scheduling.schemas.waves import CapacityInfo
from app.enrollment.models.enrollments import Enrollment, EnrollmentStatus


async def count_active_enrollments(session: AsyncSession, wave_id: int) -> int:
    result = await session.execute(
        select(func.count(Enrollment.id)).where(
            and_(
                Enrollment.wave_id == wave_id,
                Enrollment.status == EnrollmentStatus.active,
            )
        )
    )
    return result.scalar() or 0


def build_capacity_info(capacity_max, enrolled_count: int) -> CapacityInfo:
    if capacity_max is None:
        return CapacityInfo(
            capacity_max=None,
            enrolled_count=enrolled_count,
            remaining_seats=None,
            has_capacity=True,
        )

    remaining = max(capacity_max - enrolled_count, 0)
    return CapacityInfo(
        capacity_max=capacity_max,
        enrolled_count=enrolled_count,
        remaining_seats=remaining,
        has_capacity=remaining > 0,
    )


async def has_capacity(session: AsyncSession, wave: Wave) -> bool:
    """Unlimited when capacity_max is not set"""
    if wave.capacity_max is None:
        return True

    enrolled_count = await count_active_enrollments(session, wave.id)
    return enrolled_count < wave.capacity_max


async def ensure_capacity(session: AsyncSession, wave: Wave):
    """
    Must run in the enrollment transaction after the wave row is locked,
    otherwise two requests can both take the last seat.
    """
    if wave.capacity_max is None:
        return

    enrolled_count = await count_active_enrollments(session, wave.id)
    if enrolled_count >= wave.capacity_max:
        raise CapacityExceededError(wave.id, wave.capacity_max, enrolled_count)


async def get_capacity(session: AsyncSession, wave_id: int) -> CapacityInfo:
    result = await session.execute(
        select(Wave.capacity_max).where(Wave.id == wave_id)
    )
    row = result.first()
    if row is None:
        raise NotFoundError("Wave", str(wave_id))

    enrolled_count = await count_active_enrollments(session, wave_id)
    return build_capacity_info(row.capacity_max, enrolled_count)
