from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import require_staff_writer
from app.core.responses import ApiResponse
from app.scheduling.models.bookings import ResourceKind
from app.scheduling.schemas.waves import (
    AvailabilityRead,
    WaveCreate,
    WaveDetails,
    WaveUpdate,
)
from app.scheduling.crud.availability import is_available
from app.scheduling.crud.waves import (
    create_wave,
    delete_wave,
    get_wave_details,
    update_wave,
)

router = APIRouter(prefix="/waves", tags=["Waves"])


@router.post("", response_model=ApiResponse[WaveDetails], status_code=status.HTTP_201_CREATED)
async def create_new_wave(
    wave: WaveCreate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a planned wave.

    - **schedules**: weekly (day_id, time_slot_id) pairs; the room and the
      teacher must be free on each of them
    - **capacity_max**: defaults to the room capacity; unlimited without a room
    """
    details = await create_wave(db, wave)
    return ApiResponse(message="Wave created", data=details)


@router.get("/availability", response_model=ApiResponse[AvailabilityRead])
async def check_availability(
    resource_kind: ResourceKind = Query(..., description="room or teacher"),
    resource_id: int = Query(..., gt=0),
    day_id: int = Query(..., gt=0),
    time_slot_id: int = Query(..., gt=0),
    exclude_wave_id: Optional[int] = Query(None, gt=0, description="Wave being edited"),
    db: AsyncSession = Depends(get_session),
):
    available = await is_available(
        db, resource_kind, resource_id, day_id, time_slot_id, exclude_wave_id
    )
    return ApiResponse(
        data=AvailabilityRead(
            resource_kind=resource_kind.value,
            resource_id=resource_id,
            day_id=day_id,
            time_slot_id=time_slot_id,
            exclude_wave_id=exclude_wave_id,
            available=available,
        )
    )


@router.get("/{wave_id}", response_model=ApiResponse[WaveDetails])
async def get_wave(wave_id: int, db: AsyncSession = Depends(get_session)):
    """Wave with schedule and live capacity"""
    details = await get_wave_details(db, wave_id)
    return ApiResponse(data=details)


@router.put("/{wave_id}", response_model=ApiResponse[WaveDetails])
async def update_existing_wave(
    wave_id: int,
    wave: WaveUpdate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Completing or cancelling a wave frees its room and teacher slots"""
    details = await update_wave(db, wave_id, wave)
    return ApiResponse(message="Wave updated", data=details)


@router.delete("/{wave_id}", response_model=ApiResponse[None])
async def delete_existing_wave(
    wave_id: int,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    await delete_wave(db, wave_id)
    return ApiResponse(message="Wave deleted")
