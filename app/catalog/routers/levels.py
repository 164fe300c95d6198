from typing import Any, Dict, List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import require_staff_writer
from app.core.responses import ApiResponse
from app.catalog.schemas.levels import FeeSchedule, LevelCreate, LevelRead, LevelUpdate
from app.catalog.crud.levels import (
    create_level,
    delete_level,
    get_level_by_id,
    list_levels,
    resolve_fee_schedule,
    update_level,
)

router = APIRouter(prefix="/levels", tags=["Levels"])


@router.post("", response_model=ApiResponse[LevelRead], status_code=status.HTTP_201_CREATED)
async def create_new_level(
    level: LevelCreate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a level.

    - **code**: unique, stored upper-case
    - **registration_fee**, **tuition_fee**, **book_fee**: Ariary
    - **required_book_count**: books at book_fee included in the total due
    """
    db_level = await create_level(db, level)
    return ApiResponse(message="Level created", data=LevelRead.model_validate(db_level))


@router.get("", response_model=ApiResponse[List[LevelRead]])
async def get_levels(
    active_only: bool = Query(False, description="Show only active levels"),
    db: AsyncSession = Depends(get_session),
):
    levels = await list_levels(db, active_only=active_only)
    return ApiResponse(data=[LevelRead.model_validate(level) for level in levels])


@router.get("/{level_id}", response_model=ApiResponse[LevelRead])
async def get_level(level_id: int, db: AsyncSession = Depends(get_session)):
    db_level = await get_level_by_id(db, level_id)
    return ApiResponse(data=LevelRead.model_validate(db_level))


@router.get("/{level_id}/fee-schedule", response_model=ApiResponse[FeeSchedule])
async def get_fee_schedule(level_id: int, db: AsyncSession = Depends(get_session)):
    """Fee components and the total due a new enrollment would be billed"""
    fees = await resolve_fee_schedule(db, level_id)
    return ApiResponse(data=fees)


@router.put("/{level_id}", response_model=ApiResponse[LevelRead])
async def update_existing_level(
    level_id: int,
    level: LevelUpdate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Fee fields are locked while a wave of the level has active enrollments"""
    db_level = await update_level(db, level_id, level)
    return ApiResponse(message="Level updated", data=LevelRead.model_validate(db_level))


@router.delete("/{level_id}", response_model=ApiResponse[None])
async def delete_existing_level(
    level_id: int,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Rejected while any wave references the level"""
    await delete_level(db, level_id)
    return ApiResponse(message="Level deleted")
