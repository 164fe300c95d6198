"""Unauthenticated endpoints used by the public enrollment page"""
from typing import List
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PUBLIC_ENROLLMENT_RATE_LIMIT
from app.core.database import get_session
from app.core.limits import limiter
from app.core.responses import ApiResponse
from app.enrollment.schemas.enrollments import (
    EnrollmentSummary,
    PublicEnrollmentCreate,
    PublicEnrollmentResult,
)
from app.enrollment.crud.enrollments import enroll_public, lookup_enrollments_by_phone
from app.scheduling.schemas.waves import PublicWaveRead
from app.scheduling.crud.waves import list_public_waves

router = APIRouter(prefix="/public", tags=["Public"])


@router.post(
    "/enrollments",
    response_model=ApiResponse[PublicEnrollmentResult],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(PUBLIC_ENROLLMENT_RATE_LIMIT)
async def create_public_enrollment(
    request: Request,
    payload: PublicEnrollmentCreate,
    db: AsyncSession = Depends(get_session),
):
    """
    Self-enrollment. The request is stored as pending_review and only takes
    a seat once staff approve it.
    """
    result = await enroll_public(db, payload)
    return ApiResponse(message=result.confirmation_message, data=result)


@router.get("/enrollments/{phone}", response_model=ApiResponse[List[EnrollmentSummary]])
@limiter.limit("30/minute")
async def get_public_enrollments(
    request: Request,
    phone: str,
    db: AsyncSession = Depends(get_session),
):
    """Enrollment and payment status for a phone number"""
    items = await lookup_enrollments_by_phone(db, phone)
    return ApiResponse(data=items)


@router.get("/waves", response_model=ApiResponse[List[PublicWaveRead]])
@limiter.limit("60/minute")
async def get_public_waves(
    request: Request,
    db: AsyncSession = Depends(get_session),
):
    """Planned waves with free seats"""
    waves = await list_public_waves(db)
    return ApiResponse(data=waves)
