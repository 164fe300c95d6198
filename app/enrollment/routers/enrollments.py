from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import require_staff_writer
from app.core.responses import ApiResponse, PaginatedResponse
from app.enrollment.schemas.enrollments import (
    BookDeliveryRead,
    BookDeliveryUpdate,
    EnrollmentCreate,
    EnrollmentDetails,
    EnrollmentRead,
    EnrollmentResult,
    EnrollmentReview,
    EnrollmentStatusUpdate,
    EnrollmentSummary,
    UndeliveredBook,
)
from app.enrollment.crud.books import get_undelivered_books, set_book_delivery
from app.enrollment.crud.enrollments import (
    enroll,
    withdraw,
    review_enrollment,
    change_enrollment_status,
    get_enrollment_details,
    get_pending_enrollments,
)

router = APIRouter(tags=["Enrollments"])


@router.post(
    "/enrollments",
    response_model=ApiResponse[EnrollmentResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_enrollment(
    payload: EnrollmentCreate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """
    Enroll a student into a wave (desk enrollment).

    - **student**: first/last name and Madagascar phone; an existing student
      with the same phone is reused
    - **wave_id**: target wave (must be planned or in progress)
    - **initial_payment**: optional amount taken at the desk; the part
      covering the registration fee is recorded as registration, the rest
      as tuition
    """
    result = await enroll(
        db,
        payload.student,
        payload.wave_id,
        initial_payment=payload.initial_payment,
        notes=payload.notes,
        recorded_by_id=current_staff["id"],
    )
    return ApiResponse(message="Enrollment created", data=result)


@router.get("/enrollments/pending", response_model=PaginatedResponse[EnrollmentSummary])
async def list_pending_enrollments(
    page: int = Query(1, ge=1, description="Page number starting from 1"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_session),
):
    """Self-enrollments waiting for review, oldest first"""
    skip = (page - 1) * limit
    items, total = await get_pending_enrollments(db, skip=skip, limit=limit)

    return PaginatedResponse(
        message="Pending enrollments",
        data=items,
        page=page,
        limit=limit,
        total=total,
    )


@router.get("/enrollments/{enrollment_id}", response_model=ApiResponse[EnrollmentDetails])
async def get_enrollment(
    enrollment_id: int,
    db: AsyncSession = Depends(get_session),
):
    """Enrollment with student, wave, ledger and payment journal"""
    details = await get_enrollment_details(db, enrollment_id)
    return ApiResponse(data=details)


@router.put("/enrollments/{enrollment_id}/review", response_model=ApiResponse[EnrollmentRead])
async def review_pending_enrollment(
    enrollment_id: int,
    review: EnrollmentReview,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Approve (takes a seat) or reject a self-enrollment"""
    enrollment = await review_enrollment(
        db,
        enrollment_id,
        approve=review.approve,
        reviewer_id=current_staff["id"],
        notes=review.notes,
    )
    message = "Enrollment approved" if review.approve else "Enrollment rejected"
    return ApiResponse(message=message, data=EnrollmentRead.model_validate(enrollment))


@router.patch("/enrollments/{enrollment_id}/status", response_model=ApiResponse[EnrollmentRead])
async def update_enrollment_status(
    enrollment_id: int,
    update: EnrollmentStatusUpdate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    enrollment = await change_enrollment_status(
        db, enrollment_id, update.status, notes=update.notes
    )
    return ApiResponse(
        message=f"Enrollment status set to {enrollment.status.value}",
        data=EnrollmentRead.model_validate(enrollment),
    )


@router.patch(
    "/enrollments/{enrollment_id}/books/{book_number}",
    response_model=ApiResponse[BookDeliveryRead],
)
async def update_book_delivery(
    enrollment_id: int,
    book_number: int,
    update: BookDeliveryUpdate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Record that a book was handed over, or undo it"""
    book = await set_book_delivery(
        db, enrollment_id, book_number, update.delivered, current_staff["id"]
    )
    return ApiResponse(
        message="Book delivered" if update.delivered else "Book delivery cancelled",
        data=BookDeliveryRead.model_validate(book),
    )


@router.get("/books/undelivered", response_model=PaginatedResponse[UndeliveredBook])
async def list_undelivered_books(
    page: int = Query(1, ge=1, description="Page number starting from 1"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    wave_id: Optional[int] = Query(None, gt=0, description="Restrict to one wave"),
    db: AsyncSession = Depends(get_session),
):
    skip = (page - 1) * limit
    items, total = await get_undelivered_books(
        db, wave_id=wave_id, skip=skip, limit=limit
    )
    return PaginatedResponse(data=items, page=page, limit=limit, total=total)


@router.delete(
    "/waves/{wave_id}/students/{student_id}", response_model=ApiResponse[None]
)
async def withdraw_student(
    wave_id: int,
    student_id: int,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Remove a student from a wave together with its ledger and payments"""
    await withdraw(db, wave_id, student_id)
    return ApiResponse(message="Student withdrawn from wave")
