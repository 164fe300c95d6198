from typing import Any, Dict
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import require_staff_writer
from app.core.responses import ApiResponse
from app.enrollment.crud.students import get_student_by_id, set_student_active
from app.enrollment.schemas.enrollments import StudentActiveUpdate, StudentRead

router = APIRouter(prefix="/students", tags=["Students"])


@router.get("/{student_id}", response_model=ApiResponse[StudentRead])
async def get_student(student_id: int, db: AsyncSession = Depends(get_session)):
    student = await get_student_by_id(db, student_id)
    return ApiResponse(data=StudentRead.model_validate(student))


@router.patch("/{student_id}/active", response_model=ApiResponse[StudentRead])
async def update_student_active(
    student_id: int,
    update: StudentActiveUpdate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """
    Deactivate or reactivate a student.

    - **is_active**: false deactivates; enrollments and payments are kept
    """
    student = await set_student_active(
        db, student_id, update.is_active, current_staff["id"]
    )
    message = "Student activated" if student.is_active else "Student deactivated"
    return ApiResponse(message=message, data=StudentRead.model_validate(student))
