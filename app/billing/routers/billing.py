from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import require_staff_writer
from app.core.responses import ApiResponse, PaginatedResponse
from app.billing.models.ledgers import LedgerStatus
from app.billing.schemas.payments import (
    BillingStats,
    LedgerDetails,
    PaymentCreate,
    PaymentRead,
)
from app.billing.crud.ledger import apply_payment, void_payment
from app.billing.crud.payments import (
    get_billing_stats,
    get_ledger_details,
    get_ledgers_paginated,
)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post(
    "/ledgers/{ledger_id}/payments",
    response_model=ApiResponse[PaymentRead],
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    ledger_id: int,
    payment: PaymentCreate,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """
    Apply a payment to a ledger.

    - **amount**: must not exceed the remaining balance
    - **fee_category**: registration, tuition or book
    - **method**: cash, mobile_money (requires external_reference) or bank_transfer
    """
    db_payment = await apply_payment(db, ledger_id, payment, current_staff["id"])
    return ApiResponse(
        message="Payment recorded", data=PaymentRead.model_validate(db_payment)
    )


@router.delete("/payments/{payment_id}", response_model=ApiResponse[None])
async def delete_payment(
    payment_id: int,
    current_staff: Dict[str, Any] = Depends(require_staff_writer),
    db: AsyncSession = Depends(get_session),
):
    """Void a payment: the entry is deleted and its ledger compensated"""
    await void_payment(db, payment_id)
    return ApiResponse(message="Payment voided")


@router.get("/ledgers/{ledger_id}", response_model=ApiResponse[LedgerDetails])
async def get_ledger(
    ledger_id: int,
    db: AsyncSession = Depends(get_session),
):
    details = await get_ledger_details(db, ledger_id)
    return ApiResponse(data=details)


@router.get("/ledgers", response_model=PaginatedResponse[LedgerDetails])
async def list_ledgers(
    page: int = Query(1, ge=1, description="Page number starting from 1"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    ledger_status: Optional[LedgerStatus] = Query(
        None, alias="status", description="unpaid, partial or paid"
    ),
    wave_id: Optional[int] = Query(None, gt=0, description="Filter by wave"),
    search: Optional[str] = Query(None, description="Student name or phone"),
    db: AsyncSession = Depends(get_session),
):
    skip = (page - 1) * limit
    ledgers, total = await get_ledgers_paginated(
        db, skip=skip, limit=limit, status=ledger_status, wave_id=wave_id, search=search
    )
    return PaginatedResponse(data=ledgers, page=page, limit=limit, total=total)


@router.get("/stats", response_model=ApiResponse[BillingStats])
async def billing_stats(
    wave_id: Optional[int] = Query(None, gt=0, description="Restrict to one wave"),
    db: AsyncSession = Depends(get_session),
):
    stats = await get_billing_stats(db, wave_id=wave_id)
    return ApiResponse(data=stats)
