"""Payment journal and ledger read side"""
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation
from app.core.exceptions import NotFoundError
from app.billing.models.ledgers import BillingLedger, LedgerStatus
from app.billing.models.payments import Payment
from app.billing.schemas.payments import (
    BillingStats,
    LedgerDetails,
    LedgerRead,
    PaymentRead,
)
from app.enrollment.models.enrollments import Enrollment
from app.enrollment.models.students import Student
from app.scheduling.models.waves import Wave


def _money(value) -> Decimal:
    return Decimal(value or 0)


@db_operation
async def list_ledger_payments(session: AsyncSession, ledger_id: int) -> List[Payment]:
    result = await session.execute(
        select(Payment)
        .where(Payment.ledger_id == ledger_id)
        .order_by(Payment.payment_date, Payment.id)
    )
    return list(result.scalars().all())


def _ledger_details_query():
    return (
        select(BillingLedger, Enrollment, Student, Wave)
        .join(Enrollment, BillingLedger.enrollment_id == Enrollment.id)
        .join(Student, Enrollment.student_id == Student.id)
        .join(Wave, Enrollment.wave_id == Wave.id)
    )


def _build_ledger_details(ledger, enrollment, student, wave, payments) -> LedgerDetails:
    return LedgerDetails(
        **LedgerRead.model_validate(ledger).model_dump(),
        student_id=student.id,
        student_name=student.full_name,
        phone=student.phone,
        wave_id=wave.id,
        wave_name=wave.name,
        payments=[PaymentRead.model_validate(p) for p in payments],
    )


@db_operation
async def get_ledger_details(session: AsyncSession, ledger_id: int) -> LedgerDetails:
    """Ledger with its student, wave and journal entries"""
    result = await session.execute(
        _ledger_details_query()
        .where(BillingLedger.id == ledger_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        raise NotFoundError("Billing ledger", str(ledger_id))

    ledger, enrollment, student, wave = row
    payments = await list_ledger_payments(session, ledger.id)
    return _build_ledger_details(ledger, enrollment, student, wave, payments)


@db_operation
async def get_ledgers_paginated(
    session: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    status: Optional[LedgerStatus] = None,
    wave_id: Optional[int] = None,
    search: Optional[str] = None,
) -> Tuple[List[LedgerDetails], int]:
    """Ledgers filtered on the derived status, newest enrollment first"""
    conditions = []
    if status is not None:
        conditions.append(BillingLedger.status == LedgerStatus(status).value)
    if wave_id is not None:
        conditions.append(Enrollment.wave_id == wave_id)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            Student.last_name.ilike(pattern)
            | Student.first_name.ilike(pattern)
            | Student.phone.ilike(pattern)
        )

    base_query = _ledger_details_query()
    if conditions:
        base_query = base_query.where(and_(*conditions))

    count_query = select(func.count()).select_from(base_query.subquery())
    total_result = await session.execute(count_query)
    total = total_result.scalar() or 0

    result = await session.execute(
        base_query.order_by(Enrollment.enrollment_date.desc(), BillingLedger.id.desc())
        .offset(skip)
        .limit(limit)
    )

    ledgers = [
        _build_ledger_details(ledger, enrollment, student, wave, [])
        for ledger, enrollment, student, wave in result.all()
    ]
    return ledgers, total


@db_operation
async def get_billing_stats(
    session: AsyncSession, wave_id: Optional[int] = None
) -> BillingStats:
    """Totals over all ledgers (optionally one wave) and journal breakdowns"""
    ledger_filter = []
    payment_filter = []
    if wave_id is not None:
        ledger_filter.append(Enrollment.wave_id == wave_id)
        payment_filter.append(Enrollment.wave_id == wave_id)

    totals_result = await session.execute(
        select(
            func.sum(BillingLedger.total_due),
            func.sum(BillingLedger.amount_paid),
            func.sum(BillingLedger.amount_remaining),
            func.count(BillingLedger.id),
        )
        .join(Enrollment, BillingLedger.enrollment_id == Enrollment.id)
        .where(*ledger_filter)
    )
    total_due, total_paid, total_remaining, ledger_count = totals_result.one()

    by_status = {}
    for ledger_status in LedgerStatus:
        status_result = await session.execute(
            select(func.count(BillingLedger.id))
            .join(Enrollment, BillingLedger.enrollment_id == Enrollment.id)
            .where(BillingLedger.status == ledger_status.value, *ledger_filter)
        )
        by_status[ledger_status.value] = status_result.scalar() or 0

    def _payments_query(*columns):
        return (
            select(*columns)
            .join(BillingLedger, Payment.ledger_id == BillingLedger.id)
            .join(Enrollment, BillingLedger.enrollment_id == Enrollment.id)
        )

    method_result = await session.execute(
        _payments_query(Payment.method, func.sum(Payment.amount))
        .where(*payment_filter)
        .group_by(Payment.method)
    )
    by_method = {method.value: _money(amount) for method, amount in method_result.all()}

    today = date.today()
    month_start = today.replace(day=1)

    today_result = await session.execute(
        _payments_query(func.sum(Payment.amount)).where(
            and_(Payment.payment_date == today, *payment_filter)
        )
    )
    month_result = await session.execute(
        _payments_query(func.sum(Payment.amount)).where(
            and_(Payment.payment_date >= month_start, *payment_filter)
        )
    )

    return BillingStats(
        total_due=_money(total_due),
        total_paid=_money(total_paid),
        total_remaining=_money(total_remaining),
        ledger_count=ledger_count or 0,
        by_status=by_status,
        by_method=by_method,
        collected_today=_money(today_result.scalar()),
        collected_this_month=_money(month_result.scalar()),
    )
