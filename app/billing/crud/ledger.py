"""
Billing ledger: seeding, payment application and payment voiding.

``record_payment`` / ``reverse_payment`` run inside the caller's transaction
(the enrollment flow uses them); ``apply_payment`` / ``void_payment`` wrap
them in their own transaction. In every case the ledger row is locked first,
so concurrent payments on one ledger serialize and never read a stale
remaining balance.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from sqlalchemy import and_, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import InvalidAmountError, NotFoundError, ValidationError
from app.core.logging_utils import log_business_event
from app.billing.models.ledgers import BillingLedger
from app.billing.models.payments import Payment, PaymentMethod, FeeCategory
from app.billing.schemas.payments import PaymentCreate

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Category -> informational flag on the ledger
CATEGORY_FLAGS = {
    FeeCategory.registration: "registration_fee_paid",
    FeeCategory.book: "book_fee_paid",
}


async def get_ledger_by_id(
    session: AsyncSession, ledger_id: int, for_update: bool = False
) -> BillingLedger:
    query = select(BillingLedger).where(BillingLedger.id == ledger_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await session.execute(query)
    ledger = result.scalar_one_or_none()

    if not ledger:
        raise NotFoundError("Billing ledger", str(ledger_id))

    return ledger


async def get_payment_by_id(
    session: AsyncSession, payment_id: int, for_update: bool = False
) -> Payment:
    query = select(Payment).where(Payment.id == payment_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await session.execute(query)
    payment = result.scalar_one_or_none()

    if not payment:
        raise NotFoundError("Payment", str(payment_id))

    return payment


async def seed_ledger(
    session: AsyncSession, enrollment_id: int, total_due: Decimal
) -> BillingLedger:
    """Create the unpaid ledger of a new enrollment (caller's transaction)"""
    if total_due < ZERO:
        raise InvalidAmountError("total due cannot be negative", amount=total_due)

    ledger = BillingLedger(
        enrollment_id=enrollment_id,
        total_due=total_due,
        amount_paid=ZERO,
        amount_remaining=total_due,
        registration_fee_paid=False,
        book_fee_paid=False,
    )
    session.add(ledger)
    await session.flush()
    return ledger


def validate_payment(ledger: BillingLedger, payment_data: PaymentCreate):
    """
    Raises:
        InvalidAmountError: amount <= 0 or above the remaining balance
        ValidationError: mobile money payment without a transaction reference
    """
    amount = payment_data.amount
    if amount is None or amount <= ZERO:
        raise InvalidAmountError("payment amount must be positive", amount=amount)

    remaining = Decimal(ledger.amount_remaining)
    if amount > remaining:
        raise InvalidAmountError(
            "payment cannot exceed remaining balance",
            amount=amount,
            amount_remaining=remaining,
        )

    if payment_data.method == PaymentMethod.mobile_money and not (
        payment_data.external_reference or ""
    ).strip():
        raise ValidationError(
            "external_reference is required for mobile_money payments",
            details={"method": payment_data.method.value},
        )


async def record_payment(
    session: AsyncSession,
    ledger: BillingLedger,
    payment_data: PaymentCreate,
    recorded_by_id: Optional[int] = None,
) -> Payment:
    """
    Insert the journal entry and move the amounts; ``ledger`` must already
    be locked in the current transaction.
    """
    validate_payment(ledger, payment_data)

    payment = Payment(
        ledger_id=ledger.id,
        amount=payment_data.amount,
        payment_date=payment_data.payment_date or date.today(),
        method=payment_data.method,
        fee_category=payment_data.fee_category,
        external_reference=payment_data.external_reference,
        recorded_by_id=recorded_by_id,
        notes=payment_data.notes,
    )
    session.add(payment)

    ledger.amount_paid = Decimal(ledger.amount_paid) + payment_data.amount
    ledger.amount_remaining = Decimal(ledger.amount_remaining) - payment_data.amount

    flag = CATEGORY_FLAGS.get(payment_data.fee_category)
    if flag:
        setattr(ledger, flag, True)

    await session.flush()
    return payment


async def reverse_payment(
    session: AsyncSession, ledger: BillingLedger, payment: Payment
):
    """
    Compensate the ledger and delete the journal entry; both rows must
    already be locked in the current transaction. The category flag is
    re-derived from the entries that remain.
    """
    amount = Decimal(payment.amount)
    ledger.amount_paid = Decimal(ledger.amount_paid) - amount
    ledger.amount_remaining = Decimal(ledger.amount_remaining) + amount

    flag = CATEGORY_FLAGS.get(payment.fee_category)
    if flag:
        result = await session.execute(
            select(func.count(Payment.id)).where(
                and_(
                    Payment.ledger_id == ledger.id,
                    Payment.fee_category == payment.fee_category,
                    Payment.id != payment.id,
                )
            )
        )
        setattr(ledger, flag, (result.scalar() or 0) > 0)

    await session.delete(payment)
    await session.flush()


@db_operation
async def apply_payment(
    session: AsyncSession,
    ledger_id: int,
    payment_data: PaymentCreate,
    recorded_by_id: Optional[int] = None,
) -> Payment:
    """
    Apply one payment atomically. On any failure the ledger is left exactly
    as it was.

    Raises:
        NotFoundError: unknown ledger
        InvalidAmountError: amount <= 0 or above the remaining balance
        ValidationError: mobile money without external reference
    """

    async def _apply_payment_operation(session: AsyncSession):
        ledger = await get_ledger_by_id(session, ledger_id, for_update=True)
        payment = await record_payment(session, ledger, payment_data, recorded_by_id)
        return ledger, payment

    ledger, payment = await with_db_transaction(session, _apply_payment_operation)

    log_business_event(
        "payment_applied",
        "ledger",
        ledger_id,
        {
            "payment_id": payment.id,
            "amount": str(payment.amount),
            "fee_category": payment.fee_category.value,
            "method": payment.method.value,
            "recorded_by_id": recorded_by_id,
            "status": ledger.status.value,
        },
    )
    return payment


@db_operation
async def void_payment(session: AsyncSession, payment_id: int) -> bool:
    """
    Delete a journal entry and compensate its ledger in one transaction.

    Raises:
        NotFoundError: unknown payment
    """

    async def _void_payment_operation(session: AsyncSession):
        payment = await get_payment_by_id(session, payment_id, for_update=True)
        ledger = await get_ledger_by_id(session, payment.ledger_id, for_update=True)
        details = {
            "payment_id": payment.id,
            "amount": str(payment.amount),
            "fee_category": payment.fee_category.value,
        }
        await reverse_payment(session, ledger, payment)
        details["status"] = ledger.status.value
        return ledger.id, details

    ledger_id, details = await with_db_transaction(session, _void_payment_operation)

    log_business_event("payment_voided", "ledger", ledger_id, details)
    return True
