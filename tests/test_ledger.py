from decimal import Decimal

import pytest
import pytest_asyncio

from app.core.exceptions import InvalidAmountError, NotFoundError, ValidationError
from app.billing.crud.ledger import apply_payment, get_ledger_by_id, void_payment
from app.billing.crud.payments import get_ledger_details, list_ledger_payments
from app.billing.models.ledgers import LedgerStatus, derive_status
from app.billing.models.payments import FeeCategory, PaymentMethod
from app.billing.schemas.payments import PaymentCreate
from app.enrollment.crud.enrollments import enroll

from tests.conftest import make_wave, student_info


def snapshot(ledger):
    return (
        ledger.total_due,
        ledger.amount_paid,
        ledger.amount_remaining,
        ledger.status,
        ledger.registration_fee_paid,
        ledger.book_fee_paid,
    )


def assert_balanced(ledger):
    assert ledger.amount_paid + ledger.amount_remaining == ledger.total_due


async def reload(session, ledger_id):
    session.expire_all()
    return await get_ledger_by_id(session, ledger_id)


@pytest_asyncio.fixture
async def ledger_id(session, catalog):
    wave = await make_wave(session, catalog)
    result = await enroll(session, student_info(), wave.id)
    return result.ledger_id


def payment(amount, category=FeeCategory.tuition, **kwargs):
    return PaymentCreate(amount=Decimal(amount), fee_category=category, **kwargs)


@pytest.mark.parametrize(
    "paid, due, expected",
    [
        ("0", "180000", LedgerStatus.unpaid),
        ("1", "180000", LedgerStatus.partial),
        ("179999.99", "180000", LedgerStatus.partial),
        ("180000", "180000", LedgerStatus.paid),
        ("0", "0", LedgerStatus.paid),
    ],
)
def test_derive_status(paid, due, expected):
    assert derive_status(Decimal(paid), Decimal(due)) == expected


async def test_seeded_ledger_is_unpaid(session, ledger_id):
    ledger = await reload(session, ledger_id)

    assert ledger.total_due == Decimal("180000")
    assert ledger.amount_paid == Decimal("0")
    assert ledger.amount_remaining == Decimal("180000")
    assert ledger.status == LedgerStatus.unpaid
    assert ledger.registration_fee_paid is False
    assert ledger.book_fee_paid is False


async def test_payment_lifecycle(session, catalog, ledger_id):
    admin_id = catalog.admin.id
    await apply_payment(
        session, ledger_id, payment("20000", FeeCategory.registration), admin_id
    )
    ledger = await reload(session, ledger_id)
    assert ledger.amount_paid == Decimal("20000")
    assert ledger.amount_remaining == Decimal("160000")
    assert ledger.status == LedgerStatus.partial
    assert ledger.registration_fee_paid is True
    after_registration = snapshot(ledger)

    tuition = await apply_payment(session, ledger_id, payment("160000"), admin_id)
    tuition_id = tuition.id
    ledger = await reload(session, ledger_id)
    assert ledger.amount_paid == Decimal("180000")
    assert ledger.amount_remaining == Decimal("0")
    assert ledger.status == LedgerStatus.paid
    assert_balanced(ledger)

    assert await void_payment(session, tuition_id) is True
    ledger = await reload(session, ledger_id)
    assert snapshot(ledger) == after_registration
    assert_balanced(ledger)


async def test_overpayment_leaves_ledger_untouched(session, ledger_id):
    await apply_payment(session, ledger_id, payment("20000", FeeCategory.registration))
    before = snapshot(await reload(session, ledger_id))

    with pytest.raises(InvalidAmountError) as exc_info:
        await apply_payment(session, ledger_id, payment("500000"))

    assert exc_info.value.message == "payment cannot exceed remaining balance"
    assert Decimal(exc_info.value.details["amount_remaining"]) == Decimal("160000")
    assert snapshot(await reload(session, ledger_id)) == before
    assert len(await list_ledger_payments(session, ledger_id)) == 1


async def test_non_positive_amount_rejected(session, ledger_id):
    data = PaymentCreate.model_construct(
        amount=Decimal("0"),
        fee_category=FeeCategory.tuition,
        method=PaymentMethod.cash,
        external_reference=None,
        payment_date=None,
        notes=None,
    )
    with pytest.raises(InvalidAmountError):
        await apply_payment(session, ledger_id, data)


async def test_mobile_money_requires_reference(session, ledger_id):
    with pytest.raises(ValidationError):
        await apply_payment(
            session, ledger_id, payment("5000", method=PaymentMethod.mobile_money)
        )

    paid = await apply_payment(
        session,
        ledger_id,
        payment("5000", method=PaymentMethod.mobile_money, external_reference="MP2410.1234"),
    )
    assert paid.external_reference == "MP2410.1234"


async def test_book_payment_sets_and_void_clears_flag(session, ledger_id):
    before = snapshot(await reload(session, ledger_id))

    book = await apply_payment(session, ledger_id, payment("10000", FeeCategory.book))
    book_id = book.id
    assert (await reload(session, ledger_id)).book_fee_paid is True

    await void_payment(session, book_id)
    assert snapshot(await reload(session, ledger_id)) == before


async def test_void_keeps_flag_when_another_entry_of_category_remains(session, ledger_id):
    first = await apply_payment(session, ledger_id, payment("10000", FeeCategory.registration))
    await apply_payment(session, ledger_id, payment("10000", FeeCategory.registration))

    await void_payment(session, first.id)

    ledger = await reload(session, ledger_id)
    assert ledger.registration_fee_paid is True
    assert ledger.amount_paid == Decimal("10000")


async def test_unknown_ids(session, ledger_id):
    with pytest.raises(NotFoundError):
        await void_payment(session, 9999)

    with pytest.raises(NotFoundError):
        await apply_payment(session, 9999, payment("1000"))


async def test_ledger_details_lists_journal(session, ledger_id):
    await apply_payment(session, ledger_id, payment("20000", FeeCategory.registration))
    await apply_payment(session, ledger_id, payment("30000"))

    details = await get_ledger_details(session, ledger_id)

    assert details.phone == "0341234567"
    assert details.status == LedgerStatus.partial
    assert [p.amount for p in details.payments] == [Decimal("20000"), Decimal("30000")]
