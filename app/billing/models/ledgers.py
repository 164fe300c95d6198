"""Billing Ledger Model - per-enrollment money state"""
from decimal import Decimal
from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    Numeric,
    DateTime,
    ForeignKey,
    case,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from enum import Enum
from app.core.database import Base


class LedgerStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"


def derive_status(amount_paid: Decimal, total_due: Decimal) -> LedgerStatus:
    if amount_paid >= total_due:
        return LedgerStatus.paid
    if amount_paid > 0:
        return LedgerStatus.partial
    return LedgerStatus.unpaid


class BillingLedger(Base):
    """
    Money state of one enrollment.

    ``amount_paid + amount_remaining == total_due`` always holds. ``status``
    is derived from the amounts on every read and has no column of its own;
    the registration/book flags are informational only.
    """
    __tablename__ = "billing_ledgers"

    id = Column(Integer, primary_key=True, index=True)
    enrollment_id = Column(
        Integer,
        ForeignKey("enrollments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    total_due = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    amount_remaining = Column(Numeric(12, 2), nullable=False)

    registration_fee_paid = Column(Boolean, nullable=False, default=False)
    book_fee_paid = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    enrollment = relationship("Enrollment", back_populates="ledger")
    payments = relationship(
        "Payment",
        back_populates="ledger",
        order_by="Payment.id",
        cascade="all, delete-orphan",
    )

    @hybrid_property
    def status(self) -> LedgerStatus:
        return derive_status(self.amount_paid, self.total_due)

    @status.expression
    def status(cls):
        return case(
            (cls.amount_paid >= cls.total_due, LedgerStatus.paid.value),
            (cls.amount_paid > 0, LedgerStatus.partial.value),
            else_=LedgerStatus.unpaid.value,
        )

    def __repr__(self):
        return (
            f"<BillingLedger(id={self.id}, enrollment_id={self.enrollment_id}, "
            f"paid={self.amount_paid}/{self.total_due})>"
        )
