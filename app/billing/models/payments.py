"""Payment Model - journal entries applied to a billing ledger"""
from datetime import date
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    Numeric,
    ForeignKey,
    CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum
from app.core.database import Base


class PaymentMethod(str, Enum):
    cash = "cash"
    mobile_money = "mobile_money"  # MVola, Orange Money, Airtel Money
    bank_transfer = "bank_transfer"


class FeeCategory(str, Enum):
    registration = "registration"
    tuition = "tuition"
    book = "book"


class Payment(Base):
    """Never updated; voiding deletes the row and compensates the ledger"""
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payments_amount_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    ledger_id = Column(
        Integer,
        ForeignKey("billing_ledgers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=False, default=date.today)
    method = Column(SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.cash)
    fee_category = Column(SQLEnum(FeeCategory), nullable=False)

    # Mobile money transaction id
    external_reference = Column(String(100), nullable=True)
    recorded_by_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ledger = relationship("BillingLedger", back_populates="payments")
    recorded_by = relationship("StaffUser")

    def __repr__(self):
        return (
            f"<Payment(id={self.id}, ledger_id={self.ledger_id}, "
            f"amount={self.amount}, category={self.fee_category})>"
        )
