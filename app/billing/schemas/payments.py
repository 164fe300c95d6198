from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.billing.models.ledgers import LedgerStatus
from app.billing.models.payments import PaymentMethod, FeeCategory


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    fee_category: FeeCategory
    method: PaymentMethod = PaymentMethod.cash
    external_reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=500)


class PaymentRead(BaseModel):
    id: int
    ledger_id: int
    amount: Decimal
    payment_date: date
    method: PaymentMethod
    fee_category: FeeCategory
    external_reference: Optional[str] = None
    recorded_by_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerRead(BaseModel):
    id: int
    enrollment_id: int
    total_due: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal
    status: LedgerStatus
    registration_fee_paid: bool
    book_fee_paid: bool

    model_config = ConfigDict(from_attributes=True)


class LedgerDetails(LedgerRead):
    student_id: int
    student_name: str
    phone: str
    wave_id: int
    wave_name: str
    payments: List[PaymentRead] = []


class BillingStats(BaseModel):
    total_due: Decimal
    total_paid: Decimal
    total_remaining: Decimal
    ledger_count: int
    by_status: Dict[str, int]
    by_method: Dict[str, Decimal]
    collected_today: Decimal
    collected_this_month: Decimal
