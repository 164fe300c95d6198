from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.core.validations import clean_phone_number
from app.core.exceptions import ValidationError
from app.enrollment.models.enrollments import EnrollmentStatus
from app.enrollment.models.books import DeliveryStatus
from app.billing.models.payments import PaymentMethod
from app.billing.schemas.payments import PaymentRead, LedgerRead


class StudentInfo(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=9, max_length=20)
    email: Optional[str] = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        try:
            return clean_phone_number(v)
        except ValidationError as e:
            raise ValueError(e.message)


class StudentRead(BaseModel):
    id: int
    first_name: str
    last_name: str
    phone: str
    email: Optional[str] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class StudentActiveUpdate(BaseModel):
    is_active: bool


class InitialPayment(BaseModel):
    """Payment taken at the desk together with the enrollment"""
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    method: PaymentMethod = PaymentMethod.cash
    external_reference: Optional[str] = Field(None, max_length=100)
    payment_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=500)


class EnrollmentCreate(BaseModel):
    student: StudentInfo
    wave_id: int = Field(..., gt=0)
    initial_payment: Optional[InitialPayment] = None
    notes: Optional[str] = Field(None, max_length=1000)


class PublicEnrollmentCreate(StudentInfo):
    wave_id: int = Field(..., gt=0)
    initial_payment: Optional[InitialPayment] = None

    def to_student_info(self) -> StudentInfo:
        return StudentInfo.model_construct(
            first_name=self.first_name,
            last_name=self.last_name,
            phone=self.phone,
            email=self.email,
        )


class EnrollmentResult(BaseModel):
    enrollment_id: int
    student_id: int
    ledger_id: int


class PublicEnrollmentResult(EnrollmentResult):
    status: EnrollmentStatus
    total_due: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal
    confirmation_message: str


class EnrollmentRead(BaseModel):
    id: int
    student_id: int
    wave_id: int
    enrollment_date: date
    status: EnrollmentStatus
    notes: Optional[str] = None
    reviewed_by_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BookDeliveryRead(BaseModel):
    id: int
    enrollment_id: int
    book_number: int
    status: DeliveryStatus
    delivered_at: Optional[datetime] = None
    delivered_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class BookDeliveryUpdate(BaseModel):
    delivered: bool


class UndeliveredBook(BaseModel):
    """Row of the delivery desk list"""
    enrollment_id: int
    book_number: int
    student_name: str
    phone: str
    wave_id: int
    wave_name: str
    book_fee_paid: bool


class EnrollmentDetails(EnrollmentRead):
    student: StudentRead
    wave_name: str
    level_name: str
    ledger: LedgerRead
    payments: List[PaymentRead] = []
    books: List[BookDeliveryRead] = []


class EnrollmentSummary(BaseModel):
    """Row of the pending list and of the public phone lookup"""
    id: int
    status: EnrollmentStatus
    enrollment_date: date
    student_name: str
    phone: str
    wave_id: int
    wave_name: str
    total_due: Decimal
    amount_paid: Decimal
    amount_remaining: Decimal
    payment_status: str


class EnrollmentReview(BaseModel):
    approve: bool
    notes: Optional[str] = Field(None, max_length=1000)


class EnrollmentStatusUpdate(BaseModel):
    status: EnrollmentStatus
    notes: Optional[str] = Field(None, max_length=1000)
