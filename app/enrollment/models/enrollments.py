"""Enrollment Model - links one student to one wave"""
from datetime import date
from sqlalchemy import (
    Column,
    Integer,
    Text,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum
from app.core.database import Base


class EnrollmentStatus(str, Enum):
    active = "active"
    abandoned = "abandoned"
    completed = "completed"
    pending_review = "pending_review"  # Public self-enrollment awaiting staff
    rejected = "rejected"


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("student_id", "wave_id", name="uq_enrollments_student_wave"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    wave_id = Column(
        Integer, ForeignKey("waves.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    enrollment_date = Column(Date, nullable=False, default=date.today)
    status = Column(
        SQLEnum(EnrollmentStatus), nullable=False, default=EnrollmentStatus.active
    )
    notes = Column(Text, nullable=True)

    reviewed_by_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    student = relationship("Student", back_populates="enrollments")
    wave = relationship("Wave", back_populates="enrollments")
    ledger = relationship("BillingLedger", back_populates="enrollment", uselist=False)
    books = relationship(
        "BookDelivery", back_populates="enrollment", order_by="BookDelivery.book_number"
    )

    def __repr__(self):
        return (
            f"<Enrollment(id={self.id}, student_id={self.student_id}, "
            f"wave_id={self.wave_id}, status={self.status})>"
        )
