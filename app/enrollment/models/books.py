"""BookDelivery Model - one row per book handed out for an enrollment"""
from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum
from app.core.database import Base


class DeliveryStatus(str, Enum):
    not_delivered = "not_delivered"
    delivered = "delivered"


class BookDelivery(Base):
    __tablename__ = "book_deliveries"
    __table_args__ = (
        UniqueConstraint(
            "enrollment_id", "book_number", name="uq_book_deliveries_enrollment_book"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    enrollment_id = Column(
        Integer,
        ForeignKey("enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 1..level.required_book_count at enrollment time
    book_number = Column(Integer, nullable=False)

    status = Column(
        SQLEnum(DeliveryStatus), nullable=False, default=DeliveryStatus.not_delivered
    )
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    delivered_by_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    enrollment = relationship("Enrollment", back_populates="books")

    def __repr__(self):
        return (
            f"<BookDelivery(enrollment_id={self.enrollment_id}, "
            f"book_number={self.book_number}, status={self.status})>"
        )
