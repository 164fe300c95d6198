"""Resource bookings - storage-level guard against room/teacher double booking"""
from sqlalchemy import (
    Column,
    Integer,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from enum import Enum
from app.core.database import Base


class ResourceKind(str, Enum):
    room = "room"
    teacher = "teacher"


class ResourceBooking(Base):
    """
    One row per (resource, day, slot) held by an open wave. Rows are deleted
    when the wave is completed or cancelled, so the unique constraint only
    covers waves in planned/in_progress status.
    """
    __tablename__ = "resource_bookings"
    __table_args__ = (
        UniqueConstraint(
            "resource_kind",
            "resource_id",
            "day_id",
            "time_slot_id",
            name="uq_resource_bookings_slot",
        ),
    )

    id = Column(Integer, primary_key=True)
    resource_kind = Column(SQLEnum(ResourceKind), nullable=False)
    resource_id = Column(Integer, nullable=False)
    day_id = Column(Integer, ForeignKey("days.id"), nullable=False)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=False)
    wave_id = Column(
        Integer, ForeignKey("waves.id", ondelete="CASCADE"), nullable=False, index=True
    )

    wave = relationship("Wave", back_populates="bookings")

    def __repr__(self):
        return (
            f"<ResourceBooking({self.resource_kind}={self.resource_id}, "
            f"day_id={self.day_id}, time_slot_id={self.time_slot_id}, wave_id={self.wave_id})>"
        )
