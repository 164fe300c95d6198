"""Wave Model - one scheduled offering of a level"""
from sqlalchemy import (
    Column,
    Integer,
    String,
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


class WaveStatus(str, Enum):
    planned = "planned"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


# Waves that still hold rooms/teachers and accept enrollments
OPEN_WAVE_STATUSES = (WaveStatus.planned, WaveStatus.in_progress)


class Wave(Base):
    __tablename__ = "waves"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)

    level_id = Column(
        Integer, ForeignKey("levels.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    teacher_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    room_id = Column(
        Integer, ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True, index=True
    )

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    # NULL means unlimited
    capacity_max = Column(Integer, nullable=True)
    status = Column(SQLEnum(WaveStatus), nullable=False, default=WaveStatus.planned)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    level = relationship("Level", back_populates="waves")
    teacher = relationship("StaffUser", foreign_keys=[teacher_id])
    room = relationship("Room")
    schedules = relationship(
        "WaveSchedule",
        back_populates="wave",
        cascade="all, delete-orphan",
        order_by="WaveSchedule.id",
    )
    bookings = relationship(
        "ResourceBooking", back_populates="wave", cascade="all, delete-orphan"
    )
    enrollments = relationship("Enrollment", back_populates="wave")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_WAVE_STATUSES

    def __repr__(self):
        return f"<Wave(id={self.id}, name='{self.name}', status={self.status})>"


class WaveSchedule(Base):
    """One weekly (day, time slot) occurrence of a wave"""
    __tablename__ = "wave_schedules"
    __table_args__ = (
        UniqueConstraint("wave_id", "day_id", "time_slot_id", name="uq_wave_schedules_slot"),
    )

    id = Column(Integer, primary_key=True)
    wave_id = Column(
        Integer, ForeignKey("waves.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_id = Column(Integer, ForeignKey("days.id"), nullable=False)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=False)

    wave = relationship("Wave", back_populates="schedules")
    day = relationship("Day")
    time_slot = relationship("TimeSlot")

    def __repr__(self):
        return f"<WaveSchedule(wave_id={self.wave_id}, day_id={self.day_id}, time_slot_id={self.time_slot_id})>"
