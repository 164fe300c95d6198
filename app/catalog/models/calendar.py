from sqlalchemy import Column, Integer, String, Time, UniqueConstraint
from app.core.database import Base


class Day(Base):
    __tablename__ = "days"

    id = Column(Integer, primary_key=True)
    name = Column(String(20), nullable=False, unique=True)
    # Monday = 1
    display_order = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<Day(id={self.id}, name='{self.name}')>"


class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("start_time", "end_time", name="uq_time_slots_range"),
    )

    id = Column(Integer, primary_key=True)
    label = Column(String(50), nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    def __repr__(self):
        return f"<TimeSlot(id={self.id}, {self.start_time}-{self.end_time})>"
