from app.core.database import Base
from .users import StaffUser, StaffRole
from .levels import Level
from .rooms import Room
from .calendar import Day, TimeSlot

__all__ = [
    "Base",
    "StaffUser",
    "StaffRole",
    "Level",
    "Room",
    "Day",
    "TimeSlot",
]
