from app.core.database import Base
from .waves import Wave, WaveSchedule, WaveStatus, OPEN_WAVE_STATUSES
from .bookings import ResourceBooking, ResourceKind

__all__ = [
    "Base",
    "Wave",
    "WaveSchedule",
    "WaveStatus",
    "OPEN_WAVE_STATUSES",
    "ResourceBooking",
    "ResourceKind",
]
