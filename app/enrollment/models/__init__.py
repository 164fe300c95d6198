from app.core.database import Base
from .students import Student
from .enrollments import Enrollment, EnrollmentStatus
from .books import BookDelivery, DeliveryStatus

__all__ = [
    "Base",
    "Student",
    "Enrollment",
    "EnrollmentStatus",
    "BookDelivery",
    "DeliveryStatus",
]
