"""Database models package."""

from booking_core.models.organization import Organization
from booking_core.models.user import Role, User
from booking_core.models.student import Student
from booking_core.models.appointment import Appointment, AppointmentState, AppointmentTransition
from booking_core.models.post import Like, Post

__all__ = [
    'Organization', 'Role', 'User', 'Student',
    'Appointment', 'AppointmentState', 'AppointmentTransition',
    'Post', 'Like',
]
