"""Appointment model and its transition audit trail."""

import enum
from datetime import timedelta

from booking_core.extensions import db
from booking_core.models.base import TenantScopedMixin, TimestampMixin, as_utc, isoformat, utcnow


class AppointmentState(str, enum.Enum):
    DRAFT = 'draft'
    PRE_CONFIRMED = 'pre_confirmed'
    CONFIRMED = 'confirmed'
    EXECUTED = 'executed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self):
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({AppointmentState.EXECUTED, AppointmentState.CANCELLED})

_state_type = db.Enum(
    AppointmentState,
    native_enum=False,
    length=20,
    values_callable=lambda states: [s.value for s in states]
)


class Appointment(db.Model, TenantScopedMixin, TimestampMixin):
    """
    A booked session between a professional and a client.

    - ORG-OWNS-RESOURCE: organization_id (from TenantScopedMixin)
    - USER-OWNS-RESOURCE: client_id is the owning client
    - state only changes through the state machine, which bumps ``version``
      on every write so concurrent transitions cannot both apply
    - never deleted once it leaves draft; cancellation is a state
    """

    __tablename__ = 'appointments'

    id = db.Column(db.Integer, primary_key=True)
    professional_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=True, index=True)

    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    state = db.Column(_state_type, nullable=False, default=AppointmentState.DRAFT, index=True)
    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}
    notes = db.Column(db.Text, nullable=True)

    pre_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    executed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # NULL with a cancelled state means the system cancelled it
    cancelled_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    price = db.Column(db.Numeric(10, 2), nullable=True)
    uses_credits = db.Column(db.Boolean, nullable=False, default=False)
    credits_used = db.Column(db.Integer, nullable=True)

    # Relationships
    organization = db.relationship('Organization', back_populates='appointments')
    professional = db.relationship('User', foreign_keys=[professional_id])
    client = db.relationship('User', foreign_keys=[client_id])
    cancelled_by = db.relationship('User', foreign_keys=[cancelled_by_id])
    student = db.relationship('Student')
    transitions = db.relationship(
        'AppointmentTransition',
        back_populates='appointment',
        lazy='dynamic',
        order_by='AppointmentTransition.id'
    )

    @property
    def ends_at(self):
        return as_utc(self.scheduled_at) + timedelta(minutes=self.duration_minutes)

    def overlaps(self, scheduled_at, duration_minutes):
        start = as_utc(scheduled_at)
        end = start + timedelta(minutes=duration_minutes)
        return as_utc(self.scheduled_at) < end and start < self.ends_at

    def is_participant(self, user_id):
        return user_id in (self.client_id, self.professional_id)

    def __repr__(self):
        return f'<Appointment {self.id} {self.state.value}>'

    def to_dict(self):
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'professional_id': self.professional_id,
            'client_id': self.client_id,
            'student_id': self.student_id,
            'scheduled_at': isoformat(self.scheduled_at),
            'ends_at': isoformat(self.ends_at),
            'duration_minutes': self.duration_minutes,
            'state': self.state.value,
            'notes': self.notes,
            'pre_confirmed_at': isoformat(self.pre_confirmed_at),
            'confirmed_at': isoformat(self.confirmed_at),
            'executed_at': isoformat(self.executed_at),
            'cancellation_reason': self.cancellation_reason,
            'cancelled_at': isoformat(self.cancelled_at),
            'cancelled_by_id': self.cancelled_by_id,
            'price': str(self.price) if self.price is not None else None,
            'uses_credits': self.uses_credits,
            'credits_used': self.credits_used,
            'created_at': isoformat(self.created_at)
        }


class AppointmentTransition(db.Model, TenantScopedMixin):
    """One executed state change: who moved the appointment, when, and why."""

    __tablename__ = 'appointment_transitions'

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=False, index=True)
    from_state = db.Column(_state_type, nullable=True)
    to_state = db.Column(_state_type, nullable=False)
    # NULL actor is the system (automatic expiry)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    appointment = db.relationship('Appointment', back_populates='transitions')

    def to_dict(self):
        return {
            'from_state': self.from_state.value if self.from_state else None,
            'to_state': self.to_state.value,
            'actor_id': self.actor_id,
            'note': self.note,
            'created_at': isoformat(self.created_at)
        }
