"""Appointment operations: booking, edits, transitions and automatic expiry."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm.exc import StaleDataError

from booking_core.appointments.state_machine import CANCEL, TRANSITIONS, check_preconditions, plan_transition
from booking_core.authz.policies import Action, ResourceKind
from booking_core.datastore import data_store_guard
from booking_core.errors import InvalidTransition, NotFound, ValidationFailed
from booking_core.events import REMINDER, DomainEvent
from booking_core.extensions import db
from booking_core.models import Appointment, AppointmentState, AppointmentTransition, Role, Student, User
from booking_core.models.base import as_utc, utcnow

logger = logging.getLogger(__name__)

APPOINTMENT = ResourceKind.APPOINTMENT

MAX_DURATION_MINUTES = 24 * 60
MIN_STUDENT_AGE = 3

# Draft-only fields a caller may edit after booking
EDITABLE_FIELDS = ('scheduled_at', 'duration_minutes', 'notes', 'student_id', 'price')

# Outcomes of a pre-confirmation check
NOOP = 'noop'
EXPIRED = 'expired'
REMINDED = 'reminded'


def parse_datetime(value):
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value:
        raise ValueError('must be an ISO 8601 datetime')
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return as_utc(datetime.fromisoformat(value))


class AppointmentService:
    """
    Every appointment write goes through here.

    Transitions are serialized per appointment with the ``version`` column:
    the UPDATE only matches the version that was read, so of two concurrent
    writers exactly one succeeds. The loser reloads and tries once more,
    which usually ends in InvalidTransition because the state moved on.
    """

    def __init__(self, authz, events, scheduler,
                 pre_confirmation_window=timedelta(hours=24),
                 credit_window=timedelta(hours=24),
                 clock=utcnow):
        self.authz = authz
        self.events = events
        self.scheduler = scheduler
        self.pre_confirmation_window = pre_confirmation_window
        self.credit_window = credit_window
        self.clock = clock

    # Booking and edits

    def book(self, principal, data):
        """Create a draft appointment. Returns the new Appointment."""
        self.authz.authorize(principal, Action.CREATE, kind=APPOINTMENT)
        now = self.clock()
        data = dict(data)

        # Clients always book for themselves
        if principal.role == Role.GUARDIAN:
            data['client_id'] = principal.user_id

        with data_store_guard('appointment booking'):
            fields = self._validate_booking(principal.organization_id, data, now)
            appointment = Appointment(organization_id=principal.organization_id, state=AppointmentState.DRAFT, **fields)
            self.authz.authorize(principal, Action.CREATE, appointment)

            db.session.add(appointment)
            db.session.flush()
            self._record(appointment, None, AppointmentState.DRAFT, principal.user_id)
            db.session.commit()

        logger.info(
            f"Appointment {appointment.id} booked by user {principal.user_id} "
            f"in org {principal.organization_id}"
        )
        return appointment

    def update(self, principal, appointment_id, data):
        unknown = sorted(set(data) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationFailed(errors={name: ['cannot be changed'] for name in unknown})

        appointment = self.authz.find(principal, APPOINTMENT, appointment_id, action=None)
        self.authz.authorize_attempt(principal, Action.UPDATE, appointment)
        if appointment.state != AppointmentState.DRAFT and set(data) - {'notes'}:
            raise InvalidTransition(
                f"Only notes can change once an appointment is {appointment.state.value}"
            )
        self.authz.authorize(principal, Action.UPDATE, appointment)

        with data_store_guard('appointment update'):
            merged = {
                'professional_id': appointment.professional_id,
                'client_id': appointment.client_id,
                'scheduled_at': appointment.scheduled_at,
                'duration_minutes': appointment.duration_minutes,
                'student_id': appointment.student_id,
                'price': appointment.price,
                'notes': appointment.notes,
                'uses_credits': appointment.uses_credits,
                'credits_used': appointment.credits_used,
            }
            merged.update(data)
            fields = self._validate_booking(
                principal.organization_id, merged, self.clock(), exclude_id=appointment.id,
                check_schedule='scheduled_at' in data or 'duration_minutes' in data
            )
            for name in data:
                setattr(appointment, name, fields[name])
            try:
                db.session.commit()
            except StaleDataError:
                db.session.rollback()
                raise InvalidTransition('Appointment was modified concurrently')

        logger.info(f"Appointment {appointment.id} updated by user {principal.user_id}")
        return appointment

    def destroy(self, principal, appointment_id):
        appointment = self.authz.find(principal, APPOINTMENT, appointment_id, action=None)
        self.authz.authorize_attempt(principal, Action.DELETE, appointment)
        if appointment.state != AppointmentState.DRAFT:
            raise InvalidTransition('Only draft appointments can be deleted')
        self.authz.authorize(principal, Action.DELETE, appointment)

        with data_store_guard('appointment deletion'):
            AppointmentTransition.query.filter_by(appointment_id=appointment.id).delete()
            db.session.delete(appointment)
            db.session.commit()
        logger.info(f"Appointment {appointment_id} deleted by user {principal.user_id}")

    # Transitions

    def pre_confirm(self, appointment_id, principal, note=None):
        return self.transition(appointment_id, principal, Action.PRE_CONFIRM, note)

    def confirm(self, appointment_id, principal, note=None):
        return self.transition(appointment_id, principal, Action.CONFIRM, note)

    def execute(self, appointment_id, principal, note=None):
        return self.transition(appointment_id, principal, Action.EXECUTE, note)

    def cancel(self, appointment_id, principal, note=None):
        return self.transition(appointment_id, principal, Action.CANCEL, note)

    def transition(self, appointment_id, principal, action, note=None):
        """
        Apply one transition on behalf of ``principal``. Returns the new state.

        Checks run in a fixed order:
        1. lookup and tenant gate (NotFound or Forbidden)
        2. capability and relationship to the appointment (Forbidden)
        3. state and timing preconditions (InvalidTransition)
        4. state-dependent role limits, e.g. clients cancelling a confirmed
           session (Forbidden)
        """
        transition = TRANSITIONS[action]

        for attempt in range(2):
            appointment = self.authz.find(principal, APPOINTMENT, appointment_id, action=None)
            self.authz.authorize_attempt(principal, action, appointment)
            now = self.clock()
            check_preconditions(transition, appointment, now)
            self.authz.authorize(principal, action, appointment)

            plan = plan_transition(
                transition, appointment, principal.user_id, now, note=note,
                pre_confirmation_window=self.pre_confirmation_window,
                credit_window=self.credit_window
            )
            if self._commit(appointment, plan, principal.user_id, note):
                break
            logger.warning(
                f"Concurrent write on appointment {appointment_id} during {transition.verb}, "
                f"attempt {attempt + 1}"
            )
        else:
            raise InvalidTransition('Appointment was modified concurrently')

        logger.info(
            f"Appointment {appointment.id} {plan.from_state.value} -> {transition.target.value} "
            f"by user {principal.user_id}"
        )
        self._after_commit(appointment, plan)
        return transition.target

    def allowed_actions(self, principal, appointment):
        now = self.clock()
        allowed = []
        for action, transition in TRANSITIONS.items():
            try:
                check_preconditions(transition, appointment, now)
            except InvalidTransition:
                continue
            if self.authz.can(principal, action, appointment):
                allowed.append(action)
        return allowed

    # Expiry

    def check_pre_confirmation(self, appointment_id, organization_id, now=None):
        """
        Scheduled check for an appointment waiting on client confirmation.

        Runs as the system actor with the organization id it was enqueued
        with. Safe to run any number of times: once the appointment has left
        pre_confirmed every further run is a no-op.
        """
        for attempt in range(2):
            with data_store_guard('pre-confirmation check'):
                appointment = Appointment.get_for_tenant(appointment_id, organization_id)

            if appointment.state != AppointmentState.PRE_CONFIRMED:
                logger.info(f"Appointment {appointment_id} is {appointment.state.value}, nothing to expire")
                return NOOP

            now = as_utc(now) if now is not None else self.clock()
            elapsed = now - as_utc(appointment.pre_confirmed_at)

            if elapsed < self.pre_confirmation_window:
                remaining = self.pre_confirmation_window - elapsed
                self.scheduler.schedule_at(now + remaining, appointment.id, organization_id)
                self._emit([DomainEvent(REMINDER, appointment.client_id, appointment.id, {
                    'remaining_hours': int(remaining.total_seconds() // 3600),
                })], appointment.id)
                logger.info(f"Appointment {appointment_id} awaiting confirmation, rechecking in {remaining}")
                return REMINDED

            plan = plan_transition(
                CANCEL, appointment, None, now,
                credit_window=self.credit_window,
                expired=True
            )
            if self._commit(appointment, plan, None, plan.changes['cancellation_reason']):
                logger.info(f"Appointment {appointment_id} expired after {elapsed} without confirmation")
                self._after_commit(appointment, plan)
                return EXPIRED
            logger.warning(f"Concurrent write on appointment {appointment_id} during expiry, attempt {attempt + 1}")

        # Someone else moved it both times; whoever won emitted their own events
        return NOOP

    # Internals

    def _commit(self, appointment, plan, actor_id, note):
        """Persist a plan. False when another writer got there first."""
        with data_store_guard('appointment transition'):
            plan.apply_to(appointment)
            self._record(appointment, plan.from_state, plan.transition.target, actor_id, note)
            try:
                db.session.commit()
            except StaleDataError:
                db.session.rollback()
                return False
        return True

    def _after_commit(self, appointment, plan):
        if plan.deadline is not None:
            self.scheduler.schedule_at(plan.deadline, appointment.id, appointment.organization_id)
        if plan.events:
            self._emit(plan.events, appointment.id)

    def _emit(self, events, appointment_id):
        """Hand events to the dispatcher. The state change is already committed, so a failure is only logged."""
        try:
            self.events.emit(events)
        except Exception:
            logger.error(
                f"Could not dispatch {', '.join(e.name for e in events)} for appointment {appointment_id}",
                exc_info=True
            )

    def _record(self, appointment, from_state, to_state, actor_id, note=None):
        db.session.add(AppointmentTransition(
            organization_id=appointment.organization_id,
            appointment_id=appointment.id,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor_id,
            note=note
        ))

    def _validate_booking(self, organization_id, data, now, exclude_id=None, check_schedule=True):
        errors = {}
        fields = {}

        try:
            fields['scheduled_at'] = parse_datetime(data.get('scheduled_at'))
        except (TypeError, ValueError):
            errors['scheduled_at'] = ['must be an ISO 8601 datetime']
        else:
            if check_schedule and fields['scheduled_at'] <= now:
                errors['scheduled_at'] = ['must be in the future']

        duration = data.get('duration_minutes', 60)
        if isinstance(duration, bool) or not isinstance(duration, int):
            errors['duration_minutes'] = ['must be an integer']
        elif not 0 < duration <= MAX_DURATION_MINUTES:
            errors['duration_minutes'] = [f'must be between 1 and {MAX_DURATION_MINUTES}']
        fields['duration_minutes'] = duration

        professional = self._tenant_user(organization_id, data.get('professional_id'))
        if professional is None or professional.role != Role.PROFESSIONAL:
            errors['professional_id'] = ['must name a professional in this organization']
        fields['professional_id'] = data.get('professional_id')

        client = self._tenant_user(organization_id, data.get('client_id'))
        if client is None:
            errors['client_id'] = ['must name a user in this organization']
        fields['client_id'] = data.get('client_id')

        student_id = data.get('student_id')
        if student_id is not None:
            try:
                student = Student.get_for_tenant(student_id, organization_id)
            except NotFound:
                errors['student_id'] = ['must name a student in this organization']
            else:
                if client is not None and student.parent_id != client.id:
                    errors['student_id'] = ['must belong to the booking client']
                elif student.age is not None and student.age < MIN_STUDENT_AGE:
                    errors['student_id'] = [f'must be at least {MIN_STUDENT_AGE} years old']
        fields['student_id'] = student_id

        price = data.get('price')
        if price is not None:
            try:
                price = Decimal(str(price))
            except InvalidOperation:
                errors['price'] = ['must be a number']
            else:
                if price < 0:
                    errors['price'] = ['must not be negative']
        fields['price'] = price

        uses_credits = bool(data.get('uses_credits', False))
        credits_used = data.get('credits_used')
        if uses_credits:
            if isinstance(credits_used, bool) or not isinstance(credits_used, int) or credits_used <= 0:
                errors['credits_used'] = ['must be a positive integer when paying with credits']
        elif credits_used is not None:
            errors['credits_used'] = ['only allowed when paying with credits']
        fields['uses_credits'] = uses_credits
        fields['credits_used'] = credits_used

        fields['notes'] = data.get('notes')

        if check_schedule and not errors and self._has_conflict(
                organization_id, fields['professional_id'], fields['scheduled_at'],
                fields['duration_minutes'], exclude_id):
            errors['scheduled_at'] = ['professional already has an appointment at this time']

        if errors:
            raise ValidationFailed(errors=errors)
        return fields

    def _tenant_user(self, organization_id, user_id):
        if user_id is None:
            return None
        return User.tenant_query(organization_id).filter_by(id=user_id).first()

    def _has_conflict(self, organization_id, professional_id, scheduled_at, duration_minutes, exclude_id=None):
        window_start = scheduled_at - timedelta(minutes=MAX_DURATION_MINUTES)
        window_end = scheduled_at + timedelta(minutes=duration_minutes)
        query = Appointment.tenant_query(organization_id).filter(
            Appointment.professional_id == professional_id,
            Appointment.state.notin_([AppointmentState.DRAFT, AppointmentState.CANCELLED]),
            Appointment.scheduled_at < window_end,
            Appointment.scheduled_at > window_start
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return any(existing.overlaps(scheduled_at, duration_minutes) for existing in query)
