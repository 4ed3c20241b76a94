"""
Appointment lifecycle.

    draft -> pre_confirmed -> confirmed -> executed
    draft | pre_confirmed | confirmed -> cancelled

This module only knows which moves exist and what each one changes. It
never touches the session; AppointmentService applies the plan, persists
it and hands the events to the dispatcher.
"""

from dataclasses import dataclass, field
from datetime import timedelta

from booking_core.authz.policies import Action
from booking_core.errors import InvalidTransition
from booking_core.events import CANCELLED, CONFIRMED, EXECUTED, EXPIRED, PRE_CONFIRMED, DomainEvent
from booking_core.models.appointment import AppointmentState
from booking_core.models.base import as_utc

S = AppointmentState


@dataclass(frozen=True)
class Transition:
    action: Action
    sources: frozenset
    target: AppointmentState

    @property
    def verb(self):
        return self.action.value.replace('_', '-')


PRE_CONFIRM = Transition(Action.PRE_CONFIRM, frozenset({S.DRAFT}), S.PRE_CONFIRMED)
CONFIRM = Transition(Action.CONFIRM, frozenset({S.PRE_CONFIRMED}), S.CONFIRMED)
EXECUTE = Transition(Action.EXECUTE, frozenset({S.CONFIRMED}), S.EXECUTED)
CANCEL = Transition(Action.CANCEL, frozenset({S.DRAFT, S.PRE_CONFIRMED, S.CONFIRMED}), S.CANCELLED)

TRANSITIONS = {t.action: t for t in (PRE_CONFIRM, CONFIRM, EXECUTE, CANCEL)}


@dataclass
class TransitionPlan:
    """Column changes, events to emit after commit, and an optional expiry deadline."""

    transition: Transition
    from_state: AppointmentState
    changes: dict = field(default_factory=dict)
    events: list = field(default_factory=list)
    deadline: object = None

    def apply_to(self, appointment):
        for name, value in self.changes.items():
            setattr(appointment, name, value)


def check_source(transition, appointment):
    if appointment.state not in transition.sources:
        raise InvalidTransition(
            f"Cannot {transition.verb} an appointment that is {appointment.state.value}"
        )


def check_preconditions(transition, appointment, now):
    """State and timing checks for ``transition`` at ``now``. Raises InvalidTransition."""
    check_source(transition, appointment)
    # A session is only executed once it has started
    if transition is EXECUTE and as_utc(appointment.scheduled_at) > now:
        raise InvalidTransition("Cannot execute an appointment before its scheduled time")


def credits_refundable(appointment, now, credit_window):
    """Credits come back only for confirmed sessions cancelled well ahead of time."""
    return bool(
        appointment.uses_credits
        and appointment.state == S.CONFIRMED
        and as_utc(appointment.scheduled_at) - now > credit_window
    )


def plan_transition(transition, appointment, actor_id, now, note=None,
                    pre_confirmation_window=timedelta(hours=24),
                    credit_window=timedelta(hours=24),
                    expired=False):
    """
    Work out what ``transition`` does to ``appointment`` at ``now``.

    ``actor_id`` is None when the system acts (expiry). Raises
    InvalidTransition when the appointment is not in a source state, or
    when it would be executed before its scheduled time.
    """
    check_preconditions(transition, appointment, now)
    plan = TransitionPlan(transition=transition, from_state=appointment.state)
    plan.changes['state'] = transition.target
    appointment_id = appointment.id

    if transition is PRE_CONFIRM:
        plan.changes['pre_confirmed_at'] = now
        plan.deadline = now + pre_confirmation_window
        plan.events.append(DomainEvent(PRE_CONFIRMED, appointment.client_id, appointment_id, {
            'scheduled_at': as_utc(appointment.scheduled_at).isoformat(),
            'expires_at': plan.deadline.isoformat(),
        }))

    elif transition is CONFIRM:
        plan.changes['confirmed_at'] = now
        for user_id in (appointment.client_id, appointment.professional_id):
            plan.events.append(DomainEvent(CONFIRMED, user_id, appointment_id, {
                'scheduled_at': as_utc(appointment.scheduled_at).isoformat(),
            }))

    elif transition is EXECUTE:
        plan.changes['executed_at'] = now
        plan.events.append(DomainEvent(EXECUTED, appointment.client_id, appointment_id))

    elif transition is CANCEL:
        reason = note or ('Pre-confirmation window expired' if expired else None)
        plan.changes.update(
            cancelled_at=now,
            cancelled_by_id=actor_id,
            cancellation_reason=reason,
        )
        params = {
            'reason': reason,
            'cancelled_by': actor_id,
            'credits_refundable': credits_refundable(appointment, now, credit_window),
        }
        for user_id in (appointment.client_id, appointment.professional_id):
            plan.events.append(DomainEvent(CANCELLED, user_id, appointment_id, dict(params)))
        if expired:
            plan.events.append(DomainEvent(EXPIRED, appointment.client_id, appointment_id))

    return plan
