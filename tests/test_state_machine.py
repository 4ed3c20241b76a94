"""Appointment lifecycle tests."""

import logging
from datetime import date, timedelta

import pytest
from sqlalchemy import update

import booking_core.appointments.service as service_module
from booking_core.appointments.state_machine import CANCEL, CONFIRM, TRANSITIONS, plan_transition
from booking_core.authz.policies import Action
from booking_core.errors import Forbidden, InvalidTransition, NotFound, ValidationFailed
from booking_core.events import CANCELLED, CONFIRMED, EXECUTED, PRE_CONFIRMED
from booking_core.models import Appointment, AppointmentState, AppointmentTransition, Student
from booking_core.models.base import as_utc, utcnow

S = AppointmentState


@pytest.fixture
def appointments(services):
    return services.appointments


def booking(professional, **fields):
    data = {
        'professional_id': professional.id,
        'scheduled_at': (utcnow() + timedelta(days=2)).isoformat(),
        'duration_minutes': 60,
    }
    data.update(fields)
    return data


class TestTransitionTable:

    def test_sources_and_targets(self):
        assert {a: (set(t.sources), t.target) for a, t in TRANSITIONS.items()} == {
            Action.PRE_CONFIRM: ({S.DRAFT}, S.PRE_CONFIRMED),
            Action.CONFIRM: ({S.PRE_CONFIRMED}, S.CONFIRMED),
            Action.EXECUTE: ({S.CONFIRMED}, S.EXECUTED),
            Action.CANCEL: ({S.DRAFT, S.PRE_CONFIRMED, S.CONFIRMED}, S.CANCELLED),
        }

    def test_terminal_states_have_no_way_out(self):
        for transition in TRANSITIONS.values():
            assert not transition.sources & {S.EXECUTED, S.CANCELLED}

    def test_credit_refund_flag(self, pro1, guardian1, make_appointment):
        now = utcnow()
        early = make_appointment(pro1, guardian1, state=S.CONFIRMED, uses_credits=True, credits_used=1,
                                 scheduled_at=now + timedelta(days=3))
        late = make_appointment(pro1, guardian1, state=S.CONFIRMED, uses_credits=True, credits_used=1,
                                scheduled_at=now + timedelta(hours=5))

        def refundable(appointment):
            plan = plan_transition(CANCEL, appointment, pro1.id, now)
            return plan.events[0].params['credits_refundable']

        assert refundable(early) is True
        assert refundable(late) is False


class TestBooking:

    def test_client_books_draft(self, appointments, principal, pro1, guardian1):
        appointment = appointments.book(principal(guardian1), booking(pro1))

        assert appointment.state == S.DRAFT
        assert appointment.client_id == guardian1.id
        assert appointment.organization_id == guardian1.organization_id
        history = appointment.transitions.all()
        assert [(t.from_state, t.to_state, t.actor_id) for t in history] == [(None, S.DRAFT, guardian1.id)]

    def test_client_always_books_for_themselves(self, appointments, principal, pro1, guardian1, other_guardian1):
        appointment = appointments.book(principal(guardian1), booking(pro1, client_id=other_guardian1.id))

        assert appointment.client_id == guardian1.id

    def test_staff_books_for_a_client(self, appointments, principal, staff1, pro1, guardian1):
        appointment = appointments.book(principal(staff1), booking(pro1, client_id=guardian1.id))

        assert appointment.client_id == guardian1.id

    def test_professional_books_only_own_sessions(self, appointments, principal, pro1, other_pro1, guardian1):
        appointments.book(principal(pro1), booking(pro1, client_id=guardian1.id))

        with pytest.raises(Forbidden):
            appointments.book(principal(pro1), booking(other_pro1, client_id=guardian1.id))

    def test_scheduled_time_must_be_future(self, appointments, principal, pro1, guardian1):
        past = (utcnow() - timedelta(minutes=1)).isoformat()

        with pytest.raises(ValidationFailed) as exc:
            appointments.book(principal(guardian1), booking(pro1, scheduled_at=past))
        assert 'scheduled_at' in exc.value.errors

    def test_field_validation(self, appointments, principal, guardian1, pro2):
        with pytest.raises(ValidationFailed) as exc:
            appointments.book(principal(guardian1), booking(
                pro2,
                duration_minutes=0,
                price='-5',
                uses_credits=True,
                credits_used=0,
            ))

        assert set(exc.value.errors) == {'professional_id', 'duration_minutes', 'price', 'credits_used'}

    def test_student_must_belong_to_client(self, appointments, principal, db, org1, pro1, guardian1,
                                           other_guardian1):
        student = Student(organization_id=org1.id, parent_id=other_guardian1.id, first_name='Kid', last_name='X')
        db.session.add(student)
        db.session.commit()

        with pytest.raises(ValidationFailed) as exc:
            appointments.book(principal(guardian1), booking(pro1, student_id=student.id))
        assert exc.value.errors['student_id'] == ['must belong to the booking client']

    def test_student_must_be_old_enough(self, appointments, principal, db, org1, pro1, guardian1):
        today = date.today()
        toddler = Student(organization_id=org1.id, parent_id=guardian1.id, first_name='Tot', last_name='X',
                          date_of_birth=date(today.year - 2, today.month, 1))
        pupil = Student(organization_id=org1.id, parent_id=guardian1.id, first_name='Kid', last_name='X',
                        date_of_birth=date(today.year - 8, 1, 1))
        db.session.add_all([toddler, pupil])
        db.session.commit()

        with pytest.raises(ValidationFailed) as exc:
            appointments.book(principal(guardian1), booking(pro1, student_id=toddler.id))
        assert exc.value.errors['student_id'] == ['must be at least 3 years old']

        appointment = appointments.book(principal(guardian1), booking(pro1, student_id=pupil.id))
        assert appointment.student_id == pupil.id

    def test_overlapping_confirmed_session(self, appointments, principal, pro1, guardian1, other_guardian1,
                                           make_appointment):
        start = utcnow() + timedelta(days=2)
        make_appointment(pro1, other_guardian1, state=S.CONFIRMED, scheduled_at=start)

        with pytest.raises(ValidationFailed):
            appointments.book(principal(guardian1), booking(
                pro1, scheduled_at=(start + timedelta(minutes=30)).isoformat()
            ))
        # Right after the existing session is fine
        appointments.book(principal(guardian1), booking(
            pro1, scheduled_at=(start + timedelta(minutes=60)).isoformat()
        ))


class TestTransitions:

    def test_full_lifecycle(self, appointments, principal, pro1, guardian1, events, scheduler, make_appointment):
        appointment = make_appointment(pro1, guardian1, scheduled_at=utcnow() - timedelta(hours=1))

        assert appointments.pre_confirm(appointment.id, principal(pro1)) == S.PRE_CONFIRMED
        assert appointments.confirm(appointment.id, principal(guardian1)) == S.CONFIRMED
        assert appointments.execute(appointment.id, principal(pro1), note='went well') == S.EXECUTED

        history = AppointmentTransition.query.filter_by(appointment_id=appointment.id).all()
        assert [(t.from_state, t.to_state, t.actor_id) for t in history] == [
            (S.DRAFT, S.PRE_CONFIRMED, pro1.id),
            (S.PRE_CONFIRMED, S.CONFIRMED, guardian1.id),
            (S.CONFIRMED, S.EXECUTED, pro1.id),
        ]
        assert history[-1].note == 'went well'
        assert [e.name for e in events.events] == [PRE_CONFIRMED, CONFIRMED, CONFIRMED, EXECUTED]
        assert appointment.executed_at is not None

    def test_pre_confirm_schedules_expiry(self, appointments, principal, pro1, guardian1, scheduler,
                                          make_appointment):
        appointment = make_appointment(pro1, guardian1)

        appointments.pre_confirm(appointment.id, principal(pro1))

        [(when, appointment_id, organization_id)] = scheduler.calls
        assert appointment_id == appointment.id
        assert organization_id == appointment.organization_id
        assert when == as_utc(appointment.pre_confirmed_at) + timedelta(hours=24)

    def test_execute_while_pre_confirmed(self, appointments, principal, pro1, guardian1, make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.PRE_CONFIRMED)

        with pytest.raises(InvalidTransition):
            appointments.execute(appointment.id, principal(pro1))
        assert appointment.state == S.PRE_CONFIRMED

    def test_client_cannot_cancel_confirmed(self, appointments, principal, pro1, guardian1, events,
                                            make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.CONFIRMED)

        with pytest.raises(Forbidden):
            appointments.cancel(appointment.id, principal(guardian1))
        assert appointment.state == S.CONFIRMED
        assert events.events == []

    def test_staff_cancels_confirmed(self, appointments, principal, staff1, pro1, guardian1, events,
                                     make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.CONFIRMED, uses_credits=True, credits_used=2)

        assert appointments.cancel(appointment.id, principal(staff1), note='professional ill') == S.CANCELLED

        assert appointment.cancelled_by_id == staff1.id
        assert appointment.cancellation_reason == 'professional ill'
        cancelled = events.named(CANCELLED)
        assert {e.user_id for e in cancelled} == {pro1.id, guardian1.id}
        assert all(e.params['credits_refundable'] for e in cancelled)

    def test_staff_cannot_execute(self, appointments, principal, staff1, pro1, guardian1, make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.CONFIRMED)

        with pytest.raises(Forbidden):
            appointments.execute(appointment.id, principal(staff1))

    def test_admin_can_execute(self, appointments, principal, admin1, pro1, guardian1, make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.CONFIRMED, scheduled_at=utcnow() - timedelta(hours=1))

        assert appointments.execute(appointment.id, principal(admin1)) == S.EXECUTED

    def test_other_organization(self, appointments, principal, pro1, guardian1, pro2, admin2, make_appointment):
        appointment = make_appointment(pro1, guardian1)

        for user in (pro2, admin2):
            with pytest.raises(Forbidden):
                appointments.pre_confirm(appointment.id, principal(user))
        assert appointment.state == S.DRAFT

    def test_unknown_appointment(self, appointments, principal, admin1):
        with pytest.raises(NotFound):
            appointments.confirm(4242, principal(admin1))

    def test_execute_before_start(self, appointments, principal, pro1, guardian1, events, make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.CONFIRMED)

        with pytest.raises(InvalidTransition) as exc:
            appointments.execute(appointment.id, principal(pro1))

        assert 'scheduled time' in exc.value.message
        assert appointment.state == S.CONFIRMED
        assert events.events == []

    def test_dispatcher_failure_keeps_transition_and_deadline(self, appointments, principal, pro1, guardian1,
                                                             scheduler, monkeypatch, caplog, make_appointment):
        appointment = make_appointment(pro1, guardian1)

        def broker_down(events):
            raise ConnectionError('broker unreachable')

        monkeypatch.setattr(appointments.events, 'emit', broker_down)

        with caplog.at_level(logging.ERROR, logger=service_module.__name__):
            assert appointments.pre_confirm(appointment.id, principal(pro1)) == S.PRE_CONFIRMED

        assert appointment.state == S.PRE_CONFIRMED
        [(when, appointment_id, _)] = scheduler.calls
        assert appointment_id == appointment.id
        assert when == as_utc(appointment.pre_confirmed_at) + timedelta(hours=24)
        [record] = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert record.exc_info is not None


# Who may attempt each move, whatever the state. "professional" is the
# assigned one and "client" the booking client.
MAY_ATTEMPT = {
    Action.PRE_CONFIRM: {'admin', 'staff', 'professional'},
    Action.CONFIRM: {'admin', 'staff', 'professional', 'client'},
    Action.EXECUTE: {'admin', 'professional'},
    Action.CANCEL: {'admin', 'staff', 'professional', 'client'},
}

ACTOR_FIXTURES = {
    'admin': 'admin1',
    'staff': 'staff1',
    'professional': 'pro1',
    'other_professional': 'other_pro1',
    'client': 'guardian1',
    'other_client': 'other_guardian1',
}


def expected_outcome(actor, state, action):
    transition = TRANSITIONS[action]
    if actor not in MAY_ATTEMPT[action]:
        return Forbidden
    if state not in transition.sources:
        return InvalidTransition
    if action == Action.CANCEL and state == S.CONFIRMED and actor in ('professional', 'client'):
        return Forbidden
    return transition.target


class TestCheckOrder:
    """Relationship first, then state, then limits that depend on the state."""

    @pytest.mark.parametrize('action', list(TRANSITIONS))
    @pytest.mark.parametrize('state', list(AppointmentState))
    @pytest.mark.parametrize('actor', list(ACTOR_FIXTURES))
    def test_outcome(self, request, appointments, principal, pro1, guardian1, make_appointment,
                     actor, state, action):
        user = request.getfixturevalue(ACTOR_FIXTURES[actor])
        appointment = make_appointment(pro1, guardian1, state=state, scheduled_at=utcnow() - timedelta(hours=1))
        expected = expected_outcome(actor, state, action)

        if isinstance(expected, AppointmentState):
            assert appointments.transition(appointment.id, principal(user), action) == expected
        else:
            with pytest.raises(expected):
                appointments.transition(appointment.id, principal(user), action)
            assert appointment.state == state

    def test_denial_does_not_reveal_state(self, appointments, principal, pro1, guardian1, other_guardian1,
                                          make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.EXECUTED)

        with pytest.raises(Forbidden) as exc:
            appointments.confirm(appointment.id, principal(other_guardian1))

        assert 'executed' not in exc.value.message

    def test_role_without_capability_on_wrong_state(self, appointments, principal, pro1, guardian1,
                                                    make_appointment):
        appointment = make_appointment(pro1, guardian1)

        with pytest.raises(Forbidden):
            appointments.execute(appointment.id, principal(guardian1))

    def test_allowed_actions_match_outcomes(self, appointments, principal, staff1, pro1, guardian1,
                                            make_appointment):
        upcoming = make_appointment(pro1, guardian1, state=S.CONFIRMED)
        started = make_appointment(pro1, guardian1, state=S.CONFIRMED, scheduled_at=utcnow() - timedelta(hours=1))

        assert appointments.allowed_actions(principal(pro1), upcoming) == []
        assert appointments.allowed_actions(principal(pro1), started) == [Action.EXECUTE]
        assert appointments.allowed_actions(principal(staff1), upcoming) == [Action.CANCEL]


class TestConcurrency:

    def test_stale_write_is_retried(self, appointments, principal, db, pro1, guardian1, monkeypatch,
                                    make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.PRE_CONFIRMED)
        calls = []

        def plan_behind_their_back(*args, **kwargs):
            calls.append(args[0])
            if len(calls) == 1:
                # Someone else bumps the row between our read and our write
                table = Appointment.__table__
                db.session.execute(
                    update(table).where(table.c.id == appointment.id).values(version=table.c.version + 1)
                )
            return plan_transition(*args, **kwargs)

        monkeypatch.setattr(service_module, 'plan_transition', plan_behind_their_back)

        assert appointments.confirm(appointment.id, principal(guardian1)) == S.CONFIRMED
        assert calls == [CONFIRM, CONFIRM]
        assert AppointmentTransition.query.filter_by(
            appointment_id=appointment.id, to_state=S.CONFIRMED
        ).count() == 1

    def test_losing_a_race_to_the_same_transition(self, appointments, principal, db, pro1, guardian1, events,
                                                  monkeypatch, make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.PRE_CONFIRMED)
        real_commit = appointments._commit
        raced = []

        def commit_after_rival(appointment_, plan, actor_id, note):
            if not raced:
                raced.append(True)
                db.session.rollback()
                # The professional confirms first
                appointments.confirm(appointment.id, principal(pro1))
                return False
            return real_commit(appointment_, plan, actor_id, note)

        monkeypatch.setattr(appointments, '_commit', commit_after_rival)

        with pytest.raises(InvalidTransition):
            appointments.confirm(appointment.id, principal(guardian1))

        assert appointment.state == S.CONFIRMED
        assert len(events.named(CONFIRMED)) == 2
        assert AppointmentTransition.query.filter_by(
            appointment_id=appointment.id, to_state=S.CONFIRMED
        ).one().actor_id == pro1.id


class TestEditing:

    def test_update_draft(self, appointments, principal, pro1, guardian1, make_appointment):
        appointment = make_appointment(pro1, guardian1)
        later = utcnow() + timedelta(days=5)

        appointments.update(principal(guardian1), appointment.id, {'scheduled_at': later.isoformat(), 'notes': 'x'})

        assert as_utc(appointment.scheduled_at) == later
        assert appointment.notes == 'x'

    def test_only_notes_after_draft(self, appointments, principal, pro1, guardian1, make_appointment):
        appointment = make_appointment(pro1, guardian1, state=S.CONFIRMED)

        appointments.update(principal(pro1), appointment.id, {'notes': 'bring the book'})
        with pytest.raises(InvalidTransition):
            appointments.update(principal(pro1), appointment.id, {'duration_minutes': 30})

    def test_state_is_not_editable(self, appointments, principal, admin1, pro1, guardian1, make_appointment):
        appointment = make_appointment(pro1, guardian1)

        with pytest.raises(ValidationFailed):
            appointments.update(principal(admin1), appointment.id, {'state': 'executed'})

    def test_destroy_draft_only(self, appointments, principal, db, staff1, pro1, guardian1, make_appointment):
        draft = make_appointment(pro1, guardian1)
        pending = make_appointment(pro1, guardian1, state=S.PRE_CONFIRMED)
        draft_id = draft.id

        with pytest.raises(Forbidden):
            appointments.destroy(principal(guardian1), draft_id)
        with pytest.raises(InvalidTransition):
            appointments.destroy(principal(staff1), pending.id)

        appointments.destroy(principal(staff1), draft_id)
        assert db.session.get(Appointment, draft_id) is None
