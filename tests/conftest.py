"""Pytest configuration and fixtures."""

from datetime import timedelta

import pytest

from booking_core import create_app
from booking_core.auth.identity import ExternalIdentity, IdentityVerificationError, IdentityVerifier
from booking_core.auth.principal import Principal
from booking_core.config import Config
from booking_core.events import EventDispatcher
from booking_core.extensions import db as _db
from booking_core.models import Appointment, AppointmentState, Organization, Role, User
from booking_core.models.base import utcnow
from booking_core.scheduling import DeadlineScheduler
from booking_core.services import EXTENSION_KEY, build_services


class TestConfig(Config):
    """Test configuration."""
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET_KEY = 'test-jwt-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    GOOGLE_CLIENT_ID = None

    # Tasks run inline; retries are kept short
    CELERY_TASK_ALWAYS_EAGER = True
    CELERY_TASK_EAGER_PROPAGATES = True
    SCHEDULER_MAX_RETRIES = 2

    RATELIMIT_ENABLED = False
    LOG_LEVEL = 'DEBUG'


PASSWORD = 'password123'


class RecordingDispatcher(EventDispatcher):
    """Keeps emitted events instead of queueing notification tasks."""

    def __init__(self):
        self.events = []

    def emit(self, events):
        self.events.extend(events)

    def named(self, name):
        return [event for event in self.events if event.name == name]


class RecordingScheduler(DeadlineScheduler):
    """Keeps scheduled checks instead of enqueueing them."""

    def __init__(self):
        self.calls = []

    def schedule_at(self, when, appointment_id, organization_id):
        self.calls.append((when, appointment_id, organization_id))


class FakeIdentityVerifier(IdentityVerifier):
    """Identity provider stand-in: only tokens registered with ``add`` verify."""

    def __init__(self):
        self.identities = {}
        self.verified = []

    def add(self, token, subject, email, name=''):
        self.identities[token] = ExternalIdentity(subject=subject, email=email, name=name)

    def verify(self, token):
        self.verified.append(token)
        try:
            return self.identities[token]
        except KeyError:
            raise IdentityVerificationError('Token not recognised')


@pytest.fixture(scope='function')
def events():
    return RecordingDispatcher()


@pytest.fixture(scope='function')
def scheduler():
    return RecordingScheduler()


@pytest.fixture(scope='function')
def identity_verifier():
    return FakeIdentityVerifier()


@pytest.fixture(scope='function')
def app(events, scheduler, identity_verifier):
    """Create and configure Flask app for testing."""
    app = create_app(TestConfig)
    app.extensions[EXTENSION_KEY] = build_services(
        app.config,
        events=events,
        scheduler=scheduler,
        identity_verifier=identity_verifier
    )

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def db(app):
    """Provide database for tests."""
    return _db


@pytest.fixture(scope='function')
def client(app):
    """Provide test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def services(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture(scope='function')
def org1(db):
    """Create test organization 1."""
    org = Organization(name='Organization 1', subdomain='org1')
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture(scope='function')
def org2(db):
    """Create test organization 2."""
    org = Organization(name='Organization 2', subdomain='org2')
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture(scope='function')
def make_user(db):
    """Factory: make_user(org, role, name) creates name@<subdomain>.test."""

    def _make_user(org, role, name=None, **fields):
        name = name or role.value
        user = User(
            organization_id=org.id,
            email=f'{name}@{org.subdomain}.test',
            first_name=name.title(),
            last_name='Tester',
            role=role,
            **fields
        )
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def admin1(org1, make_user):
    return make_user(org1, Role.ADMIN)


@pytest.fixture
def staff1(org1, make_user):
    return make_user(org1, Role.STAFF)


@pytest.fixture
def pro1(org1, make_user):
    return make_user(org1, Role.PROFESSIONAL)


@pytest.fixture
def other_pro1(org1, make_user):
    return make_user(org1, Role.PROFESSIONAL, 'other-professional')


@pytest.fixture
def guardian1(org1, make_user):
    return make_user(org1, Role.GUARDIAN)


@pytest.fixture
def other_guardian1(org1, make_user):
    return make_user(org1, Role.GUARDIAN, 'other-guardian')


@pytest.fixture
def admin2(org2, make_user):
    return make_user(org2, Role.ADMIN)


@pytest.fixture
def pro2(org2, make_user):
    return make_user(org2, Role.PROFESSIONAL)


@pytest.fixture
def guardian2(org2, make_user):
    return make_user(org2, Role.GUARDIAN)


def principal_for(user):
    return Principal(user, user.organization)


@pytest.fixture
def principal():
    return principal_for


@pytest.fixture
def auth_headers(services):
    """auth_headers(user, **extra) -> headers carrying a fresh bearer token."""

    def _auth_headers(user, **extra):
        headers = {'Authorization': f'Bearer {services.tokens.issue(user)}'}
        headers.update(extra)
        return headers

    return _auth_headers


@pytest.fixture
def make_appointment(db):
    """
    Factory writing an appointment straight to the database, skipping
    booking validation, so tests can start from any state.
    """

    def _make_appointment(professional, client, state=AppointmentState.DRAFT, **fields):
        now = utcnow()
        fields.setdefault('scheduled_at', now + timedelta(days=3))
        if state != AppointmentState.DRAFT:
            fields.setdefault('pre_confirmed_at', now)
        appointment = Appointment(
            organization_id=professional.organization_id,
            professional_id=professional.id,
            client_id=client.id,
            state=state,
            **fields
        )
        db.session.add(appointment)
        db.session.commit()
        return appointment

    return _make_appointment
