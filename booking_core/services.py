"""Wiring of the core collaborators for one application."""

from dataclasses import dataclass

from flask import current_app

from booking_core.appointments.service import AppointmentService
from booking_core.auth.identity import GoogleIdentityVerifier
from booking_core.auth.principal import PrincipalResolver
from booking_core.auth.tokens import TokenService
from booking_core.authz.engine import AuthorizationEngine
from booking_core.events import CeleryEventDispatcher
from booking_core.scheduling import CeleryDeadlineScheduler
from booking_core.tenancy import TenantResolver

EXTENSION_KEY = 'booking_core'


@dataclass
class Services:
    tenants: TenantResolver
    tokens: TokenService
    principals: PrincipalResolver
    authz: AuthorizationEngine
    appointments: AppointmentService
    events: object
    scheduler: object


def build_services(config, events=None, scheduler=None, identity_verifier=None):
    """
    Build the collaborators from app config. Tests pass their own event
    dispatcher, scheduler and identity verifier.
    """
    events = events or CeleryEventDispatcher()
    scheduler = scheduler or CeleryDeadlineScheduler()
    if identity_verifier is None and config.get('GOOGLE_CLIENT_ID'):
        identity_verifier = GoogleIdentityVerifier(
            config['GOOGLE_CLIENT_ID'],
            timeout=config['IDENTITY_PROVIDER_TIMEOUT']
        )

    tenants = TenantResolver()
    tokens = TokenService(
        config['JWT_SECRET_KEY'],
        algorithm=config['JWT_ALGORITHM'],
        expiration=config['JWT_EXPIRATION']
    )
    authz = AuthorizationEngine()
    return Services(
        tenants=tenants,
        tokens=tokens,
        principals=PrincipalResolver(tenants, tokens, identity_verifier=identity_verifier, events=events),
        authz=authz,
        appointments=AppointmentService(
            authz,
            events,
            scheduler,
            pre_confirmation_window=config['PRE_CONFIRMATION_WINDOW'],
            credit_window=config['CANCELLATION_CREDIT_WINDOW']
        ),
        events=events,
        scheduler=scheduler,
    )


def get_services(app=None):
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
