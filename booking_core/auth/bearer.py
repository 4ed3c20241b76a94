"""Bearer authentication for Flask-Login."""

from flask import g, request

from booking_core.errors import Unauthorized
from booking_core.extensions import login_manager
from booking_core.services import get_services
from booking_core.tenancy import tenant_hint_from_request


def bearer_credential(req):
    """The credential from an ``Authorization: Bearer <credential>`` header, if any."""
    header = req.headers.get('Authorization', '')
    scheme, _, credential = header.partition(' ')
    if scheme.lower() != 'bearer' or not credential.strip():
        return None
    return credential.strip()


@login_manager.request_loader
def load_user_from_request(req):
    """
    Resolve the bearer credential into a Principal for this request.

    Typed failures (expired, revoked, tenant mismatch, ...) propagate to
    the error handlers instead of collapsing into a generic 401.
    """
    credential = bearer_credential(req)
    if credential is None:
        return None

    principal = get_services().principals.resolve(
        g.tenant_context,
        credential,
        hint=tenant_hint_from_request(req)
    )
    g.principal = principal
    return principal.user


@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthorized()


def current_principal():
    """The Principal of the current request. Only valid behind login_required."""
    principal = g.get('principal')
    if principal is None:
        raise Unauthorized()
    return principal


def resolve_request_tenant():
    """Bind the organization named by the request's routing hint."""
    return get_services().tenants.resolve(g.tenant_context, hint=tenant_hint_from_request(request))
