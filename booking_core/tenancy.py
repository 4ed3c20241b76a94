"""Tenant resolution and the request-scoped tenant context."""

import logging
from contextlib import contextmanager

from booking_core.errors import TenantInactive, TenantMismatch, TenantNotFound
from booking_core.extensions import db
from booking_core.models.organization import Organization

logger = logging.getLogger(__name__)

SUBDOMAIN_HEADER = 'X-Organization-Subdomain'
ORGANIZATION_ID_HEADER = 'X-Organization-Id'


class TenantContext:
    """
    Holds the organization an operation runs against.

    One instance per operation; it is passed explicitly to every call that
    needs it and cleared when the operation ends. Once bound it can only be
    re-bound to the same organization.
    """

    def __init__(self):
        self._organization = None

    @property
    def organization(self):
        return self._organization

    @property
    def organization_id(self):
        return self._organization.id if self._organization is not None else None

    @property
    def is_bound(self):
        return self._organization is not None

    def bind(self, organization):
        if self._organization is not None and self._organization.id != organization.id:
            logger.warning(
                f"[TENANT] Refusing to rebind context from org {self._organization.id} "
                f"to org {organization.id}"
            )
            raise TenantMismatch()
        self._organization = organization
        return organization

    def clear(self):
        self._organization = None


@contextmanager
def tenant_scope():
    """Open a fresh TenantContext and clear it on exit, whatever happens."""
    context = TenantContext()
    try:
        yield context
    finally:
        context.clear()


class TenantResolver:
    """
    Resolves the active organization from a credential claim and/or a
    routing hint (subdomain or explicit header).

    The claim is authoritative. When both are present they must name the
    same organization; a disagreement is a TenantMismatch, which is what
    stops a token issued for one tenant being replayed against another.
    """

    def resolve(self, context, hint=None, claim_organization_id=None):
        hint = normalize_hint(hint)

        if claim_organization_id is not None:
            organization = db.session.get(Organization, claim_organization_id)
            if organization is None:
                raise TenantNotFound()
            if hint is not None and not names_organization(hint, organization):
                logger.warning(
                    f"[TENANT] Hint {hint!r} does not match credential org {organization.id}"
                )
                raise TenantMismatch()
        elif hint is not None:
            organization = self.lookup_hint(hint)
            if organization is None:
                raise TenantNotFound()
        else:
            raise TenantNotFound('Organization context required')

        if not organization.active:
            raise TenantInactive()

        context.bind(organization)
        logger.debug(f"[TENANT] Resolved to {organization.id} ({organization.subdomain})")
        return organization

    def lookup_hint(self, hint):
        if hint.isdigit():
            return db.session.get(Organization, int(hint))
        return Organization.find_by_subdomain(hint)


def normalize_hint(hint):
    if hint is None:
        return None
    hint = str(hint).strip().lower()
    return hint or None


def names_organization(hint, organization):
    if hint.isdigit():
        return int(hint) == organization.id
    return hint == organization.subdomain


def tenant_hint_from_request(request):
    """Explicit headers first, then the first label of the host name."""
    header = request.headers.get(SUBDOMAIN_HEADER) or request.headers.get(ORGANIZATION_ID_HEADER)
    if header and header.strip():
        return header.strip()

    host = request.host.split(':', 1)[0]
    labels = host.split('.')
    if len(labels) < 3 or host.replace('.', '').isdigit():
        return None
    if labels[0] == 'www':
        return None
    return labels[0]
