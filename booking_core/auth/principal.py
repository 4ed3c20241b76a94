"""Principal resolution: who is calling, and for which organization."""

import logging
import secrets

from booking_core.auth.identity import IdentityVerificationError
from booking_core.auth.tokens import looks_internal
from booking_core.datastore import data_store_guard
from booking_core.errors import (
    AccountDisabled,
    PrincipalNotFound,
    TenantInactive,
    TenantMismatch,
    TenantNotFound,
    TokenInvalid,
    TokenRevoked,
    Unauthorized,
)
from booking_core.events import WELCOME, DomainEvent
from booking_core.extensions import db
from booking_core.models.user import Role, User, new_revocation_marker

logger = logging.getLogger(__name__)


class Principal:
    """
    The authenticated user together with the organization the operation
    runs against. Built per operation, never stored. Two principals are
    equal when they name the same user in the same organization.
    """

    __slots__ = ('user', 'organization')

    def __init__(self, user, organization):
        self.user = user
        self.organization = organization

    @property
    def user_id(self):
        return self.user.id

    @property
    def organization_id(self):
        return self.organization.id

    @property
    def role(self):
        return self.user.role

    def __eq__(self, other):
        if not isinstance(other, Principal):
            return NotImplemented
        return (self.user_id, self.organization_id) == (other.user_id, other.organization_id)

    def __hash__(self):
        return hash((self.user_id, self.organization_id))

    def __repr__(self):
        return f'<Principal user={self.user_id} organization={self.organization_id}>'


class PrincipalResolver:
    """
    Authenticates a bearer credential.

    The path is picked from the credential's shape, so the same credential
    always takes the same path:
    - three dot-separated segments: internal signed token
    - anything else: external identity provider

    Both paths finish by binding the user's organization into the tenant
    context, so the principal and the context can never disagree.
    """

    def __init__(self, tenants, tokens, identity_verifier=None, events=None):
        self.tenants = tenants
        self.tokens = tokens
        self.identity_verifier = identity_verifier
        self.events = events

    def resolve(self, context, credential, hint=None):
        if not credential:
            raise Unauthorized()

        with data_store_guard('principal resolution'):
            if looks_internal(credential):
                user = self._resolve_internal(context, credential, hint)
            else:
                user = self._resolve_external(context, credential, hint)
            return self._bind(context, user)

    def _resolve_internal(self, context, credential, hint):
        claims = self.tokens.decode(credential)

        user = db.session.get(User, claims['user_id'])
        if user is None:
            logger.warning(f"[AUTH] Credential names unknown user {claims['user_id']}")
            raise PrincipalNotFound()
        if claims['revocation_marker'] != user.jti:
            logger.warning(f"[AUTH] Revoked credential presented for user {user.id}")
            raise TokenRevoked()
        self.tokens.check_expiry(claims)
        if user.organization_id != claims['organization_id']:
            logger.error(
                f"SECURITY: Credential for user {user.id} claims org {claims['organization_id']}, "
                f"user belongs to org {user.organization_id}"
            )
            raise TokenInvalid()

        self.tenants.resolve(context, hint=hint, claim_organization_id=claims['organization_id'])
        return user

    def _resolve_external(self, context, credential, hint):
        if self.identity_verifier is None:
            raise Unauthorized()
        try:
            identity = self.identity_verifier.verify(credential)
        except IdentityVerificationError as e:
            logger.warning(f"[AUTH] External identity rejected: {e}")
            raise Unauthorized() from e

        if hint is not None and not context.is_bound:
            self.tenants.resolve(context, hint=hint)
        return self._find_or_create(context, identity)

    def _find_or_create(self, context, identity):
        user = User.query.filter_by(uid=identity.subject).first()
        if user is not None:
            return user

        if not context.is_bound:
            raise TenantNotFound('Organization context required for new user creation')

        user = User.find_in_organization(context.organization_id, identity.email)
        if user is not None:
            user.uid = identity.subject
            db.session.commit()
            logger.info(f"[AUTH] Linked external identity to user {user.id}")
            return user

        user = User(
            organization_id=context.organization_id,
            email=identity.email,
            first_name=identity.first_name,
            last_name=identity.last_name,
            role=Role.GUARDIAN,
            uid=identity.subject,
            jti=new_revocation_marker()
        )
        # Never used for direct login
        user.set_password(secrets.token_hex(32))
        db.session.add(user)
        db.session.commit()
        logger.info(f"[AUTH] Created user {user.id} from external identity in org {context.organization_id}")

        if self.events is not None:
            self.events.emit([DomainEvent(WELCOME, user.id)])
        return user

    def _bind(self, context, user):
        if not user.can_authenticate:
            raise AccountDisabled()

        if context.is_bound:
            if user.organization_id != context.organization_id:
                logger.warning(
                    f"[TENANT] User {user.id} cannot access organization {context.organization_id}"
                )
                raise TenantMismatch()
        else:
            if not user.organization.active:
                raise TenantInactive()
            context.bind(user.organization)

        return Principal(user, context.organization)

    def authenticate_password(self, context, email, password):
        """Email/password login inside an already resolved organization."""
        if not context.is_bound:
            raise TenantNotFound('Organization context required')

        with data_store_guard('password login'):
            user = User.find_in_organization(context.organization_id, email)
            if user is None or not user.check_password(password):
                raise Unauthorized('Invalid credentials')
            return self._bind(context, user)

    def issue_token(self, principal):
        return self.tokens.issue(principal.user)

    def revoke(self, principal):
        """Rotate the revocation marker; every credential issued so far stops working."""
        with data_store_guard('credential revocation'):
            principal.user.rotate_revocation_marker()
            db.session.commit()
        logger.info(f"[AUTH] Rotated revocation marker for user {principal.user_id}")
