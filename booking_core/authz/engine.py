"""The authorization engine shared by every resource kind."""

import logging

from sqlalchemy import false

from booking_core.authz.capabilities import has_capability
from booking_core.authz.policies import MODEL_KINDS, POLICIES, Action
from booking_core.datastore import data_store_guard
from booking_core.errors import Forbidden, NotFound
from booking_core.extensions import db
from booking_core.models.user import Role

logger = logging.getLogger(__name__)


class AuthorizationEngine:
    """
    Two-layer access decisions:

    1. Coarse gate: the action maps to a capability and the principal's role
       holds it. Unmapped (kind, action) pairs are denied.
    2. Fine gate: the record sits in the principal's organization, then the
       kind's policy decides for that specific record. Admins skip the
       policy rules but never the tenant check.

    ``scope`` is the only way to list records: it always filters to the
    principal's organization before narrowing by role.
    """

    def __init__(self, policies=None):
        self.policies = policies or POLICIES

    def policy_for(self, kind):
        return self.policies[kind]

    def kind_of(self, record):
        try:
            return MODEL_KINDS[type(record)]
        except KeyError:
            raise TypeError(f"No policy registered for {type(record).__name__}")

    def can(self, principal, action, record=None, kind=None):
        return self._decide(principal, action, record, kind, final=True)

    def may_attempt(self, principal, action, record):
        """
        Same gates as ``can`` but with only the state-independent part of the
        policy. Checked before a record's state is looked at, so a caller
        with no business on the record never learns what state it is in.
        """
        return self._decide(principal, action, record, None, final=False)

    def authorize(self, principal, action, record=None, kind=None):
        if not self.can(principal, action, record=record, kind=kind):
            self._deny(principal, action, kind or self.kind_of(record))
        return record

    def authorize_attempt(self, principal, action, record):
        if not self.may_attempt(principal, action, record):
            self._deny(principal, action, self.kind_of(record))
        return record

    def _decide(self, principal, action, record, kind, final):
        if kind is None:
            if record is None:
                raise ValueError('can() needs a record or an explicit kind')
            kind = self.kind_of(record)
        policy = self.policy_for(kind)

        permission = policy.permission_for(action)
        if permission is None or not has_capability(principal.role, permission):
            return False

        # Without a record only the coarse gate applies
        if record is None:
            return True
        if not policy.in_tenant(principal, record):
            return False

        if principal.role == Role.ADMIN:
            return True
        if final:
            return policy.check(action, principal, record)
        return policy.may_attempt(action, principal, record)

    def _deny(self, principal, action, kind):
        logger.warning(f"[AUTHZ] Denied {action.value} on {kind.value} for user {principal.user_id}")
        raise Forbidden()

    def scope(self, principal, kind, query=None):
        """Query of the records of ``kind`` the principal may see."""
        policy = self.policy_for(kind)
        query = query if query is not None else policy.model.query
        query = query.filter(policy.tenant_column() == principal.organization_id)

        if not self.can(principal, Action.LIST, kind=kind):
            return query.filter(false())
        return policy.narrow(principal, query)

    def find(self, principal, kind, record_id, action=Action.VIEW):
        """
        Load one record and authorize ``action`` on it. With ``action=None``
        only the tenant gate is applied, leaving the caller to authorize.

        Raises:
            NotFound: no record with that id exists
            Forbidden: it exists but belongs to another organization, or
                the policy denies the action
        """
        policy = self.policy_for(kind)
        with data_store_guard(f'{kind.value} lookup'):
            record = db.session.get(policy.model, record_id)
            if record is None:
                raise NotFound()

            if not policy.in_tenant(principal, record):
                logger.warning(
                    f"SECURITY: User {principal.user_id} requested {kind.value} {record_id} "
                    f"outside their organization"
                )
                raise Forbidden()

            if action is not None:
                self.authorize(principal, action, record, kind=kind)
        return record
