"""
Record-level policies, one per resource kind.

Each policy declares the metadata the engine needs (model, tenant column,
owner column), maps actions to the capability that gates them, and adds the
fine-grained rules for a specific record. The engine applies the tenant
gate and the admin override before any of these rules run, so a rule only
ever sees records from the principal's own organization.
"""

import enum

from sqlalchemy import false, or_, select

from booking_core.authz.capabilities import Permission as P
from booking_core.models import (
    Appointment,
    AppointmentState,
    Like,
    Organization,
    Post,
    Role,
    Student,
    User,
)


class Action(str, enum.Enum):
    LIST = 'list'
    VIEW = 'view'
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'
    MANAGE_ROLE = 'manage_role'
    PRE_CONFIRM = 'pre_confirm'
    CONFIRM = 'confirm'
    EXECUTE = 'execute'
    CANCEL = 'cancel'


class ResourceKind(str, enum.Enum):
    ORGANIZATION = 'organization'
    USER = 'user'
    APPOINTMENT = 'appointment'
    STUDENT = 'student'
    POST = 'post'
    LIKE = 'like'


def _is_staff(principal):
    return principal.role == Role.STAFF


def _is_professional(principal):
    return principal.role == Role.PROFESSIONAL


def _always(principal, record):
    return True


class Policy:
    model = None
    tenant_attr = 'organization_id'
    # Column naming the user who owns a record; None when nobody does
    owner_attr = None
    permissions = {}

    def permission_for(self, action):
        return self.permissions.get(action)

    def tenant_column(self):
        return getattr(self.model, self.tenant_attr)

    def in_tenant(self, principal, record):
        return getattr(record, self.tenant_attr) == principal.organization_id

    def owns(self, principal, record):
        if self.owner_attr is None or record is None:
            return False
        return getattr(record, self.owner_attr, None) == principal.user_id

    def rules(self):
        return {}

    def check(self, action, principal, record):
        rule = self.rules().get(action)
        return bool(rule and rule(principal, record))

    def may_attempt(self, action, principal, record):
        """The part of ``check`` that does not depend on the record's state."""
        return self.check(action, principal, record)

    def narrow(self, principal, query):
        """Role-specific narrowing applied after the tenant filter."""
        return query


class OrganizationPolicy(Policy):
    model = Organization
    tenant_attr = 'id'
    permissions = {
        Action.VIEW: P.ORGANIZATION_VIEW,
        Action.LIST: P.ORGANIZATION_VIEW,
        Action.UPDATE: P.ORGANIZATION_UPDATE,
    }

    def rules(self):
        # Updating is admin-only, which the override already covers
        return {
            Action.VIEW: _always,
            Action.LIST: _always,
        }


class UserPolicy(Policy):
    model = User
    owner_attr = 'id'
    permissions = {
        Action.LIST: P.USERS_VIEW,
        Action.VIEW: P.USERS_VIEW,
        Action.CREATE: P.USERS_CREATE,
        Action.UPDATE: P.USERS_UPDATE,
        Action.DELETE: P.USERS_DELETE,
        Action.MANAGE_ROLE: P.USERS_MANAGE_ROLE,
    }

    def rules(self):
        return {
            Action.LIST: _always,
            Action.VIEW: self.view,
            Action.CREATE: self.create,
            Action.UPDATE: self.update,
        }

    def view(self, principal, record):
        return (
            self.owns(principal, record)
            or _is_staff(principal)
            or (_is_professional(principal) and self._is_client_of(principal, record))
        )

    def create(self, principal, record):
        return _is_staff(principal) and record.role != Role.ADMIN

    def update(self, principal, record):
        return self.owns(principal, record) or (_is_staff(principal) and record.role == Role.GUARDIAN)

    def narrow(self, principal, query):
        if principal.role in (Role.ADMIN, Role.STAFF):
            return query
        if _is_professional(principal):
            clients = select(Appointment.client_id).where(
                Appointment.organization_id == principal.organization_id,
                Appointment.professional_id == principal.user_id
            )
            return query.filter(or_(User.id == principal.user_id, User.id.in_(clients)))
        return query.filter(User.id == principal.user_id)

    def _is_client_of(self, principal, record):
        return Appointment.query.filter(
            Appointment.organization_id == principal.organization_id,
            Appointment.professional_id == principal.user_id,
            Appointment.client_id == record.id
        ).first() is not None


class AppointmentPolicy(Policy):
    model = Appointment
    owner_attr = 'client_id'
    permissions = {
        Action.LIST: P.APPOINTMENTS_VIEW,
        Action.VIEW: P.APPOINTMENTS_VIEW,
        Action.CREATE: P.APPOINTMENTS_CREATE,
        Action.UPDATE: P.APPOINTMENTS_UPDATE,
        Action.DELETE: P.APPOINTMENTS_DELETE,
        Action.PRE_CONFIRM: P.APPOINTMENTS_PRE_CONFIRM,
        Action.CONFIRM: P.APPOINTMENTS_CONFIRM,
        Action.EXECUTE: P.APPOINTMENTS_EXECUTE,
        Action.CANCEL: P.APPOINTMENTS_CANCEL,
    }

    def rules(self):
        return {
            Action.LIST: _always,
            Action.VIEW: self.view,
            Action.CREATE: self.create,
            Action.UPDATE: self.update,
            Action.DELETE: lambda principal, record: _is_staff(principal),
            Action.PRE_CONFIRM: self.pre_confirm,
            Action.CONFIRM: self.confirm,
            Action.EXECUTE: self.execute,
            Action.CANCEL: self.cancel,
        }

    def may_attempt(self, action, principal, record):
        # Update and cancel narrow further by state once the state is known
        if action in (Action.UPDATE, Action.CANCEL):
            return _is_staff(principal) or record.is_participant(principal.user_id)
        return self.check(action, principal, record)

    def assigned(self, principal, record):
        return record.professional_id == principal.user_id

    def view(self, principal, record):
        return _is_staff(principal) or record.is_participant(principal.user_id)

    def create(self, principal, record):
        # Clients book for themselves; professionals book their own sessions
        if principal.role == Role.GUARDIAN:
            return self.owns(principal, record)
        if _is_professional(principal):
            return self.assigned(principal, record)
        return _is_staff(principal)

    def update(self, principal, record):
        if record.state == AppointmentState.DRAFT:
            return _is_staff(principal) or record.is_participant(principal.user_id)
        if record.state in (AppointmentState.PRE_CONFIRMED, AppointmentState.CONFIRMED):
            return _is_staff(principal) or self.assigned(principal, record)
        return False

    def pre_confirm(self, principal, record):
        return _is_staff(principal) or self.assigned(principal, record)

    def confirm(self, principal, record):
        return _is_staff(principal) or self.assigned(principal, record) or self.owns(principal, record)

    def execute(self, principal, record):
        return self.assigned(principal, record)

    def cancel(self, principal, record):
        if record.state in (AppointmentState.DRAFT, AppointmentState.PRE_CONFIRMED):
            return (
                _is_staff(principal)
                or self.assigned(principal, record)
                or self.owns(principal, record)
            )
        if record.state == AppointmentState.CONFIRMED:
            return _is_staff(principal)
        return False

    def narrow(self, principal, query):
        if principal.role in (Role.ADMIN, Role.STAFF):
            return query
        if _is_professional(principal):
            return query.filter(Appointment.professional_id == principal.user_id)
        if principal.role == Role.GUARDIAN:
            return query.filter(Appointment.client_id == principal.user_id)
        return query.filter(false())


class StudentPolicy(Policy):
    model = Student
    owner_attr = 'parent_id'
    permissions = {
        Action.LIST: P.STUDENTS_VIEW,
        Action.VIEW: P.STUDENTS_VIEW,
        Action.CREATE: P.STUDENTS_CREATE,
        Action.UPDATE: P.STUDENTS_UPDATE,
        Action.DELETE: P.STUDENTS_DELETE,
    }

    def rules(self):
        return {
            Action.LIST: _always,
            Action.VIEW: self.view,
            Action.CREATE: self.create,
            Action.UPDATE: self.update,
        }

    def view(self, principal, record):
        return _is_staff(principal) or _is_professional(principal) or self.owns(principal, record)

    def create(self, principal, record):
        return _is_staff(principal) or self.owns(principal, record)

    def update(self, principal, record):
        if _is_staff(principal) or self.owns(principal, record):
            return True
        return _is_professional(principal) and self._has_sessions_with(principal, record)

    def narrow(self, principal, query):
        if principal.role in (Role.ADMIN, Role.STAFF, Role.PROFESSIONAL):
            return query
        return query.filter(Student.parent_id == principal.user_id)

    def _has_sessions_with(self, principal, record):
        return Appointment.query.filter(
            Appointment.organization_id == principal.organization_id,
            Appointment.professional_id == principal.user_id,
            Appointment.student_id == record.id
        ).first() is not None


class PostPolicy(Policy):
    model = Post
    owner_attr = 'user_id'
    permissions = {
        Action.LIST: P.POSTS_VIEW,
        Action.VIEW: P.POSTS_VIEW,
        Action.CREATE: P.POSTS_CREATE,
        Action.UPDATE: P.POSTS_UPDATE,
        Action.DELETE: P.POSTS_DELETE,
    }

    def rules(self):
        return {
            Action.LIST: _always,
            Action.VIEW: _always,
            Action.CREATE: self.owns,
            Action.UPDATE: self.owns,
            Action.DELETE: self.owns,
        }


class LikePolicy(Policy):
    model = Like
    owner_attr = 'user_id'
    permissions = {
        Action.LIST: P.LIKES_VIEW,
        Action.VIEW: P.LIKES_VIEW,
        Action.CREATE: P.LIKES_CREATE,
        Action.DELETE: P.LIKES_DELETE,
    }

    def rules(self):
        return {
            Action.LIST: _always,
            Action.VIEW: _always,
            Action.CREATE: self.owns,
            Action.DELETE: self.owns,
        }

    def in_tenant(self, principal, record):
        # The liked post must live in the same organization as the like
        if not super().in_tenant(principal, record):
            return False
        return Post.query.filter(
            Post.id == record.post_id,
            Post.organization_id == principal.organization_id
        ).first() is not None


POLICIES = {
    ResourceKind.ORGANIZATION: OrganizationPolicy(),
    ResourceKind.USER: UserPolicy(),
    ResourceKind.APPOINTMENT: AppointmentPolicy(),
    ResourceKind.STUDENT: StudentPolicy(),
    ResourceKind.POST: PostPolicy(),
    ResourceKind.LIKE: LikePolicy(),
}

MODEL_KINDS = {policy.model: kind for kind, policy in POLICIES.items()}
