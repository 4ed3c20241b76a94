"""Static role -> capability table. Every coarse permission check reads this."""

import enum

from booking_core.models.user import Role


class Permission(str, enum.Enum):
    ORGANIZATION_VIEW = 'organization.view'
    ORGANIZATION_UPDATE = 'organization.update'

    USERS_VIEW = 'users.view'
    USERS_CREATE = 'users.create'
    USERS_UPDATE = 'users.update'
    USERS_DELETE = 'users.delete'
    USERS_MANAGE_ROLE = 'users.manage_role'

    APPOINTMENTS_VIEW = 'appointments.view'
    APPOINTMENTS_CREATE = 'appointments.create'
    APPOINTMENTS_UPDATE = 'appointments.update'
    APPOINTMENTS_DELETE = 'appointments.delete'
    APPOINTMENTS_PRE_CONFIRM = 'appointments.pre_confirm'
    APPOINTMENTS_CONFIRM = 'appointments.confirm'
    APPOINTMENTS_EXECUTE = 'appointments.execute'
    APPOINTMENTS_CANCEL = 'appointments.cancel'

    STUDENTS_VIEW = 'students.view'
    STUDENTS_CREATE = 'students.create'
    STUDENTS_UPDATE = 'students.update'
    STUDENTS_DELETE = 'students.delete'

    POSTS_VIEW = 'posts.view'
    POSTS_CREATE = 'posts.create'
    POSTS_UPDATE = 'posts.update'
    POSTS_DELETE = 'posts.delete'

    LIKES_VIEW = 'likes.view'
    LIKES_CREATE = 'likes.create'
    LIKES_DELETE = 'likes.delete'


P = Permission

_COMMUNITY = {
    P.POSTS_VIEW, P.POSTS_CREATE, P.POSTS_UPDATE, P.POSTS_DELETE,
    P.LIKES_VIEW, P.LIKES_CREATE, P.LIKES_DELETE,
}

ROLE_CAPABILITIES = {
    Role.ADMIN: frozenset(Permission),
    Role.STAFF: frozenset({
        P.ORGANIZATION_VIEW,
        P.USERS_VIEW, P.USERS_CREATE, P.USERS_UPDATE,
        P.APPOINTMENTS_VIEW, P.APPOINTMENTS_CREATE, P.APPOINTMENTS_UPDATE, P.APPOINTMENTS_DELETE,
        P.APPOINTMENTS_PRE_CONFIRM, P.APPOINTMENTS_CONFIRM, P.APPOINTMENTS_CANCEL,
        P.STUDENTS_VIEW, P.STUDENTS_CREATE, P.STUDENTS_UPDATE,
    } | _COMMUNITY),
    Role.PROFESSIONAL: frozenset({
        P.ORGANIZATION_VIEW,
        P.USERS_VIEW, P.USERS_UPDATE,
        P.APPOINTMENTS_VIEW, P.APPOINTMENTS_CREATE, P.APPOINTMENTS_UPDATE,
        P.APPOINTMENTS_PRE_CONFIRM, P.APPOINTMENTS_CONFIRM, P.APPOINTMENTS_EXECUTE,
        P.APPOINTMENTS_CANCEL,
        P.STUDENTS_VIEW, P.STUDENTS_UPDATE,
    } | _COMMUNITY),
    Role.GUARDIAN: frozenset({
        P.ORGANIZATION_VIEW,
        P.USERS_VIEW, P.USERS_UPDATE,
        P.APPOINTMENTS_VIEW, P.APPOINTMENTS_CREATE, P.APPOINTMENTS_UPDATE,
        P.APPOINTMENTS_CONFIRM, P.APPOINTMENTS_CANCEL,
        P.STUDENTS_VIEW, P.STUDENTS_CREATE, P.STUDENTS_UPDATE,
    } | _COMMUNITY),
}


def has_capability(role, permission):
    """Default deny: unknown roles and permissions are never granted."""
    return permission in ROLE_CAPABILITIES.get(role, frozenset())


def capabilities_for(role):
    return sorted(p.value for p in ROLE_CAPABILITIES.get(role, frozenset()))
