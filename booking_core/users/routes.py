"""User management routes."""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from booking_core.auth.bearer import current_principal
from booking_core.authz.policies import Action, ResourceKind
from booking_core.datastore import data_store_guard
from booking_core.errors import ValidationFailed
from booking_core.extensions import db
from booking_core.models.user import Role, User
from booking_core.services import get_services

users_bp = Blueprint('users', __name__, url_prefix='/users')

USER = ResourceKind.USER

MIN_PASSWORD_LENGTH = 8

UPDATABLE_FIELDS = ('email', 'first_name', 'last_name', 'password', 'role', 'is_active')

# Changing these needs users.manage_role on top of users.update
PRIVILEGED_FIELDS = ('role', 'is_active')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return data


def _check_email(organization_id, email, user_id=None):
    if not email or '@' not in email:
        return ['must be a valid email address']
    existing = User.find_in_organization(organization_id, email)
    if existing is not None and existing.id != user_id:
        return ['is already registered in this organization']
    return None


@users_bp.route('', methods=['GET'])
@login_required
def list_users():
    """
    List users visible to the caller within their organization.

    Query Parameters:
        role: filter by role
        page, per_page: pagination
    """
    principal = current_principal()
    query = get_services().authz.scope(principal, USER)

    role = request.args.get('role')
    if role:
        try:
            query = query.filter(User.role == Role(role))
        except ValueError:
            raise ValidationFailed(errors={'role': [f'unknown role {role!r}']})

    with data_store_guard('user listing'):
        page = query.order_by(User.id.asc()).paginate(
            page=request.args.get('page', 1, type=int),
            per_page=request.args.get('per_page', current_app.config['APPOINTMENTS_PER_PAGE'], type=int),
            max_per_page=current_app.config['MAX_PER_PAGE'],
            error_out=False
        )
        users = [user.to_dict() for user in page.items]

    return jsonify({'users': users, 'page': page.page, 'total': page.total, 'pages': page.pages}), 200


@users_bp.route('', methods=['POST'])
@login_required
def create_user():
    """
    Create a user in the caller's organization.

    Request Body:
        {
            "email": "new@example.com",
            "password": "password123",
            "first_name": "Ana",
            "last_name": "Silva",
            "role": "guardian"
        }

    Returns:
        201: created user
        403: caller may not create users with that role
        422: validation errors
    """
    principal = current_principal()
    authz = get_services().authz
    authz.authorize(principal, Action.CREATE, kind=USER)
    data = _json_body()

    errors = {}
    email_errors = _check_email(principal.organization_id, (data.get('email') or '').strip().lower())
    if email_errors:
        errors['email'] = email_errors
    password = data.get('password') or ''
    if len(password) < MIN_PASSWORD_LENGTH:
        errors['password'] = [f'must be at least {MIN_PASSWORD_LENGTH} characters']
    if errors:
        raise ValidationFailed(errors=errors)

    with data_store_guard('user creation'):
        user = User(
            organization_id=principal.organization_id,
            email=data['email'],
            first_name=data.get('first_name') or '',
            last_name=data.get('last_name') or '',
            role=data.get('role') or Role.GUARDIAN
        )
        user.set_password(password)
        authz.authorize(principal, Action.CREATE, user)

        db.session.add(user)
        db.session.commit()

    current_app.logger.info(
        f"User {user.id} ({user.role.value}) created by user {principal.user_id} "
        f"in org {principal.organization_id}"
    )
    return jsonify(user.to_dict()), 201


@users_bp.route('/<int:user_id>', methods=['GET'])
@login_required
def get_user(user_id):
    user = get_services().authz.find(current_principal(), USER, user_id)
    return jsonify(user.to_dict()), 200


@users_bp.route('/<int:user_id>', methods=['PATCH'])
@login_required
def update_user(user_id):
    """
    Update a user. Role and activation changes need users.manage_role.

    Returns:
        200: updated user
        403: caller may not make this change
        422: validation errors
    """
    principal = current_principal()
    authz = get_services().authz
    data = _json_body()

    unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationFailed(errors={name: ['cannot be changed'] for name in unknown})

    user = authz.find(principal, USER, user_id, action=Action.UPDATE)
    if any(name in data for name in PRIVILEGED_FIELDS):
        authz.authorize(principal, Action.MANAGE_ROLE, user)
        if user.id == principal.user_id:
            raise ValidationFailed(errors={'role': ['cannot change your own role or activation']})

    errors = {}
    if 'email' in data:
        email_errors = _check_email(principal.organization_id, (data['email'] or '').strip().lower(), user.id)
        if email_errors:
            errors['email'] = email_errors
    if 'password' in data and len(data['password'] or '') < MIN_PASSWORD_LENGTH:
        errors['password'] = [f'must be at least {MIN_PASSWORD_LENGTH} characters']
    if errors:
        raise ValidationFailed(errors=errors)

    with data_store_guard('user update'):
        for name in ('email', 'first_name', 'last_name', 'role'):
            if name in data:
                setattr(user, name, data[name])
        if 'is_active' in data:
            user.is_active = bool(data['is_active'])
        if 'password' in data:
            user.set_password(data['password'])
        if 'password' in data or data.get('is_active') is False:
            # Outstanding credentials stop working
            user.rotate_revocation_marker()
        db.session.commit()

    current_app.logger.info(f"User {user.id} updated by user {principal.user_id}")
    return jsonify(user.to_dict()), 200


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@login_required
def delete_user(user_id):
    """
    Deactivate a user and revoke their credentials.

    Users are never removed outright: appointments and their audit trail
    keep pointing at them.
    """
    principal = current_principal()
    user = get_services().authz.find(principal, USER, user_id, action=Action.DELETE)
    if user.id == principal.user_id:
        raise ValidationFailed(errors={'id': ['cannot delete yourself']})

    with data_store_guard('user deletion'):
        user.is_active = False
        user.rotate_revocation_marker()
        db.session.commit()

    current_app.logger.info(f"User {user.id} deactivated by user {principal.user_id}")
    return jsonify({'message': 'User deleted'}), 200
