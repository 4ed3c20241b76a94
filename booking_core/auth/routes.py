"""Authentication routes."""

from flask import Blueprint, current_app, g, jsonify, request
from flask_login import login_required

from booking_core.auth.bearer import current_principal, resolve_request_tenant
from booking_core.authz.capabilities import capabilities_for
from booking_core.errors import ValidationFailed
from booking_core.extensions import limiter
from booking_core.services import get_services
from booking_core.tenancy import tenant_hint_from_request

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


def _login_rate_limit():
    return current_app.config['LOGIN_RATE_LIMIT']


@auth_bp.route('/login', methods=['POST'])
@limiter.limit(_login_rate_limit)
def login():
    """
    Exchange credentials for an internal bearer token.

    Request Body (either form):
        {"email": "user@example.com", "password": "password123"}
        {"access_token": "<identity provider token>"}

    The organization comes from the routing hint (subdomain or
    X-Organization-* header).

    Returns:
        200: token, user and organization
        401: Invalid credentials
        403: Account disabled or organization inactive
        404: Organization not found
        422: Missing fields
    """
    data = request.get_json(silent=True) or {}
    services = get_services()

    if data.get('access_token'):
        principal = services.principals.resolve(
            g.tenant_context,
            data['access_token'],
            hint=tenant_hint_from_request(request)
        )
    else:
        if not data.get('email') or not data.get('password'):
            raise ValidationFailed(
                'Email and password required',
                errors={
                    name: ['is required']
                    for name in ('email', 'password') if not data.get(name)
                }
            )
        resolve_request_tenant()
        principal = services.principals.authenticate_password(g.tenant_context, data['email'], data['password'])

    current_app.logger.info(f"[AUTH] User {principal.user_id} logged in to org {principal.organization_id}")
    return jsonify({
        'token': services.principals.issue_token(principal),
        'user': principal.user.to_dict(),
        'organization': principal.organization.to_dict()
    }), 200


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """
    Revoke every credential issued to the current user.

    Returns:
        200: Logout successful
    """
    get_services().principals.revoke(current_principal())
    return jsonify({'message': 'Logout successful'}), 200


@auth_bp.route('/me', methods=['GET'])
@login_required
def get_current_user():
    """Current user, organization and the capabilities their role grants."""
    principal = current_principal()
    return jsonify({
        'user': principal.user.to_dict(),
        'organization': principal.organization.to_dict(),
        'capabilities': capabilities_for(principal.role)
    }), 200
