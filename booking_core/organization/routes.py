"""Organization routes: the caller's own organization only."""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from booking_core.auth.bearer import current_principal
from booking_core.authz.policies import Action, ResourceKind
from booking_core.datastore import data_store_guard
from booking_core.errors import ValidationFailed
from booking_core.extensions import db
from booking_core.models.organization import Organization
from booking_core.services import get_services

organization_bp = Blueprint('organization', __name__, url_prefix='/organization')

ORGANIZATION = ResourceKind.ORGANIZATION

UPDATABLE_FIELDS = ('name', 'email', 'settings')


@organization_bp.route('', methods=['GET'])
@login_required
def get_organization():
    principal = current_principal()
    organization = get_services().authz.find(principal, ORGANIZATION, principal.organization_id)
    return jsonify(organization.to_dict()), 200


@organization_bp.route('', methods=['PATCH'])
@login_required
def update_organization():
    """
    Update name, contact email or settings. Admins only.

    Returns:
        200: updated organization
        403: caller is not an admin
        422: validation errors
    """
    principal = current_principal()
    organization = get_services().authz.find(
        principal, ORGANIZATION, principal.organization_id, action=Action.UPDATE
    )

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')

    errors = {}
    unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
    for name in unknown:
        errors[name] = ['cannot be changed']
    if 'name' in data:
        name = (data['name'] or '').strip()
        if not name:
            errors['name'] = ['is required']
        elif Organization.query.filter(Organization.name == name, Organization.id != organization.id).first():
            errors['name'] = ['is already taken']
    if 'settings' in data and not isinstance(data['settings'], dict):
        errors['settings'] = ['must be an object']
    if errors:
        raise ValidationFailed(errors=errors)

    with data_store_guard('organization update'):
        for name in UPDATABLE_FIELDS:
            if name in data:
                setattr(organization, name, data[name].strip() if name == 'name' else data[name])
        db.session.commit()

    current_app.logger.info(f"Organization {organization.id} updated by user {principal.user_id}")
    return jsonify(organization.to_dict()), 200
