"""Appointment routes."""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from booking_core.appointments.service import parse_datetime
from booking_core.auth.bearer import current_principal
from booking_core.authz.policies import Action, ResourceKind
from booking_core.datastore import data_store_guard
from booking_core.errors import ValidationFailed
from booking_core.models import Appointment, AppointmentState
from booking_core.services import get_services

appointments_bp = Blueprint('appointments', __name__, url_prefix='/appointments')

APPOINTMENT = ResourceKind.APPOINTMENT


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailed('Request body must be a JSON object')
    return data


def _filter_args(query):
    errors = {}

    state = request.args.get('state')
    if state:
        try:
            query = query.filter(Appointment.state == AppointmentState(state))
        except ValueError:
            errors['state'] = [f"must be one of {', '.join(s.value for s in AppointmentState)}"]

    professional_id = request.args.get('professional_id', type=int)
    if professional_id is not None:
        query = query.filter(Appointment.professional_id == professional_id)

    bounds = {}
    for name in ('start_date', 'end_date'):
        value = request.args.get(name)
        if not value:
            continue
        try:
            bounds[name] = parse_datetime(value)
        except ValueError:
            errors[name] = ['must be an ISO 8601 datetime']
    if 'start_date' in bounds:
        query = query.filter(Appointment.scheduled_at >= bounds['start_date'])
    if 'end_date' in bounds:
        query = query.filter(Appointment.scheduled_at <= bounds['end_date'])

    if errors:
        raise ValidationFailed(errors=errors)
    return query


@appointments_bp.route('', methods=['GET'])
@login_required
def list_appointments():
    """
    List the appointments the caller may see in their organization.

    Query Parameters:
        state: filter by lifecycle state
        professional_id: filter by professional
        start_date, end_date: ISO 8601 bounds on scheduled_at
        page, per_page: pagination (per_page capped at MAX_PER_PAGE)

    Returns:
        200: appointments and pagination info
    """
    principal = current_principal()
    services = get_services()
    config = current_app.config

    query = _filter_args(services.authz.scope(principal, APPOINTMENT))
    with data_store_guard('appointment listing'):
        page = query.order_by(Appointment.scheduled_at.asc(), Appointment.id.asc()).paginate(
            page=request.args.get('page', 1, type=int),
            per_page=request.args.get('per_page', config['APPOINTMENTS_PER_PAGE'], type=int),
            max_per_page=config['MAX_PER_PAGE'],
            error_out=False
        )
        items = [appointment.to_dict() for appointment in page.items]

    return jsonify({
        'appointments': items,
        'page': page.page,
        'per_page': page.per_page,
        'total': page.total,
        'pages': page.pages
    }), 200


@appointments_bp.route('', methods=['POST'])
@login_required
def create_appointment():
    """
    Book a draft appointment.

    Request Body:
        {
            "professional_id": 3,
            "client_id": 7,          (ignored for clients, who book for themselves)
            "scheduled_at": "2026-05-01T10:00:00Z",
            "duration_minutes": 60,
            "student_id": 2,
            "price": "40.00",
            "uses_credits": false,
            "notes": "..."
        }

    Returns:
        201: created appointment
        403: role may not book this appointment
        422: validation errors
    """
    appointment = get_services().appointments.book(current_principal(), _json_body())
    return jsonify(appointment.to_dict()), 201


@appointments_bp.route('/<int:appointment_id>', methods=['GET'])
@login_required
def get_appointment(appointment_id):
    principal = current_principal()
    services = get_services()
    appointment = services.authz.find(principal, APPOINTMENT, appointment_id)

    data = appointment.to_dict()
    data['transitions'] = [t.to_dict() for t in appointment.transitions]
    data['allowed_actions'] = [
        action.value for action in services.appointments.allowed_actions(principal, appointment)
    ]
    return jsonify(data), 200


@appointments_bp.route('/<int:appointment_id>', methods=['PATCH'])
@login_required
def update_appointment(appointment_id):
    appointment = get_services().appointments.update(current_principal(), appointment_id, _json_body())
    return jsonify(appointment.to_dict()), 200


@appointments_bp.route('/<int:appointment_id>', methods=['DELETE'])
@login_required
def delete_appointment(appointment_id):
    get_services().appointments.destroy(current_principal(), appointment_id)
    return jsonify({'message': 'Appointment deleted'}), 200


def _transition(appointment_id, action):
    data = request.get_json(silent=True) or {}
    principal = current_principal()
    services = get_services()

    state = services.appointments.transition(appointment_id, principal, action, note=data.get('note'))
    appointment = services.authz.find(principal, APPOINTMENT, appointment_id, action=None)
    return jsonify({'state': state.value, 'appointment': appointment.to_dict()}), 200


@appointments_bp.route('/<int:appointment_id>/pre_confirm', methods=['POST'])
@login_required
def pre_confirm_appointment(appointment_id):
    return _transition(appointment_id, Action.PRE_CONFIRM)


@appointments_bp.route('/<int:appointment_id>/confirm', methods=['POST'])
@login_required
def confirm_appointment(appointment_id):
    return _transition(appointment_id, Action.CONFIRM)


@appointments_bp.route('/<int:appointment_id>/execute', methods=['POST'])
@login_required
def execute_appointment(appointment_id):
    return _transition(appointment_id, Action.EXECUTE)


@appointments_bp.route('/<int:appointment_id>/cancel', methods=['POST'])
@login_required
def cancel_appointment(appointment_id):
    """
    Cancel an appointment.

    Request Body (optional):
        {"note": "reason for cancelling"}

    Returns:
        200: new state and appointment
        403: role may not cancel in the current state
        409: appointment already executed or cancelled
    """
    return _transition(appointment_id, Action.CANCEL)
