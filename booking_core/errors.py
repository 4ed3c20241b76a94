"""Typed failures raised by the core and their JSON rendering."""

from flask import jsonify
from werkzeug.exceptions import HTTPException


class CoreError(Exception):
    """
    Base class for every failure the core surfaces to a caller.

    Each subclass carries a stable machine-readable ``kind`` and the HTTP
    status the web layer maps it to. Messages are safe to show to the
    caller: they never name another tenant or include internals.
    """

    kind = 'error'
    status_code = 500
    default_message = 'Internal error'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.kind, 'message': self.message}


class Unauthorized(CoreError):
    kind = 'unauthorized'
    status_code = 401
    default_message = 'Unauthorized'


class TokenExpired(Unauthorized):
    kind = 'token_expired'
    default_message = 'Credential has expired'


class TokenInvalid(Unauthorized):
    kind = 'token_invalid'
    default_message = 'Credential is invalid'


class TokenRevoked(Unauthorized):
    kind = 'token_revoked'
    default_message = 'Credential has been revoked'


class PrincipalNotFound(Unauthorized):
    kind = 'principal_not_found'
    default_message = 'Unauthorized'


class AccountDisabled(Unauthorized):
    kind = 'account_disabled'
    default_message = 'Account disabled'


class Forbidden(CoreError):
    kind = 'forbidden'
    status_code = 403
    default_message = 'You are not authorized to perform this action'


class TenantMismatch(Forbidden):
    kind = 'tenant_mismatch'
    default_message = 'Invalid organization access'


class TenantInactive(Forbidden):
    kind = 'tenant_inactive'
    default_message = 'Organization is inactive'


class NotFound(CoreError):
    kind = 'not_found'
    status_code = 404
    default_message = 'Resource not found'


class TenantNotFound(NotFound):
    kind = 'tenant_not_found'
    default_message = 'Organization not found'


class ValidationFailed(CoreError):
    kind = 'validation_failed'
    status_code = 422
    default_message = 'Validation failed'

    def __init__(self, message=None, errors=None):
        super().__init__(message)
        self.errors = errors or {}

    def to_dict(self):
        data = super().to_dict()
        data['errors'] = self.errors
        return data


class InvalidTransition(CoreError):
    kind = 'invalid_transition'
    status_code = 409
    default_message = 'Transition not allowed from the current state'


class Unavailable(CoreError):
    kind = 'unavailable'
    status_code = 503
    default_message = 'Service temporarily unavailable'


def register_error_handlers(app):
    """Render every CoreError (and anything unexpected) as JSON."""

    @app.errorhandler(CoreError)
    def handle_core_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{error.kind}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        kind = error.name.lower().replace(' ', '_')
        return jsonify({'error': kind, 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        app.logger.error(f"Unhandled error: {error}", exc_info=True)
        return jsonify({'error': 'internal_error', 'message': 'Internal error'}), 500
