"""Flask application factory."""

import logging

from flask import Flask, g, has_app_context

from booking_core.config import Config
from booking_core.extensions import celery, db, limiter, login_manager
from booking_core.tenancy import TenantContext


def create_app(config_class=Config):
    """Create and configure Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Configure Celery
    celery.conf.update(
        broker_url=app.config['CELERY_BROKER_URL'],
        result_backend=app.config['CELERY_RESULT_BACKEND'],
        task_serializer=app.config['CELERY_TASK_SERIALIZER'],
        result_serializer=app.config['CELERY_RESULT_SERIALIZER'],
        accept_content=app.config['CELERY_ACCEPT_CONTENT'],
        timezone=app.config['CELERY_TIMEZONE'],
        enable_utc=app.config['CELERY_ENABLE_UTC'],
        task_always_eager=app.config['CELERY_TASK_ALWAYS_EAGER'],
        task_eager_propagates=app.config['CELERY_TASK_EAGER_PROPAGATES'],
    )

    # Celery context task to work with Flask app context; eager calls
    # already inside one (tests, CLI) keep theirs
    class ContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            if has_app_context():
                return self.run(*args, **kwargs)
            with app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = ContextTask

    # Core collaborators
    from booking_core.services import EXTENSION_KEY, build_services
    app.extensions[EXTENSION_KEY] = build_services(app.config)

    # Registers the Flask-Login request loader and the tasks
    import booking_core.auth.bearer  # noqa: F401
    import booking_core.tasks  # noqa: F401

    from booking_core.errors import register_error_handlers
    register_error_handlers(app)

    # One tenant context per request, cleared however the request ends
    @app.before_request
    def open_tenant_context():
        g.tenant_context = TenantContext()

    @app.teardown_request
    def close_tenant_context(exc=None):
        context = g.pop('tenant_context', None)
        if context is not None:
            context.clear()
        g.pop('principal', None)
        # Flask-Login caches the user on g, which outlives the request when
        # an app context was already pushed
        g.pop('_login_user', None)

    # Register blueprints
    from booking_core.appointments.routes import appointments_bp
    from booking_core.auth.routes import auth_bp
    from booking_core.organization.routes import organization_bp
    from booking_core.users.routes import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(appointments_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(organization_bp)

    from booking_core import cli
    cli.init_app(app)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'ok'}, 200

    return app
