"""Pre-confirmation expiry task."""

import logging

from flask import current_app

from booking_core.errors import CoreError, NotFound
from booking_core.extensions import celery, db
from booking_core.services import get_services

logger = logging.getLogger(__name__)


def retry_countdown(base, retries):
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return base * (2 ** retries)


@celery.task(bind=True)
def check_pre_confirmation_task(self, appointment_id, organization_id):
    """
    Expire or remind on an appointment still waiting for client confirmation.

    The job carries the organization id it was enqueued with and loads the
    appointment with it explicitly; there is no request or principal here.
    A missing or foreign appointment is logged and dropped, never retried.
    Anything else is retried with exponential backoff up to
    SCHEDULER_MAX_RETRIES, then logged as an error and given up.

    Returns:
        dict: outcome of the check ('noop', 'expired' or 'reminded')
    """
    logger.info(f"Checking pre-confirmation of appointment {appointment_id} for org {organization_id}")
    config = current_app.config

    try:
        outcome = get_services().appointments.check_pre_confirmation(appointment_id, organization_id)
        return {'status': outcome, 'appointment_id': appointment_id}

    except NotFound:
        logger.warning(f"Appointment {appointment_id} not found for org {organization_id}, dropping check")
        return {'status': 'missing', 'appointment_id': appointment_id}

    except Exception as e:
        db.session.rollback()
        max_retries = config['SCHEDULER_MAX_RETRIES']
        if self.request.retries >= max_retries:
            logger.error(
                f"Giving up on pre-confirmation check for appointment {appointment_id} "
                f"after {self.request.retries} retries",
                exc_info=True
            )
            return {'status': 'failed', 'appointment_id': appointment_id}

        countdown = retry_countdown(config['SCHEDULER_RETRY_BACKOFF'], self.request.retries)
        kind = e.kind if isinstance(e, CoreError) else type(e).__name__
        logger.warning(
            f"Pre-confirmation check for appointment {appointment_id} failed ({kind}), "
            f"retry {self.request.retries + 1}/{max_retries} in {countdown}s"
        )
        raise self.retry(exc=e, countdown=countdown, max_retries=max_retries)
