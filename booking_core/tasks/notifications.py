"""Notification delivery task."""

import logging

from flask import current_app

from booking_core.extensions import celery, db
from booking_core.models.user import User

logger = logging.getLogger(__name__)


class Notifier:
    """Delivers one event to one user. Message content lives outside this service."""

    def deliver(self, user, event_name, appointment_id=None, params=None):
        logger.info(
            f"Would send '{event_name}' to {user.email} "
            f"(appointment {appointment_id}, params {params or {}})"
        )


notifier = Notifier()


@celery.task(bind=True)
def deliver_notification_task(self, user_id, event_name, appointment_id=None, params=None):
    """
    Deliver an event to a user, retried a bounded number of times.

    Returns:
        dict: delivery result
    """
    max_retries = current_app.config['NOTIFICATION_MAX_RETRIES']
    try:
        user = db.session.get(User, user_id)
        if user is None:
            logger.warning(f"Dropping '{event_name}' notification for missing user {user_id}")
            return {'status': 'missing', 'user_id': user_id}

        notifier.deliver(user, event_name, appointment_id=appointment_id, params=params)
        return {'status': 'sent', 'user_id': user_id, 'event': event_name}

    except Exception as e:
        if self.request.retries >= max_retries:
            logger.error(
                f"Giving up on '{event_name}' notification for user {user_id}",
                exc_info=True
            )
            return {'status': 'failed', 'user_id': user_id, 'event': event_name}

        logger.warning(f"Notification '{event_name}' for user {user_id} failed: {e}")
        raise self.retry(exc=e, countdown=60 * (self.request.retries + 1), max_retries=max_retries)
