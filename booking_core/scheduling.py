"""Deadline scheduling for appointment expiry checks."""

import logging

logger = logging.getLogger(__name__)


class DeadlineScheduler:
    """
    Collaborator interface. ``schedule_at`` must return without waiting for
    the check to run; scheduling the same appointment twice is allowed
    because the check itself is idempotent.
    """

    def schedule_at(self, when, appointment_id, organization_id):
        raise NotImplementedError


class CeleryDeadlineScheduler(DeadlineScheduler):
    """Enqueues the pre-confirmation check with an ETA."""

    def schedule_at(self, when, appointment_id, organization_id):
        from booking_core.tasks.appointments import check_pre_confirmation_task

        logger.info(f"Scheduling pre-confirmation check for appointment {appointment_id} at {when.isoformat()}")
        check_pre_confirmation_task.apply_async(
            kwargs={'appointment_id': appointment_id, 'organization_id': organization_id},
            eta=when
        )
