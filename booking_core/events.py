"""Domain events and the dispatcher that hands them to notification delivery."""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

PRE_CONFIRMED = 'pre_confirmed'
CONFIRMED = 'confirmed'
EXECUTED = 'executed'
CANCELLED = 'cancelled'
EXPIRED = 'expired'
REMINDER = 'reminder'
WELCOME = 'welcome'


@dataclass(frozen=True)
class DomainEvent:
    name: str
    user_id: int
    appointment_id: int = None
    params: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            'name': self.name,
            'user_id': self.user_id,
            'appointment_id': self.appointment_id,
            'params': dict(self.params),
        }


class EventDispatcher:
    """Collaborator interface. Emission must not wait on delivery."""

    def emit(self, events):
        raise NotImplementedError


class CeleryEventDispatcher(EventDispatcher):
    """Queues one notification task per event."""

    def emit(self, events):
        from booking_core.tasks.notifications import deliver_notification_task

        for event in events:
            logger.info(f"Emitting {event.name} for user {event.user_id} (appointment {event.appointment_id})")
            deliver_notification_task.delay(
                user_id=event.user_id,
                event_name=event.name,
                appointment_id=event.appointment_id,
                params=dict(event.params)
            )
