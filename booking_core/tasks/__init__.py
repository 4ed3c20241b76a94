"""Celery tasks. Imported by create_app so the worker registers them."""

from booking_core.tasks import appointments, notifications  # noqa: F401
