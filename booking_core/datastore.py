"""Mapping of data store failures onto the core's Unavailable error."""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from booking_core.errors import Unavailable
from booking_core.extensions import db

logger = logging.getLogger(__name__)

DATA_STORE_ERRORS = (OperationalError, PoolTimeoutError)


@contextmanager
def data_store_guard(operation):
    """
    Fail the operation with Unavailable when the data store times out or
    drops the connection. Nothing is retried here; that is the caller's call.
    """
    try:
        yield
    except DATA_STORE_ERRORS as e:
        db.session.rollback()
        logger.error(f"Data store unavailable during {operation}: {e}")
        raise Unavailable() from e
