import logging
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from djq.core.redis_config import BOOKING_LOCK_TIMEOUT, BOOKING_LOCK_WAIT, get_redis_url
from djq.services.errors import BookingBusyError

logger = logging.getLogger(__name__)


def get_redis_client():
    """Get Redis client for locking."""
    return redis.from_url(get_redis_url(), decode_responses=True)


@contextmanager
def booking_lock(booking_id: str) -> Iterator[None]:
    """
    Serialize partnership changes on one booking across processes.

    Only requests touching the same booking wait on each other. Raises
    BookingBusyError if the lock is not acquired within BOOKING_LOCK_WAIT.
    """
    redis_client = get_redis_client()
    lock = redis_client.lock(
        f"booking_lock:{booking_id}", timeout=BOOKING_LOCK_TIMEOUT, blocking_timeout=BOOKING_LOCK_WAIT
    )
    try:
        acquired = lock.acquire(blocking=True)
    except redis.exceptions.LockError:
        raise BookingBusyError(booking_id)
    if not acquired:
        logger.warning("Timed out waiting for lock on booking %s", booking_id)
        raise BookingBusyError(booking_id)

    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockNotOwnedError:
            # expired while held; the transaction already decided the outcome
            logger.warning("Lock on booking %s expired before release", booking_id)
