import os

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Per-booking lock settings, in seconds
BOOKING_LOCK_TIMEOUT = int(os.getenv("BOOKING_LOCK_TIMEOUT", "10"))
BOOKING_LOCK_WAIT = int(os.getenv("BOOKING_LOCK_WAIT", "5"))


def get_redis_url():
    return REDIS_URL
