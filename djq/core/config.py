import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./djq.db")

# External events directory that published events are listed in
EVENTS_DIRECTORY_URL = os.getenv("EVENTS_DIRECTORY_URL", "http://localhost:3002")
PUBLIC_BASE_URL = os.getenv("DJQ_PUBLIC_URL", "")
LISTING_SYNC_TIMEOUT = float(os.getenv("LISTING_SYNC_TIMEOUT", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def get_database_url():
    return DATABASE_URL


def get_events_directory_url():
    return EVENTS_DIRECTORY_URL.rstrip("/")
