import requests

from djq.core.celery_config import celery_app
from djq.database.db import SessionLocal
from djq.services.listings import sync_event_listing


@celery_app.task(
    bind=True,
    autoretry_for=(requests.RequestException,),
    retry_backoff=True,
    max_retries=3,
)
def sync_event_listing_task(self, event_id: str):
    """List a freshly published event in the external events directory."""
    db = SessionLocal()
    try:
        return sync_event_listing(db, event_id)
    finally:
        db.close()
