"""
Celery tasks for upload housekeeping.
"""

import logging

from celery import shared_task

from .services import purge_stale_sessions

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def cleanup_stale_upload_sessions(self, hours=None):
    removed = purge_stale_sessions(hours)
    return {'status': 'success', 'deleted': len(removed)}
