# uploads/services.py
"""
Part storage and reassembly for chunked uploads.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .exceptions import IncompleteUploadError
from .models import UploadPart, UploadSession

logger = logging.getLogger(__name__)


def store_part(session: UploadSession, chunk_index: int, uploaded_file) -> UploadPart:
    """
    Save one part. A resent index replaces the earlier bytes.
    """
    with transaction.atomic():
        existing = UploadPart.objects.filter(session=session, chunk_index=chunk_index).first()
        if existing:
            existing.file.delete(save=False)
            existing.delete()
        part = UploadPart(session=session, chunk_index=chunk_index, size=uploaded_file.size or 0)
        part.file.save(f"{chunk_index}.part", uploaded_file, save=False)
        part.save()
        # Touch the session so inactivity is measured from the latest part.
        session.save(update_fields=["updated_at"])
    return part


def assemble_parts(session: UploadSession) -> bytes:
    """
    Concatenate every part in index order, whatever order they arrived in.
    """
    missing = session.missing_parts()
    if missing:
        raise IncompleteUploadError(missing)

    buffers: list[bytes] = []
    for part in session.parts.order_by("chunk_index"):
        with part.file.open("rb") as fh:
            buffers.append(fh.read())
    data = b"".join(buffers)
    logger.info(f"Assembled {session.total_chunks} parts ({len(data)} bytes) for session {session.id}")
    return data


def destroy_session(session: UploadSession) -> None:
    """Delete a session and its part files."""
    for part in session.parts.all():
        try:
            part.file.delete(save=False)
        except Exception as e:
            logger.warning(f"Could not delete part file {part.file.name}: {e}")
    session_id = session.id
    session.delete()
    logger.debug(f"Upload session {session_id} destroyed")


def stale_sessions(hours: Optional[int] = None):
    if hours is None:
        hours = getattr(settings, "UPLOAD_SESSION_TTL_HOURS", 1)
    cutoff = timezone.now() - timedelta(hours=hours)
    return UploadSession.objects.filter(updated_at__lt=cutoff)


def purge_stale_sessions(hours: Optional[int] = None) -> List[str]:
    """
    Delete sessions idle for longer than ``hours``. Finalized sessions are
    already gone, so anything left behind was abandoned.
    Returns the ids removed.
    """
    removed = []
    for session in stale_sessions(hours):
        session_id = str(session.id)
        destroy_session(session)
        removed.append(session_id)
    if removed:
        logger.info(f"Removed {len(removed)} stale upload sessions")
    return removed
