# uploads/models.py
from __future__ import annotations

import uuid
from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone


def upload_to_part(instance: "UploadPart", filename: str) -> str:
    # instance.session_id is the implicit FK column
    return f"upload_parts/{instance.session_id}/{instance.chunk_index}.part"


class UploadSession(models.Model):
    """
    A recording arriving in parts. Destroyed once the parts are assembled.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    doctor = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, null=True, blank=True, related_name="upload_sessions"
    )
    total_chunks = models.PositiveIntegerField()
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"UploadSession {self.id} ({self.parts.count()}/{self.total_chunks})"

    def is_expired(self, now=None) -> bool:
        """Idle for longer than UPLOAD_SESSION_TTL_HOURS."""
        ttl_hours = getattr(settings, "UPLOAD_SESSION_TTL_HOURS", 1)
        now = now or timezone.now()
        return self.updated_at < now - timedelta(hours=ttl_hours)

    def missing_parts(self) -> list[int]:
        received = set(self.parts.values_list("chunk_index", flat=True))
        return [i for i in range(self.total_chunks) if i not in received]


class UploadPart(models.Model):
    session = models.ForeignKey(UploadSession, on_delete=models.CASCADE, related_name="parts")
    chunk_index = models.PositiveIntegerField()
    file = models.FileField(upload_to=upload_to_part)
    size = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("session", "chunk_index")
        ordering = ["chunk_index"]
