# uploads/views.py
from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes, permission_classes
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from consultations.models import Consultation, Patient
from consultations.tasks import process_consultation
from .exceptions import HashMismatchError, IncompleteUploadError
from .models import UploadSession
from .s3 import build_audio_key, upload_audio
from .serializers import FinalizeUploadSerializer, UploadChunkSerializer
from .services import assemble_parts, destroy_session, store_part
from .tasks import cleanup_stale_upload_sessions
from .utils import content_type_for, extension_for, sha256_hex

logger = logging.getLogger(__name__)


def _expired_response(session):
    return Response(
        {"error": "Upload session expired", "session_id": str(session.id)},
        status=status.HTTP_410_GONE,
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@parser_classes([MultiPartParser, FormParser])
def upload_chunk(request):
    """
    Receive one part of a recording. Parts may arrive in any order.
    """
    serializer = UploadChunkSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    session, created = UploadSession.objects.get_or_create(
        id=data["sessionId"],
        defaults={"doctor": request.user, "total_chunks": data["totalChunks"]},
    )
    if session.doctor_id != request.user.id:
        return Response({"error": "Upload session not found"}, status=status.HTTP_404_NOT_FOUND)
    if not created and session.is_expired():
        return _expired_response(session)
    if session.total_chunks != data["totalChunks"]:
        return Response(
            {"error": "totalChunks does not match the session", "total": session.total_chunks},
            status=status.HTTP_400_BAD_REQUEST,
        )

    if created and data["chunkIndex"] == 0:
        try:
            cleanup_stale_upload_sessions.delay()
        except Exception as e:
            logger.warning(f"Could not schedule upload cleanup: {e}")

    store_part(session, data["chunkIndex"], data["chunk"])

    received = session.parts.count()
    return Response({
        "received": received,
        "total": session.total_chunks,
        "progress": round(received * 100 / session.total_chunks, 1),
    })


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@parser_classes([JSONParser, FormParser, MultiPartParser])
def finalize_upload(request):
    """
    Reassemble a complete session, store it and create the consultation.
    Processing is queued right away.
    """
    serializer = FinalizeUploadSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    session = get_object_or_404(UploadSession, id=data["sessionId"], doctor=request.user)
    if session.is_expired():
        return _expired_response(session)

    original_session = None
    if data.get("originalSessionId"):
        original_session = get_object_or_404(UploadSession, id=data["originalSessionId"], doctor=request.user)
        if original_session.is_expired():
            return _expired_response(original_session)

    patient = get_object_or_404(Patient, id=data["patientId"], doctor=request.user)

    try:
        blob = assemble_parts(session)
        original_blob = assemble_parts(original_session) if original_session else None
    except IncompleteUploadError as e:
        return Response(
            {"error": str(e), "code": e.code, "missing": e.missing},
            status=status.HTTP_400_BAD_REQUEST,
        )

    digest = sha256_hex(blob)
    expected = (data.get("hash") or "").lower()
    if expected and expected != digest:
        e = HashMismatchError(expected, digest)
        logger.warning(f"Session {session.id}: {e}")
        return Response(
            {"error": str(e), "code": e.code, "expected": e.expected, "actual": e.actual},
            status=status.HTTP_400_BAD_REQUEST,
        )

    extension = extension_for(data.get("fileType"), data.get("fileName"))
    consultation = Consultation(
        doctor=request.user,
        patient=patient,
        consultation_type=data["consultationType"],
        consultation_subtype=data.get("consultationSubtype") or "",
        audio_hash=digest,
        audio_size_bytes=len(blob),
        audio_duration_seconds=data.get("duration") or None,
        audio_format=extension,
    )

    try:
        key = build_audio_key(request.user.id, consultation.id, extension)
        consultation.audio_url = upload_audio(key, blob, content_type_for(extension))
        if original_blob is not None:
            original_type = data.get("originalFileType") or data.get("fileType")
            original_ext = extension_for(original_type)
            original_key = build_audio_key(request.user.id, consultation.id, original_ext, suffix="_original")
            consultation.original_audio_url = upload_audio(
                original_key, original_blob, content_type_for(original_ext)
            )
    except Exception as e:
        # Parts are kept so the client can finalize again.
        logger.error(f"Storing audio for session {session.id} failed: {e}")
        return Response(
            {"error": "Failed to store audio"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    consultation.save()
    destroy_session(session)
    if original_session:
        destroy_session(original_session)
    logger.info(f"Consultation {consultation.id} created from upload ({len(blob)} bytes, {extension})")

    task_id = None
    try:
        task_id = process_consultation.delay(str(consultation.id)).id
    except Exception as e:
        logger.error(f"Could not enqueue processing for {consultation.id}: {e}")

    return Response({
        "consultation_id": str(consultation.id),
        "audio_url": consultation.audio_url,
        "original_audio_url": consultation.original_audio_url,
        "audio_hash": digest,
        "task_id": task_id,
    }, status=status.HTTP_201_CREATED)
