"""
Views for consultation processing.
"""

import logging

from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .models import Consultation
from .serializers import (
    ConfirmPatientUpdatesSerializer,
    ConsultationStatusSerializer,
    ProcessConsultationSerializer,
)
from .tasks import process_consultation

logger = logging.getLogger(__name__)


def _get_consultation(request, consultation_id):
    return get_object_or_404(
        Consultation.objects.alive(),
        id=consultation_id,
        doctor=request.user,
    )


def _enqueue(request, consultation_id, default_resume):
    consultation = _get_consultation(request, consultation_id)

    serializer = ProcessConsultationSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    use_original = serializer.validated_data['useOriginal']
    resume = serializer.validated_data['resume'] if 'resume' in request.data else default_resume

    if consultation.is_locked():
        return Response(
            {'error': 'Consultation is already being processed', 'status': consultation.status},
            status=status.HTTP_409_CONFLICT
        )

    if not consultation.audio_url and not (use_original and consultation.original_audio_url):
        return Response(
            {'error': 'Consultation has no audio to process'},
            status=status.HTTP_400_BAD_REQUEST
        )

    try:
        task = process_consultation.delay(str(consultation.id), use_original=use_original, resume=resume)
    except Exception as e:
        logger.error(f"Could not enqueue processing for {consultation.id}: {e}")
        return Response(
            {'error': 'Failed to start processing'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.info(f"Queued processing for consultation {consultation.id} (resume={resume}, original={use_original})")
    return Response({
        'consultation_id': str(consultation.id),
        'task_id': task.id,
        'use_original': use_original,
        'resume': resume,
    }, status=status.HTTP_202_ACCEPTED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def start_processing(request, consultation_id):
    """
    Start processing a consultation from the first step.
    Body: {"useOriginal": bool}
    """
    return _enqueue(request, consultation_id, default_resume=False)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def retry_processing(request, consultation_id):
    """
    Reprocess after a failure. Resumes from the last completed step unless
    {"resume": false} is sent.
    """
    return _enqueue(request, consultation_id, default_resume=True)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def processing_status(request, consultation_id):
    consultation = _get_consultation(request, consultation_id)
    return Response(ConsultationStatusSerializer(consultation).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def check_duplicate(request):
    """
    Look up an existing consultation with the same audio fingerprint.
    Query: ?hash=<sha256 hex>
    """
    audio_hash = (request.query_params.get('hash') or '').strip().lower()
    if len(audio_hash) != 64:
        return Response(
            {'error': 'hash must be a SHA-256 hex digest'},
            status=status.HTTP_400_BAD_REQUEST
        )

    existing = (
        Consultation.objects.alive()
        .filter(doctor=request.user, audio_hash=audio_hash)
        .order_by('-created_at')
        .first()
    )
    return Response({
        'duplicate': existing is not None,
        'consultation_id': str(existing.id) if existing else None,
        'status': existing.status if existing else None,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def confirm_patient_updates(request, consultation_id):
    """
    Apply suggested patient record changes the doctor accepted.
    Body: {"accept": ["allergies", "weight_kg", ...]}
    """
    consultation = _get_consultation(request, consultation_id)
    serializer = ConfirmPatientUpdatesSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    patient = consultation.patient
    if patient is None:
        return Response(
            {'error': 'Consultation has no linked patient'},
            status=status.HTTP_400_BAD_REQUEST
        )

    suggestions = dict(consultation.patient_update_suggestions or {})
    accepted = [name for name in serializer.validated_data['accept'] if name in suggestions]
    missing = [name for name in serializer.validated_data['accept'] if name not in suggestions]
    if missing:
        return Response(
            {'error': 'No pending suggestion for some fields', 'fields': missing},
            status=status.HTTP_400_BAD_REQUEST
        )

    for name in accepted:
        setattr(patient, name, suggestions.pop(name))
    patient.save(update_fields=accepted + ['updated_at'])

    consultation.patient_update_suggestions = suggestions
    consultation.save(update_fields=['patient_update_suggestions', 'updated_at'])
    logger.info(f"Patient {patient.id} updated from consultation {consultation.id}: {', '.join(accepted)}")

    return Response({'updated': accepted, 'pending': suggestions})
