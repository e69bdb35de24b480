"""
Serializers for consultations app.
"""

from rest_framework import serializers
from .models import Consultation

PATIENT_UPDATE_FIELDS = (
    'allergies', 'current_medications', 'blood_type', 'medical_history',
    'weight_kg', 'height_cm', 'head_circumference_cm',
)


class ProcessConsultationSerializer(serializers.Serializer):
    useOriginal = serializers.BooleanField(required=False, default=False)
    resume = serializers.BooleanField(required=False, default=False)


class ConsultationStatusSerializer(serializers.ModelSerializer):
    class Meta:
        model = Consultation
        fields = [
            'id', 'status', 'processing_steps', 'processing_error', 'processing_error_code',
            'processing_warnings', 'processing_started_at', 'processing_completed_at',
            'audio_duration_seconds', 'updated_at',
        ]
        read_only_fields = fields


class ConfirmPatientUpdatesSerializer(serializers.Serializer):
    accept = serializers.ListField(
        child=serializers.ChoiceField(choices=PATIENT_UPDATE_FIELDS),
        allow_empty=False,
    )
