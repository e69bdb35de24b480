"""
Schemas for the JSON returned by the language model.

Model output is untrusted input: it goes through these serializers before any
of it reaches a consultation record.
"""
import math

from rest_framework import serializers

MEASUREMENT_SOURCES = ('audio', 'profile')

TEXT_FIELDS = (
    'chief_complaint', 'hma', 'history', 'family_history', 'prenatal_perinatal_history',
    'physical_exam', 'development_notes', 'diagnosis', 'conduct', 'plan', 'notes',
    'medication_alerts',
)
MEASUREMENT_FIELDS = ('weight_kg', 'height_cm', 'head_circumference_cm')
QUALITY_SCORE_MIN = 0.0
QUALITY_SCORE_MAX = 10.0


def source_field(measurement):
    """'weight_kg' -> 'weight_source'"""
    return measurement.rsplit('_', 1)[0] + '_source'


class LenientTextField(serializers.CharField):
    """Text that the model sometimes sends as a list of strings."""

    def __init__(self, **kwargs):
        kwargs.setdefault('required', False)
        kwargs.setdefault('allow_null', True)
        kwargs.setdefault('allow_blank', True)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        if isinstance(data, (list, tuple)):
            data = ', '.join(str(item).strip() for item in data if str(item).strip())
        value = super().to_internal_value(data)
        return value or None


class MeasurementSourceField(serializers.ChoiceField):
    def __init__(self, **kwargs):
        kwargs.setdefault('required', False)
        kwargs.setdefault('allow_null', True)
        kwargs.setdefault('allow_blank', True)
        super().__init__(choices=MEASUREMENT_SOURCES, **kwargs)

    def to_internal_value(self, data):
        if isinstance(data, str):
            data = data.strip().lower()
        return super().to_internal_value(data) or None


class QualityScoreField(serializers.FloatField):
    """A 0-10 self-assessment; clamped into range, unreadable values become None."""

    def __init__(self, **kwargs):
        kwargs.setdefault('required', False)
        kwargs.setdefault('allow_null', True)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        try:
            value = super().to_internal_value(data)
        except serializers.ValidationError:
            return None
        if math.isnan(value):
            return None
        return max(QUALITY_SCORE_MIN, min(QUALITY_SCORE_MAX, value))


class CleanedTranscriptSerializer(serializers.Serializer):
    cleaned_text = serializers.CharField(trim_whitespace=True)


class PatientUpdatesSerializer(serializers.Serializer):
    allergies = LenientTextField()
    current_medications = LenientTextField()
    blood_type = LenientTextField(max_length=5)
    medical_history = LenientTextField()


class SpeakerAnalysisSerializer(serializers.Serializer):
    mother_statements = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False, default=list)
    doctor_statements = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False, default=list)


class ExtractedFieldsSerializer(serializers.Serializer):
    chief_complaint = LenientTextField()
    hma = LenientTextField()
    history = LenientTextField()
    family_history = LenientTextField()
    prenatal_perinatal_history = LenientTextField()
    physical_exam = LenientTextField()
    development_notes = LenientTextField()

    weight_kg = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=200)
    height_cm = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=250)
    head_circumference_cm = serializers.FloatField(required=False, allow_null=True, min_value=0, max_value=80)
    weight_source = MeasurementSourceField()
    height_source = MeasurementSourceField()
    head_circumference_source = MeasurementSourceField()

    diagnosis = LenientTextField()
    diagnosis_is_ai_suggestion = serializers.BooleanField(required=False, allow_null=True, default=False)

    conduct = LenientTextField()
    plan = LenientTextField()
    notes = LenientTextField()
    medication_alerts = LenientTextField()

    patient_updates = PatientUpdatesSerializer(required=False, allow_null=True)
    speaker_analysis = SpeakerAnalysisSerializer(required=False, allow_null=True)
    quality_score = QualityScoreField()

    def validate(self, attrs):
        for field in MEASUREMENT_FIELDS:
            if attrs.get(field) is None:
                attrs[source_field(field)] = None
        return attrs

    def to_fields(self):
        """Validated data with every key present, as plain dicts."""
        data = self.validated_data
        fields = {name: data.get(name) or None for name in TEXT_FIELDS}
        for name in MEASUREMENT_FIELDS:
            source_name = source_field(name)
            fields[name] = data.get(name)
            fields[source_name] = data.get(source_name)
        fields['diagnosis_is_ai_suggestion'] = bool(data.get('diagnosis_is_ai_suggestion'))
        fields['patient_updates'] = {
            key: value for key, value in dict(data.get('patient_updates') or {}).items() if value
        }
        speakers = dict(data.get('speaker_analysis') or {})
        fields['speaker_analysis'] = {
            'mother_statements': list(speakers.get('mother_statements') or []),
            'doctor_statements': list(speakers.get('doctor_statements') or []),
        }
        fields['quality_score'] = data.get('quality_score')
        return fields
