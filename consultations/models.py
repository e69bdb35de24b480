"""
Patients and consultations models.
"""
import uuid

from django.db import models
from django.conf import settings
from django.utils import timezone

from nlp.context import PreviousConsultation
from nlp.prompts import CONSULTATION_TYPE_CHOICES, CONSULTA_ROTINA, PUERICULTURA_SUBTYPE_CHOICES


class Patient(models.Model):
    """
    Registered patient. Only the fields the processing pipeline reads live here.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='patients')
    full_name = models.CharField(max_length=255)
    birth_date = models.DateField(null=True, blank=True)
    weight_kg = models.FloatField(null=True, blank=True)
    height_cm = models.FloatField(null=True, blank=True)
    head_circumference_cm = models.FloatField(null=True, blank=True)
    blood_type = models.CharField(max_length=5, blank=True, default='')
    allergies = models.TextField(blank=True, default='')
    medical_history = models.TextField(blank=True, default='')
    current_medications = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'
        indexes = [
            models.Index(fields=['doctor', 'full_name']),
        ]

    def __str__(self):
        return self.full_name


class ConsultationQuerySet(models.QuerySet):
    def alive(self):
        return self.filter(deleted_at__isnull=True)


class Consultation(models.Model):
    """
    One recorded consultation and everything derived from its audio.
    """
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_ERROR = 'error'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_ERROR, 'Error'),
    ]

    STEP_DOWNLOAD = 'download'
    STEP_TRANSCRIPTION = 'transcription'
    STEP_CLEANING = 'cleaning'
    STEP_EXTRACTION = 'extraction'
    PIPELINE_STEPS = [STEP_DOWNLOAD, STEP_TRANSCRIPTION, STEP_CLEANING, STEP_EXTRACTION]

    STEP_IN_PROGRESS = 'in_progress'
    STEP_COMPLETED = 'completed'
    STEP_ERROR = 'error'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    doctor = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='consultations')
    patient = models.ForeignKey(Patient, on_delete=models.SET_NULL, null=True, blank=True, related_name='consultations')
    consultation_type = models.CharField(max_length=32, choices=CONSULTATION_TYPE_CHOICES, default=CONSULTA_ROTINA)
    consultation_subtype = models.CharField(max_length=32, choices=PUERICULTURA_SUBTYPE_CHOICES, blank=True, default='')
    consultation_date = models.DateTimeField(default=timezone.now)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)

    # Audio
    audio_url = models.CharField(max_length=1024, blank=True, default='')
    original_audio_url = models.CharField(max_length=1024, null=True, blank=True)
    audio_hash = models.CharField(max_length=64, blank=True, default='', help_text="SHA-256 of the uploaded audio")
    audio_size_bytes = models.BigIntegerField(null=True, blank=True)
    audio_duration_seconds = models.FloatField(null=True, blank=True)
    audio_format = models.CharField(max_length=10, blank=True, default='')

    # Processing
    processing_steps = models.JSONField(default=list, blank=True)
    processing_started_at = models.DateTimeField(null=True, blank=True)
    processing_completed_at = models.DateTimeField(null=True, blank=True)
    processing_error = models.TextField(null=True, blank=True)
    processing_error_code = models.CharField(max_length=64, blank=True, default='')
    processing_warnings = models.JSONField(default=list, blank=True)
    raw_transcription = models.TextField(null=True, blank=True)
    cleaned_transcription = models.TextField(null=True, blank=True)
    transcription_source_url = models.CharField(max_length=1024, blank=True, default='',
                                                help_text="Audio the stored transcription was produced from")

    # Clinical record
    chief_complaint = models.TextField(null=True, blank=True)
    hma = models.TextField(null=True, blank=True)
    history = models.TextField(null=True, blank=True)
    family_history = models.TextField(null=True, blank=True)
    prenatal_perinatal_history = models.TextField(null=True, blank=True)
    physical_exam = models.TextField(null=True, blank=True)
    development_notes = models.TextField(null=True, blank=True)
    diagnosis = models.TextField(null=True, blank=True)
    diagnosis_is_ai_suggestion = models.BooleanField(default=False)
    conduct = models.TextField(null=True, blank=True)
    plan = models.TextField(null=True, blank=True)
    notes = models.TextField(null=True, blank=True)
    medication_alerts = models.TextField(null=True, blank=True)
    weight_kg = models.FloatField(null=True, blank=True)
    height_cm = models.FloatField(null=True, blank=True)
    head_circumference_cm = models.FloatField(null=True, blank=True)

    previous_consultations_summary = models.JSONField(null=True, blank=True)
    patient_update_suggestions = models.JSONField(default=dict, blank=True)
    original_ai_version = models.JSONField(null=True, blank=True)
    edited_by_doctor = models.BooleanField(default=False)
    edit_history = models.JSONField(default=list, blank=True)

    deleted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ConsultationQuerySet.as_manager()

    class Meta:
        db_table = 'consultations'
        ordering = ['-consultation_date']
        indexes = [
            models.Index(fields=['doctor', 'consultation_date']),
            models.Index(fields=['patient', 'status']),
            models.Index(fields=['audio_hash']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"Consultation {self.id} ({self.status})"

    def step_status(self, step):
        for entry in self.processing_steps or []:
            if entry.get('step') == step:
                return entry.get('status')
        return None

    def set_step(self, step, status):
        """Record ``step`` as ``status``, replacing any earlier entry for the same step."""
        entry = {'step': step, 'status': status, 'timestamp': timezone.now().isoformat()}
        steps = [s for s in (self.processing_steps or []) if s.get('step') != step]
        steps.append(entry)
        order = {name: i for i, name in enumerate(self.PIPELINE_STEPS)}
        steps.sort(key=lambda s: order.get(s.get('step'), len(order)))
        self.processing_steps = steps

    def is_locked(self, now=None):
        """True while a processing run holds the lease."""
        if self.status != self.STATUS_PROCESSING or not self.processing_started_at:
            return False
        now = now or timezone.now()
        lease = getattr(settings, 'PROCESSING_LEASE_SECONDS', 30 * 60)
        return (now - self.processing_started_at).total_seconds() < lease

    def soft_delete(self):
        self.deleted_at = timezone.now()
        self.save(update_fields=['deleted_at', 'updated_at'])

    def as_previous_consultation(self):
        return PreviousConsultation(
            consultation_date=self.consultation_date.date() if self.consultation_date else None,
            consultation_type=self.consultation_type,
            chief_complaint=self.chief_complaint,
            diagnosis=self.diagnosis,
            conduct=self.conduct,
            plan=self.plan,
        )
