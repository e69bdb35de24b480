from django.contrib import admin
from .models import Patient, Consultation


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ("full_name", "doctor", "birth_date", "created_at")
    search_fields = ("full_name", "doctor__username")


@admin.register(Consultation)
class ConsultationAdmin(admin.ModelAdmin):
    list_display = ("id", "doctor", "patient", "consultation_type", "status", "consultation_date", "deleted_at")
    list_filter = ("status", "consultation_type", "consultation_date")
    search_fields = ("id", "patient__full_name", "audio_hash")
    readonly_fields = (
        "processing_steps", "processing_started_at", "processing_completed_at",
        "processing_error", "processing_error_code", "processing_warnings",
        "raw_transcription", "transcription_source_url", "original_ai_version",
        "created_at", "updated_at",
    )
