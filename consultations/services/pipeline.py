"""
End-to-end processing of one consultation recording.

download -> transcription -> cleaning -> extraction. Each step saves its
artifact and its status together before the next step starts, so anyone
polling the record sees whole steps only, and a failed run can be resumed
from the last completed step.
"""
import logging
import os
import tempfile
from datetime import timedelta
from typing import Callable, List, Optional, Tuple

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from consultations.exceptions import ConsultationBusyError, MissingAudioError
from consultations.models import Consultation
from integrations.clients.gpt_client import GPTClient, build_gpt_client
from nlp.context import PatientContext
from nlp.serializers import MEASUREMENT_FIELDS, TEXT_FIELDS, source_field
from nlp.services.field_extractor import MAX_PREVIOUS_CONSULTATIONS, FieldExtractor
from nlp.services.text_cleaner import TextCleaner
from stt.exceptions import AudioProcessingError, TranscriptionError
from stt.services.audio_tools import estimate_audio_duration, probe_duration, remove_file, transcode_audio
from stt.services.deduplicator import deduplicate_with_report
from stt.services.whisper_service import WhisperService
from uploads.s3 import download_audio
from uploads.utils import extension_for

logger = logging.getLogger(__name__)

DOWNLOAD = Consultation.STEP_DOWNLOAD
TRANSCRIPTION = Consultation.STEP_TRANSCRIPTION
CLEANING = Consultation.STEP_CLEANING
EXTRACTION = Consultation.STEP_EXTRACTION
STEPS = Consultation.PIPELINE_STEPS

EXTRACTION_COLUMNS = list(TEXT_FIELDS) + list(MEASUREMENT_FIELDS) + [
    'diagnosis_is_ai_suggestion',
    'patient_update_suggestions',
    'original_ai_version',
    'previous_consultations_summary',
    'status',
    'processing_completed_at',
]


def acquire_processing_lease(consultation_id) -> Consultation:
    """
    Claim the consultation for one processing run.

    Compare-and-swap on ``processing_started_at``: the row is only taken when
    nobody is processing it or the previous holder's lease has expired.
    """
    now = timezone.now()
    lease_seconds = getattr(settings, 'PROCESSING_LEASE_SECONDS', 30 * 60)
    stale_before = now - timedelta(seconds=lease_seconds)

    claimed = (
        Consultation.objects.alive()
        .filter(pk=consultation_id)
        .filter(
            ~Q(status=Consultation.STATUS_PROCESSING)
            | Q(processing_started_at__isnull=True)
            | Q(processing_started_at__lt=stale_before)
        )
        .update(
            status=Consultation.STATUS_PROCESSING,
            processing_started_at=now,
            processing_completed_at=None,
            updated_at=now,
        )
    )
    if not claimed:
        current = Consultation.objects.alive().get(pk=consultation_id)
        raise ConsultationBusyError(
            f"Consultation {current.id} is already being processed "
            f"(started {current.processing_started_at.isoformat()})"
        )
    return Consultation.objects.select_related('patient').get(pk=consultation_id)


def select_audio_url(consultation: Consultation, use_original: bool = False) -> str:
    if use_original and consultation.original_audio_url:
        return consultation.original_audio_url
    if consultation.audio_url:
        return consultation.audio_url
    raise MissingAudioError("URL do áudio não encontrada")


def resume_point(consultation: Consultation, source_url: str) -> str:
    """
    First step that has to run again.

    Stored transcripts are only reused when they came from the audio about to be used.
    """
    if consultation.transcription_source_url != source_url:
        return DOWNLOAD
    if consultation.step_status(CLEANING) == Consultation.STEP_COMPLETED and consultation.cleaned_transcription:
        return EXTRACTION
    if consultation.step_status(TRANSCRIPTION) == Consultation.STEP_COMPLETED and consultation.raw_transcription:
        return CLEANING
    return DOWNLOAD


class ConsultationPipeline:
    """
    Runs the processing steps for a consultation. Collaborators are injected;
    whatever is not given is built around one shared ``GPTClient``.
    """

    def __init__(self, transcriber: Optional[WhisperService] = None, cleaner: Optional[TextCleaner] = None,
                 extractor: Optional[FieldExtractor] = None,
                 downloader: Optional[Callable[[str], Tuple[bytes, str]]] = None,
                 client: Optional[GPTClient] = None):
        if transcriber is None or cleaner is None or extractor is None:
            client = client or build_gpt_client()
        self.transcriber = transcriber or WhisperService(client)
        self.cleaner = cleaner or TextCleaner(client)
        self.extractor = extractor or FieldExtractor(client)
        self.downloader = downloader or download_audio

    def run(self, consultation_id, use_original: bool = False, resume: bool = False) -> Consultation:
        consultation = acquire_processing_lease(consultation_id)
        step = DOWNLOAD
        temp_paths: List[str] = []
        started = timezone.now()

        try:
            source_url = select_audio_url(consultation, use_original)
            start = resume_point(consultation, source_url) if resume else DOWNLOAD
            self._reset(consultation, start)
            logger.info(f"Processing consultation {consultation.id} from step '{start}'")

            if start == DOWNLOAD:
                step = DOWNLOAD
                self._begin(consultation, step)
                audio_path = self._download(consultation, source_url, temp_paths)
                self._complete(consultation, step, ['audio_size_bytes', 'audio_format', 'audio_duration_seconds'])

                step = TRANSCRIPTION
                self._begin(consultation, step)
                self._transcribe(consultation, audio_path, source_url)
                self._complete(consultation, step, ['raw_transcription', 'transcription_source_url', 'processing_warnings'])

            context = PatientContext.from_patient(consultation.patient)

            if start in (DOWNLOAD, CLEANING):
                step = CLEANING
                self._begin(consultation, step)
                self._clean(consultation, context)
                self._complete(consultation, step, ['cleaned_transcription'])

            step = EXTRACTION
            self._begin(consultation, step)
            self._extract(consultation, context)
            consultation.status = Consultation.STATUS_COMPLETED
            consultation.processing_completed_at = timezone.now()
            self._complete(consultation, step, EXTRACTION_COLUMNS)

        except Exception as e:
            self._fail(consultation, step, e)
            raise
        finally:
            for path in temp_paths:
                remove_file(path)

        elapsed = (timezone.now() - started).total_seconds()
        logger.info(f"Consultation {consultation.id} processed in {elapsed:.1f}s")
        return consultation

    # -- step bookkeeping -------------------------------------------------

    def _reset(self, consultation: Consultation, start: str):
        keep = STEPS[:STEPS.index(start)]
        consultation.processing_steps = [
            s for s in (consultation.processing_steps or []) if s.get('step') in keep
        ]
        consultation.processing_error = None
        consultation.processing_error_code = ''
        fields = ['processing_steps', 'processing_error', 'processing_error_code', 'updated_at']
        if start == DOWNLOAD:
            consultation.processing_warnings = []
            fields.append('processing_warnings')
        consultation.save(update_fields=fields)

    def _begin(self, consultation: Consultation, step: str):
        consultation.set_step(step, Consultation.STEP_IN_PROGRESS)
        consultation.save(update_fields=['processing_steps', 'updated_at'])
        logger.info(f"[{consultation.id}] {step}: in progress")

    def _complete(self, consultation: Consultation, step: str, fields: List[str]):
        consultation.set_step(step, Consultation.STEP_COMPLETED)
        consultation.save(update_fields=fields + ['processing_steps', 'updated_at'])
        logger.info(f"[{consultation.id}] {step}: completed")

    def _fail(self, consultation: Consultation, step: str, error: Exception):
        consultation.processing_steps = [
            s for s in (consultation.processing_steps or [])
            if s.get('status') == Consultation.STEP_COMPLETED and s.get('step') != step
        ]
        consultation.set_step(step, Consultation.STEP_ERROR)
        consultation.status = Consultation.STATUS_ERROR
        consultation.processing_error = str(error) or error.__class__.__name__
        consultation.processing_error_code = getattr(error, 'code', '') or 'PROCESSING_FAILED'
        consultation.save(update_fields=[
            'status', 'processing_steps', 'processing_error', 'processing_error_code', 'updated_at',
        ])
        logger.error(f"[{consultation.id}] {step} failed: {consultation.processing_error}")

    # -- steps ----------------------------------------------------------

    def _download(self, consultation: Consultation, source_url: str, temp_paths: List[str]) -> str:
        data, content_type = self.downloader(source_url)
        if not data:
            raise MissingAudioError("Arquivo de áudio vazio")

        extension = extension_for(content_type, source_url)
        fd, path = tempfile.mkstemp(prefix='consultation-', suffix=f'.{extension}')
        temp_paths.append(path)
        with os.fdopen(fd, 'wb') as fh:
            fh.write(data)
        logger.info(f"[{consultation.id}] downloaded {len(data) / 1024 / 1024:.2f}MB ({content_type or extension})")

        if extension == 'webm':
            # WebM from browsers often lacks duration metadata.
            mp3_path = os.path.splitext(path)[0] + '.mp3'
            temp_paths.append(mp3_path)
            try:
                transcode_audio(path, mp3_path)
                path, extension = mp3_path, 'mp3'
            except AudioProcessingError as e:
                logger.warning(f"[{consultation.id}] WebM conversion failed, using original: {e}")

        consultation.audio_size_bytes = len(data)
        consultation.audio_format = extension
        if not consultation.audio_duration_seconds:
            consultation.audio_duration_seconds = (
                probe_duration(path) or estimate_audio_duration(os.path.getsize(path))
            )
        return path

    def _transcribe(self, consultation: Consultation, audio_path: str, source_url: str):
        raw_text = self.transcriber.transcribe_audio(audio_path)
        report = deduplicate_with_report(raw_text)
        if not report.text or not report.text.strip():
            raise TranscriptionError("A transcrição retornou vazia")

        warnings = [w for w in (consultation.processing_warnings or []) if w.get('step') != TRANSCRIPTION]
        if report.suspicious:
            warnings.append({
                'step': TRANSCRIPTION,
                'code': 'DEDUPLICATION_HEAVY',
                'message': (
                    f"{report.removed_ratio * 100:.0f}% da transcrição era repetição; "
                    f"revise o áudio"
                ),
            })

        consultation.raw_transcription = report.text
        consultation.transcription_source_url = source_url
        consultation.processing_warnings = warnings

    def _clean(self, consultation: Consultation, context: PatientContext):
        if getattr(settings, 'TEXT_CLEANING_ENABLED', True):
            consultation.cleaned_transcription = self.cleaner.clean_transcription(
                consultation.raw_transcription, context
            )
        else:
            consultation.cleaned_transcription = consultation.raw_transcription

    def _extract(self, consultation: Consultation, context: PatientContext):
        previous = previous_consultations(consultation)
        fields = self.extractor.extract_consultation_fields(
            consultation.cleaned_transcription,
            context,
            consultation.consultation_type,
            consultation.consultation_subtype or None,
            [p.as_previous_consultation() for p in previous],
        )
        apply_extracted_fields(consultation, fields)
        consultation.previous_consultations_summary = [
            {
                'consultation_id': str(p.id),
                'date': p.consultation_date.date().isoformat() if p.consultation_date else None,
                'chief_complaint': p.chief_complaint,
                'diagnosis': p.diagnosis,
            }
            for p in previous
        ]


def previous_consultations(consultation: Consultation, limit: int = MAX_PREVIOUS_CONSULTATIONS):
    """Completed earlier visits of the same patient with the same doctor, newest first."""
    if not consultation.patient_id:
        return []
    return list(
        Consultation.objects.alive()
        .filter(
            patient_id=consultation.patient_id,
            doctor_id=consultation.doctor_id,
            status=Consultation.STATUS_COMPLETED,
            consultation_date__lt=consultation.consultation_date,
        )
        .exclude(pk=consultation.pk)
        .order_by('-consultation_date')[:limit]
    )


def apply_extracted_fields(consultation: Consultation, fields: dict):
    """
    Copy an extraction into the consultation columns.

    Measurements are copied only when they were dictated in this visit; values the
    model echoed from the patient profile stay out of the record.
    """
    for name in TEXT_FIELDS:
        setattr(consultation, name, fields.get(name))
    consultation.diagnosis_is_ai_suggestion = bool(fields.get('diagnosis_is_ai_suggestion'))

    suggestions = dict(fields.get('patient_updates') or {})
    patient = consultation.patient
    for name in MEASUREMENT_FIELDS:
        value = fields.get(name)
        if value is None or fields.get(source_field(name)) != 'audio':
            continue
        setattr(consultation, name, value)
        if patient is not None and getattr(patient, name) != value:
            suggestions[name] = value
    consultation.patient_update_suggestions = suggestions

    if not consultation.original_ai_version:
        consultation.original_ai_version = fields
