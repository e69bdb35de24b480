"""
Tests for the consultation processing pipeline and its Celery task.
"""
import os
from datetime import timedelta
from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.utils import timezone

from consultations.exceptions import ConsultationBusyError, MissingAudioError
from consultations.models import Consultation, Patient
from consultations.services.pipeline import ConsultationPipeline, acquire_processing_lease, resume_point
from consultations.tasks import process_consultation
from integrations.exceptions import UpstreamResponseError
from nlp.exceptions import InsufficientDataError
from stt.exceptions import AudioProcessingError

User = get_user_model()

AUDIO_URL = 'https://cdn.test/consultations/1/audio.mp3'
ORIGINAL_URL = 'https://cdn.test/consultations/1/audio_original.webm'
RAW_TEXT = '[Speaker 1]: Bom dia. O que ele tem?\n\n[Speaker 2]: Febre há dois dias e tosse seca.'
CLEANED_TEXT = 'Médico: Bom dia. O que ele tem? Mãe: Febre há dois dias e tosse seca.'


def extracted_fields(**overrides):
    fields = {
        'chief_complaint': 'Febre e tosse',
        'hma': 'Febre há 2 dias, tosse seca',
        'history': None,
        'family_history': None,
        'prenatal_perinatal_history': None,
        'physical_exam': 'Orofaringe hiperemiada',
        'development_notes': None,
        'diagnosis': 'IVAS',
        'conduct': 'Sintomáticos',
        'plan': 'Dipirona se febre',
        'notes': None,
        'medication_alerts': None,
        'weight_kg': None,
        'height_cm': None,
        'head_circumference_cm': None,
        'weight_source': None,
        'height_source': None,
        'head_circumference_source': None,
        'diagnosis_is_ai_suggestion': False,
        'patient_updates': {},
        'speaker_analysis': {'mother_statements': [], 'doctor_statements': []},
        'quality_score': 8,
    }
    fields.update(overrides)
    return fields


@patch('consultations.services.pipeline.probe_duration', return_value=120.0)
class ConsultationPipelineTest(TestCase):

    def setUp(self):
        self.doctor = User.objects.create_user(username='pediatra', password='pass123')
        self.patient = Patient.objects.create(
            doctor=self.doctor, full_name='Joaquim Silva', weight_kg=11.0, allergies=''
        )
        self.consultation = Consultation.objects.create(
            doctor=self.doctor,
            patient=self.patient,
            audio_url=AUDIO_URL,
            original_audio_url=ORIGINAL_URL,
        )
        self.downloader = MagicMock(return_value=(b'ID3' + b'\0' * 2048, 'audio/mpeg'))
        self.transcriber = MagicMock()
        self.transcriber.transcribe_audio.return_value = RAW_TEXT
        self.cleaner = MagicMock()
        self.cleaner.clean_transcription.return_value = CLEANED_TEXT
        self.extractor = MagicMock()
        self.extractor.extract_consultation_fields.return_value = extracted_fields()
        self.pipeline = ConsultationPipeline(
            transcriber=self.transcriber,
            cleaner=self.cleaner,
            extractor=self.extractor,
            downloader=self.downloader,
        )

    def _steps(self, consultation):
        return [(s['step'], s['status']) for s in consultation.processing_steps]

    def test_successful_run(self, _probe):
        self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.status, Consultation.STATUS_COMPLETED)
        self.assertEqual(self._steps(c), [
            ('download', 'completed'),
            ('transcription', 'completed'),
            ('cleaning', 'completed'),
            ('extraction', 'completed'),
        ])
        self.assertEqual(c.raw_transcription, RAW_TEXT)
        self.assertEqual(c.cleaned_transcription, CLEANED_TEXT)
        self.assertEqual(c.transcription_source_url, AUDIO_URL)
        self.assertEqual(c.chief_complaint, 'Febre e tosse')
        self.assertEqual(c.original_ai_version['diagnosis'], 'IVAS')
        self.assertEqual(c.audio_format, 'mp3')
        self.assertEqual(c.audio_size_bytes, 2051)
        self.assertEqual(c.audio_duration_seconds, 120.0)
        self.assertIsNotNone(c.processing_completed_at)
        self.assertIsNone(c.processing_error)
        self.downloader.assert_called_once_with(AUDIO_URL)

    def test_temporary_audio_removed(self, _probe):
        self.pipeline.run(self.consultation.id)

        audio_path = self.transcriber.transcribe_audio.call_args.args[0]
        self.assertTrue(audio_path.endswith('.mp3'))
        self.assertFalse(os.path.exists(audio_path))

    def test_cleaning_failure_is_recorded(self, _probe):
        self.cleaner.clean_transcription.side_effect = UpstreamResponseError('Resposta inválida do modelo')

        with self.assertRaises(UpstreamResponseError):
            self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.status, Consultation.STATUS_ERROR)
        self.assertEqual(self._steps(c), [
            ('download', 'completed'),
            ('transcription', 'completed'),
            ('cleaning', 'error'),
        ])
        self.assertEqual([s['step'] for s in c.processing_steps if s['status'] == 'error'], ['cleaning'])
        self.assertEqual(c.processing_error, 'Resposta inválida do modelo')
        self.assertEqual(c.processing_error_code, 'UPSTREAM_BAD_RESPONSE')
        self.assertEqual(c.raw_transcription, RAW_TEXT)
        self.extractor.extract_consultation_fields.assert_not_called()
        audio_path = self.transcriber.transcribe_audio.call_args.args[0]
        self.assertFalse(os.path.exists(audio_path))

    def test_insufficient_data_code(self, _probe):
        self.extractor.extract_consultation_fields.side_effect = InsufficientDataError(word_count=3, minimum=10)

        with self.assertRaises(InsufficientDataError):
            self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.processing_error_code, 'DADOS_INSUFICIENTES')
        self.assertEqual(self._steps(c)[-1], ('extraction', 'error'))

    def test_resume_after_cleaning_failure(self, _probe):
        self.cleaner.clean_transcription.side_effect = [UpstreamResponseError('timeout'), CLEANED_TEXT]
        with self.assertRaises(UpstreamResponseError):
            self.pipeline.run(self.consultation.id)

        self.pipeline.run(self.consultation.id, resume=True)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.status, Consultation.STATUS_COMPLETED)
        self.assertEqual([s for s, status in self._steps(c) if status == 'completed'],
                         ['download', 'transcription', 'cleaning', 'extraction'])
        self.assertIsNone(c.processing_error)
        self.assertEqual(c.processing_error_code, '')
        self.assertEqual(self.downloader.call_count, 1)
        self.assertEqual(self.transcriber.transcribe_audio.call_count, 1)

    def test_without_resume_restarts_from_download(self, _probe):
        self.pipeline.run(self.consultation.id)
        self.pipeline.run(self.consultation.id)

        self.assertEqual(self.downloader.call_count, 2)
        self.assertEqual(self.transcriber.transcribe_audio.call_count, 2)

    def test_resume_with_other_audio_restarts(self, _probe):
        self.pipeline.run(self.consultation.id)
        self.downloader.return_value = (b'\x1aE\xdf\xa3' + b'\0' * 1024, 'audio/webm')

        with patch('consultations.services.pipeline.transcode_audio') as mock_transcode:
            mock_transcode.side_effect = AudioProcessingError('ffmpeg missing')
            self.pipeline.run(self.consultation.id, use_original=True, resume=True)

        self.downloader.assert_called_with(ORIGINAL_URL)
        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.transcription_source_url, ORIGINAL_URL)
        # conversion failed: the WebM file itself was transcribed
        self.assertEqual(c.audio_format, 'webm')
        self.assertTrue(self.transcriber.transcribe_audio.call_args.args[0].endswith('.webm'))

    def test_webm_converted_to_mp3(self, _probe):
        self.downloader.return_value = (b'\x1aE\xdf\xa3' + b'\0' * 1024, 'audio/webm;codecs=opus')

        with patch('consultations.services.pipeline.transcode_audio') as mock_transcode:
            self.pipeline.run(self.consultation.id)

        source, target = mock_transcode.call_args.args[:2]
        self.assertTrue(source.endswith('.webm'))
        self.assertTrue(target.endswith('.mp3'))
        self.assertEqual(self.transcriber.transcribe_audio.call_args.args[0], target)
        self.assertEqual(Consultation.objects.get(id=self.consultation.id).audio_format, 'mp3')

    def test_empty_download(self, _probe):
        self.downloader.return_value = (b'', 'audio/mpeg')

        with self.assertRaises(MissingAudioError):
            self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(self._steps(c), [('download', 'error')])
        self.assertEqual(c.processing_error_code, 'AUDIO_NOT_FOUND')

    def test_missing_audio_url(self, _probe):
        Consultation.objects.filter(id=self.consultation.id).update(audio_url='', original_audio_url=None)

        with self.assertRaises(MissingAudioError):
            self.pipeline.run(self.consultation.id)
        self.downloader.assert_not_called()

    def test_heavy_deduplication_adds_warning(self, _probe):
        self.transcriber.transcribe_audio.return_value = 'Repete isso. ' * 50

        self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.raw_transcription, 'Repete isso.')
        self.assertEqual([w['code'] for w in c.processing_warnings], ['DEDUPLICATION_HEAVY'])

    @override_settings(TEXT_CLEANING_ENABLED=False)
    def test_cleaning_disabled(self, _probe):
        self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.cleaner.clean_transcription.assert_not_called()
        self.assertEqual(c.cleaned_transcription, RAW_TEXT)
        self.assertEqual(c.status, Consultation.STATUS_COMPLETED)

    def test_measurements_only_from_audio(self, _probe):
        self.extractor.extract_consultation_fields.return_value = extracted_fields(
            weight_kg=12.5, weight_source='audio',
            height_cm=88.0, height_source='profile',
            patient_updates={'allergies': 'Amoxicilina'},
        )

        self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.weight_kg, 12.5)
        self.assertIsNone(c.height_cm)
        self.assertEqual(c.patient_update_suggestions, {'allergies': 'Amoxicilina', 'weight_kg': 12.5})
        self.patient.refresh_from_db()
        self.assertEqual(self.patient.weight_kg, 11.0)
        self.assertEqual(self.patient.allergies, '')

    def test_original_ai_version_kept_on_reprocess(self, _probe):
        self.pipeline.run(self.consultation.id)
        self.extractor.extract_consultation_fields.return_value = extracted_fields(diagnosis='Otite média')

        self.pipeline.run(self.consultation.id)

        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.diagnosis, 'Otite média')
        self.assertEqual(c.original_ai_version['diagnosis'], 'IVAS')

    def test_previous_consultations_passed(self, _probe):
        older = Consultation.objects.create(
            doctor=self.doctor, patient=self.patient, status=Consultation.STATUS_COMPLETED,
            consultation_date=timezone.now() - timedelta(days=30),
            chief_complaint='Diarreia', diagnosis='GECA',
        )
        Consultation.objects.create(
            doctor=self.doctor, patient=self.patient, status=Consultation.STATUS_ERROR,
            consultation_date=timezone.now() - timedelta(days=10),
        )
        deleted = Consultation.objects.create(
            doctor=self.doctor, patient=self.patient, status=Consultation.STATUS_COMPLETED,
            consultation_date=timezone.now() - timedelta(days=5),
        )
        deleted.soft_delete()

        self.pipeline.run(self.consultation.id)

        previous = self.extractor.extract_consultation_fields.call_args.args[4]
        self.assertEqual(len(previous), 1)
        self.assertEqual(previous[0].diagnosis, 'GECA')
        c = Consultation.objects.get(id=self.consultation.id)
        self.assertEqual(c.previous_consultations_summary[0]['consultation_id'], str(older.id))


class ProcessingLeaseTest(TestCase):

    def setUp(self):
        self.doctor = User.objects.create_user(username='pediatra', password='pass123')
        self.consultation = Consultation.objects.create(doctor=self.doctor, audio_url=AUDIO_URL)

    def test_lease_taken(self):
        c = acquire_processing_lease(self.consultation.id)
        self.assertEqual(c.status, Consultation.STATUS_PROCESSING)
        self.assertTrue(c.is_locked())

    def test_busy_consultation(self):
        acquire_processing_lease(self.consultation.id)
        with self.assertRaises(ConsultationBusyError):
            acquire_processing_lease(self.consultation.id)

    def test_stale_lease_reclaimed(self):
        Consultation.objects.filter(id=self.consultation.id).update(
            status=Consultation.STATUS_PROCESSING,
            processing_started_at=timezone.now() - timedelta(hours=2),
        )
        c = acquire_processing_lease(self.consultation.id)
        self.assertGreater(c.processing_started_at, timezone.now() - timedelta(minutes=1))

    def test_deleted_consultation(self):
        self.consultation.soft_delete()
        with self.assertRaises(Consultation.DoesNotExist):
            acquire_processing_lease(self.consultation.id)

    def test_resume_point(self):
        c = self.consultation
        self.assertEqual(resume_point(c, AUDIO_URL), 'download')

        c.transcription_source_url = AUDIO_URL
        c.raw_transcription = RAW_TEXT
        c.set_step('download', 'completed')
        c.set_step('transcription', 'completed')
        self.assertEqual(resume_point(c, AUDIO_URL), 'cleaning')
        self.assertEqual(resume_point(c, ORIGINAL_URL), 'download')

        c.cleaned_transcription = CLEANED_TEXT
        c.set_step('cleaning', 'completed')
        self.assertEqual(resume_point(c, AUDIO_URL), 'extraction')

    def test_set_step_replaces_and_orders(self):
        c = self.consultation
        c.set_step('transcription', 'in_progress')
        c.set_step('download', 'completed')
        c.set_step('transcription', 'error')
        self.assertEqual([(s['step'], s['status']) for s in c.processing_steps],
                         [('download', 'completed'), ('transcription', 'error')])


@patch('consultations.tasks.ConsultationPipeline')
class ProcessConsultationTaskTest(TestCase):

    def test_success(self, mock_pipeline_cls):
        mock_pipeline_cls.return_value.run.return_value = MagicMock(status='completed')

        result = process_consultation('c-1', use_original=True)

        self.assertEqual(result['status'], 'completed')
        mock_pipeline_cls.return_value.run.assert_called_once_with('c-1', use_original=True, resume=False)

    def test_busy(self, mock_pipeline_cls):
        mock_pipeline_cls.return_value.run.side_effect = ConsultationBusyError('busy')
        self.assertEqual(process_consultation('c-1')['status'], 'already_processing')

    def test_not_found(self, mock_pipeline_cls):
        mock_pipeline_cls.return_value.run.side_effect = Consultation.DoesNotExist()
        self.assertEqual(process_consultation('c-1')['status'], 'not_found')

    def test_failure_reported(self, mock_pipeline_cls):
        mock_pipeline_cls.return_value.run.side_effect = InsufficientDataError(word_count=2, minimum=10)

        result = process_consultation('c-1')

        self.assertEqual(result['status'], 'error')
        self.assertEqual(result['error_code'], 'DADOS_INSUFICIENTES')
