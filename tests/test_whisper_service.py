"""
Tests for transcription normalization and the compress/chunk strategy.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase

from integrations.exceptions import GPTClientError
from stt.exceptions import MediaTooLargeError, TranscriptionError
from stt.services.audio_tools import MB
from stt.services.chunker import AudioChunk, calculate_optimal_chunk_duration, chunk_target_bytes
from stt.services.whisper_service import DEFAULT_PROMPT, WhisperService, normalize_transcription


class NormalizeTranscriptionTest(SimpleTestCase):

    def test_plain_text(self):
        self.assertEqual(normalize_transcription({'text': '  Bom dia, doutor.  '}), 'Bom dia, doutor.')
        self.assertEqual(normalize_transcription(' texto '), 'texto')

    def test_diarized_segments(self):
        response = {
            'text': 'ignored',
            'segments': [
                {'speaker': 'A', 'text': 'Bom dia.'},
                {'speaker': 'A', 'text': 'O que houve?'},
                {'speaker': 'B', 'text': 'Ela está com febre.'},
                {'speaker': 'A', 'text': 'Desde quando?'},
            ],
        }
        self.assertEqual(
            normalize_transcription(response),
            '[Speaker 1]: Bom dia. O que houve?\n\n'
            '[Speaker 2]: Ela está com febre.\n\n'
            '[Speaker 1]: Desde quando?'
        )

    def test_diarized_objects_keep_numbered_labels(self):
        response = SimpleNamespace(text='', segments=[
            SimpleNamespace(speaker='speaker_0', text='Quantos anos ele tem?'),
            SimpleNamespace(speaker='speaker_1', text='Dois anos.'),
            SimpleNamespace(speaker='speaker_1', text=' '),
        ])
        self.assertEqual(
            normalize_transcription(response),
            '[Speaker 0]: Quantos anos ele tem?\n\n[Speaker 1]: Dois anos.'
        )

    def test_segments_without_speakers_use_text(self):
        response = {'text': 'Texto completo', 'segments': [{'text': 'Texto'}, {'text': 'completo'}]}
        self.assertEqual(normalize_transcription(response), 'Texto completo')


class TranscribeChunksTest(SimpleTestCase):

    def setUp(self):
        self.client = MagicMock()
        self.client.supports_diarization = False
        self.service = WhisperService(self.client, language='pt')
        self.chunks = [
            AudioChunk(path='/tmp/c0.mp3', index=0, start_time=0, duration=900),
            AudioChunk(path='/tmp/c1.mp3', index=1, start_time=900, duration=600),
        ]

    def test_joined_in_order_with_context(self):
        first = 'a mãe conta que a febre começou ontem ' * 10
        self.client.transcribe.side_effect = [{'text': first}, {'text': 'e melhorou com antitérmico'}]

        result = self.service.transcribe_chunks(self.chunks)

        self.assertEqual(result, first.strip() + ' e melhorou com antitérmico')
        first_call, second_call = self.client.transcribe.call_args_list
        self.assertEqual(first_call.args[0], '/tmp/c0.mp3')
        self.assertEqual(first_call.kwargs['prompt'], DEFAULT_PROMPT)
        self.assertEqual(first_call.kwargs['language'], 'pt')
        self.assertEqual(second_call.kwargs['prompt'], first.strip()[-200:])

    def test_failing_chunk_is_named(self):
        self.client.transcribe.side_effect = [{'text': 'parte um'}, GPTClientError('rate limited')]

        with self.assertRaises(TranscriptionError) as ctx:
            self.service.transcribe_chunks(self.chunks)

        self.assertIn('chunk 2/2', str(ctx.exception))
        self.assertEqual(ctx.exception.chunk_index, 1)
        self.assertEqual(ctx.exception.total_chunks, 2)

    def test_diarized_chunks_note_missing_context(self):
        self.client.supports_diarization = True
        self.client.transcribe.side_effect = [{'text': 'parte um'}, {'text': 'parte dois'}]

        with self.assertLogs('stt.services.whisper_service', level='INFO') as logs:
            result = self.service.transcribe_chunks(self.chunks)

        self.assertEqual(result, 'parte um parte dois')
        self.assertTrue(any('without continuation context' in line for line in logs.output))


@patch('stt.services.whisper_service.resolve_duration', return_value=(35 * 60.0, True))
@patch('stt.services.whisper_service.remove_file')
@patch('stt.services.whisper_service.cleanup_chunks')
@patch('stt.services.whisper_service.needs_compression')
class TranscribeAudioTest(SimpleTestCase):

    def setUp(self):
        self.client = MagicMock()
        self.client.transcribe.return_value = {'text': 'transcrição'}
        self.service = WhisperService(self.client, language='pt')

    @patch('stt.services.whisper_service.compress_audio')
    def test_small_file_sent_as_is(self, mock_compress, mock_needs, _cleanup, _remove, _duration):
        mock_needs.return_value = False

        self.assertEqual(self.service.transcribe_audio('/tmp/audio.mp3'), 'transcrição')

        mock_compress.assert_not_called()
        self.assertEqual(self.client.transcribe.call_args.args[0], '/tmp/audio.mp3')

    @patch('stt.services.whisper_service.split_audio_by_time')
    @patch('stt.services.whisper_service.compress_audio', return_value=22 * MB)
    def test_40mb_compressed_to_22mb_is_not_chunked(self, mock_compress, mock_split, mock_needs,
                                                     mock_cleanup, mock_remove, _duration):
        mock_needs.return_value = True

        result = self.service.transcribe_audio('/tmp/audio.webm')

        self.assertEqual(result, 'transcrição')
        # 96kbps would overshoot 24MB for 35 minutes
        mock_compress.assert_called_once_with(
            '/tmp/audio.webm', '/tmp/audio.webm.compressed.mp3', bitrate_kbps=64
        )
        mock_split.assert_not_called()
        self.client.transcribe.assert_called_once()
        self.assertEqual(self.client.transcribe.call_args.args[0], '/tmp/audio.webm.compressed.mp3')
        mock_remove.assert_called_once_with('/tmp/audio.webm.compressed.mp3')

    @patch('stt.services.chunker.probe_duration', return_value=35 * 60.0)
    @patch('stt.services.chunker.file_size', return_value=30 * MB)
    @patch('stt.services.whisper_service.split_audio_by_time')
    @patch('stt.services.whisper_service.compress_audio')
    def test_40mb_compressed_to_30mb_is_chunked(self, mock_compress, mock_split, _size, _probe,
                                                 mock_needs, mock_cleanup, mock_remove, _duration):
        mock_needs.return_value = True
        mock_compress.side_effect = MediaTooLargeError('still too big', size_bytes=30 * MB, ceiling_bytes=25 * MB)
        chunks = [
            AudioChunk(path=f'/tmp/chunk-{i}.mp3', index=i, start_time=i * 900, duration=900)
            for i in range(3)
        ]
        mock_split.return_value = chunks
        self.client.transcribe.side_effect = [{'text': 'um'}, {'text': 'dois'}, {'text': 'três'}]

        result = self.service.transcribe_audio('/tmp/audio.webm')

        self.assertEqual(result, 'um dois três')
        compressed = '/tmp/audio.webm.compressed.mp3'
        mock_split.assert_called_once_with(compressed, 15)
        chunk_minutes = mock_split.call_args.args[1]
        self.assertEqual(chunk_minutes, calculate_optimal_chunk_duration(compressed))
        # 30MB over 35 min: each chunk of the chosen length stays under the 20MB chunk target
        self.assertLessEqual(30 * MB * chunk_minutes / 35, chunk_target_bytes())
        mock_cleanup.assert_called_once_with(chunks)
        mock_remove.assert_called_once_with(compressed)

    @patch('stt.services.whisper_service.compress_audio', return_value=22 * MB)
    def test_cleanup_on_failure(self, _compress, mock_needs, mock_cleanup, mock_remove, _duration):
        mock_needs.return_value = True
        self.client.transcribe.side_effect = GPTClientError('boom')

        with self.assertRaises(GPTClientError):
            self.service.transcribe_audio('/tmp/audio.mp3')

        mock_remove.assert_called_once_with('/tmp/audio.mp3.compressed.mp3')
        mock_cleanup.assert_called_once_with([])
