"""
Tests for time-based audio splitting.
"""
import os
from unittest.mock import MagicMock, patch

from django.test import SimpleTestCase

from stt.exceptions import AudioProcessingError, MediaTooLargeError
from stt.services.audio_tools import MB
from stt.services.chunker import (
    AudioChunk,
    calculate_optimal_chunk_duration,
    cleanup_chunks,
    extract_chunk,
    split_audio_by_time,
)


def fake_extract(sizes):
    """Stand-in for the encoder: writes a chunk of the next size in ``sizes``."""
    remaining = iter(sizes)

    def extract(audio, output_path, start_seconds, duration_seconds):
        with open(output_path, 'wb') as fh:
            fh.write(b'\0' * next(remaining))

    return extract


class OptimalChunkDurationTest(SimpleTestCase):

    @patch('stt.services.chunker.probe_duration', return_value=35 * 60.0)
    @patch('stt.services.chunker.file_size', return_value=30 * MB)
    def test_clamped_to_maximum(self, _size, _probe):
        minutes = calculate_optimal_chunk_duration('audio.mp3')
        self.assertEqual(minutes, 15)
        # 30MB over 35 min: a 15 min chunk is about 12.9MB
        self.assertLessEqual(minutes * 30 / 35, 20)

    @patch('stt.services.chunker.probe_duration', return_value=10 * 60.0)
    @patch('stt.services.chunker.file_size', return_value=20 * MB)
    def test_within_range(self, _size, _probe):
        self.assertEqual(calculate_optimal_chunk_duration('audio.mp3'), 10)

    @patch('stt.services.chunker.probe_duration', return_value=10 * 60.0)
    @patch('stt.services.chunker.file_size', return_value=60 * MB)
    def test_clamped_to_minimum(self, _size, _probe):
        self.assertEqual(calculate_optimal_chunk_duration('audio.mp3'), 5)

    @patch('stt.services.chunker.probe_duration', return_value=None)
    @patch('stt.services.chunker.file_size', return_value=30 * MB)
    def test_estimated_duration(self, _size, _probe):
        # 1MB/min estimate -> 20 min ideal, clamped
        self.assertEqual(calculate_optimal_chunk_duration('audio.webm'), 15)


class SplitAudioTest(SimpleTestCase):

    def setUp(self):
        patcher = patch('stt.services.chunker.load_audio')
        self.mock_load = patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        cleanup_chunks(getattr(self, 'chunks', []))

    @patch('stt.services.chunker.extract_chunk')
    def test_measured_duration(self, mock_extract):
        mock_extract.side_effect = fake_extract([1000, 1000, 1000])

        self.chunks = split_audio_by_time('audio.mp3', 15, total_duration=35 * 60.0)

        self.assertEqual(len(self.chunks), 3)
        self.assertEqual([c.start_time for c in self.chunks], [0, 900, 1800])
        self.assertEqual([c.duration for c in self.chunks], [900, 900, 300])
        self.assertEqual([c.index for c in self.chunks], [0, 1, 2])
        for chunk in self.chunks:
            self.assertTrue(os.path.exists(chunk.path))
        self.mock_load.assert_called_once_with('audio.mp3')
        self.assertIs(mock_extract.call_args_list[1][0][0], self.mock_load.return_value)
        self.assertEqual(mock_extract.call_args_list[1][0][2], 900)
        self.assertEqual(mock_extract.call_args_list[1][0][3], 900)

    @patch('stt.services.chunker.extract_chunk')
    def test_exact_multiple(self, mock_extract):
        mock_extract.side_effect = fake_extract([1000, 1000])
        self.chunks = split_audio_by_time('audio.mp3', 15, total_duration=30 * 60.0)
        self.assertEqual(len(self.chunks), 2)

    @patch('stt.services.chunker.resolve_duration', return_value=(1800.0, False))
    @patch('stt.services.chunker.extract_chunk')
    def test_decoded_length_replaces_estimate(self, mock_extract, _resolve):
        self.mock_load.return_value.__len__.return_value = 40 * 60 * 1000
        mock_extract.side_effect = fake_extract([1000, 1000, 1000])

        self.chunks = split_audio_by_time('audio.webm', 15)

        self.assertEqual(len(self.chunks), 3)
        self.assertEqual(self.chunks[-1].duration, 600)

    @patch('stt.services.chunker.probe_duration', return_value=900.0)
    @patch('stt.services.chunker.resolve_duration', return_value=(1800.0, False))
    @patch('stt.services.chunker.extract_chunk')
    def test_estimated_duration_stops_at_empty_chunk(self, mock_extract, _resolve, _probe):
        mock_extract.side_effect = fake_extract([20000, 20000, 100])

        self.chunks = split_audio_by_time('audio.webm', 15)

        self.assertEqual(len(self.chunks), 2)
        self.assertEqual(mock_extract.call_count, 3)
        trailing = mock_extract.call_args_list[2][0][1]
        self.assertFalse(os.path.exists(trailing))

    @patch('stt.services.chunker.extract_chunk')
    def test_undecodable_audio_produces_no_chunks(self, mock_extract):
        self.mock_load.side_effect = AudioProcessingError('Could not decode audio.mp3')

        with self.assertRaises(AudioProcessingError):
            split_audio_by_time('audio.mp3', 15, total_duration=600.0)

        mock_extract.assert_not_called()

    @patch('stt.services.chunker.recompress_chunk', return_value=1500)
    @patch('stt.services.chunker.max_transcription_bytes', return_value=1000)
    @patch('stt.services.chunker.extract_chunk')
    def test_oversized_chunk_fails_and_cleans_up(self, mock_extract, _ceiling, _recompress):
        mock_extract.side_effect = fake_extract([2000])

        with self.assertRaises(MediaTooLargeError):
            split_audio_by_time('audio.mp3', 15, total_duration=600.0)

        produced = mock_extract.call_args_list[0][0][1]
        self.assertFalse(os.path.exists(produced))

    @patch('stt.services.chunker.recompress_chunk', return_value=500)
    @patch('stt.services.chunker.max_transcription_bytes', return_value=1000)
    @patch('stt.services.chunker.extract_chunk')
    def test_oversized_chunk_recompressed(self, mock_extract, _ceiling, mock_recompress):
        mock_extract.side_effect = fake_extract([2000])

        self.chunks = split_audio_by_time('audio.mp3', 15, total_duration=600.0)

        self.assertEqual(len(self.chunks), 1)
        mock_recompress.assert_called_once_with(self.chunks[0].path)

    def test_cleanup_chunks_ignores_missing_files(self):
        cleanup_chunks([AudioChunk(path='/nonexistent/chunk.mp3', index=0, start_time=0, duration=60)])


class ExtractChunkTest(SimpleTestCase):

    @patch('stt.services.chunker.export_mp3')
    def test_slices_in_milliseconds(self, mock_export):
        audio = MagicMock()

        extract_chunk(audio, 'chunk.mp3', 900, 900)

        audio.__getitem__.assert_called_once_with(slice(900000, 1800000))
        mock_export.assert_called_once_with(audio.__getitem__.return_value, 'chunk.mp3', 64)
