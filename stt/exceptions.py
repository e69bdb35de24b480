"""
Errors raised while preparing or transcribing consultation audio.
"""


class AudioProcessingError(Exception):
    """Audio could not be decoded or encoded, or ffmpeg is not installed."""

    code = 'AUDIO_PROCESSING_FAILED'


class MediaTooLargeError(AudioProcessingError):
    """Audio could not be brought under the transcription size ceiling."""

    code = 'MEDIA_TOO_LARGE'

    def __init__(self, message, size_bytes=None, ceiling_bytes=None):
        super().__init__(message)
        self.size_bytes = size_bytes
        self.ceiling_bytes = ceiling_bytes


class TranscriptionError(Exception):
    """A transcription request failed; for chunked audio, names the failing chunk."""

    code = 'TRANSCRIPTION_FAILED'

    def __init__(self, message, chunk_index=None, total_chunks=None):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks
