"""
Size guard and pydub helpers for consultation audio.

The transcription provider rejects uploads above a fixed ceiling (25MB), so
anything bigger is re-encoded to mono 16kHz MP3 at a conservative bitrate
before submission. Speech survives 64kbps mono without measurable loss of
transcription accuracy.
"""
import logging
import math
import os
from typing import Optional, Sequence

from django.conf import settings
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError
from pydub.utils import mediainfo

from stt.exceptions import AudioProcessingError, MediaTooLargeError

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_MAX_BYTES = 25 * MB
DEFAULT_TARGET_BYTES = 24 * MB

SAMPLE_RATE_HZ = 16000
COMPRESSION_BITRATE_KBPS = 64
MIN_BITRATE_KBPS = 32
MAX_BITRATE_KBPS = 128
PROGRESSIVE_BITRATES_KBPS = (96, 64, 48, 32)

# Size-to-duration heuristic for compressed voice recordings: roughly one
# megabyte per minute. Used whenever the container reports no duration.
AUDIO_BYTES_PER_MINUTE = 1 * MB


def max_transcription_bytes() -> int:
    return getattr(settings, 'TRANSCRIPTION_MAX_BYTES', DEFAULT_MAX_BYTES)


def target_transcription_bytes() -> int:
    return getattr(settings, 'TRANSCRIPTION_TARGET_BYTES', DEFAULT_TARGET_BYTES)


def estimate_audio_duration(size_bytes: int) -> float:
    """Estimated duration in seconds for ``size_bytes`` of compressed voice audio."""
    if not size_bytes or size_bytes <= 0:
        return 0.0
    return size_bytes / AUDIO_BYTES_PER_MINUTE * 60


def estimate_bitrate(duration_seconds: float, target_size: Optional[int] = None) -> int:
    """
    Bitrate (kbps) that lands a recording of ``duration_seconds`` at ``target_size``,
    clamped to [32, 128].
    """
    target_size = target_size or target_transcription_bytes()
    if not duration_seconds or duration_seconds <= 0 or math.isnan(duration_seconds):
        return COMPRESSION_BITRATE_KBPS
    bitrate = int((target_size * 8) // (duration_seconds * 1000))
    return max(MIN_BITRATE_KBPS, min(MAX_BITRATE_KBPS, bitrate))


def select_bitrate(duration_seconds: float, target_size: Optional[int] = None,
                   candidates: Sequence[int] = PROGRESSIVE_BITRATES_KBPS) -> int:
    """
    Progressive compression: first candidate whose estimated output fits the target.

    Falls back to the lowest candidate when none fits; the caller then has to chunk.
    Without a usable duration the default compression bitrate is used.
    """
    ceiling = estimate_bitrate(duration_seconds, target_size)
    for bitrate in candidates:
        if bitrate <= ceiling:
            return bitrate
    return candidates[-1]


def file_size(path: str) -> int:
    return os.path.getsize(path)


def needs_compression(path: str, ceiling: Optional[int] = None) -> bool:
    ceiling = ceiling or max_transcription_bytes()
    try:
        size = file_size(path)
    except OSError as e:
        # The transcription request will report the real problem.
        logger.warning(f"Could not stat {path}: {e}")
        return False
    logger.info(f"Audio size {size / MB:.2f}MB, ceiling {ceiling / MB:.2f}MB")
    return size > ceiling


def load_audio(path: str) -> AudioSegment:
    """Decode ``path`` with pydub; raises AudioProcessingError when ffmpeg cannot read it."""
    try:
        return AudioSegment.from_file(path)
    except CouldntDecodeError as e:
        raise AudioProcessingError(f"Could not decode {path}: {e}") from e
    except OSError as e:
        # ffmpeg missing from PATH surfaces as FileNotFoundError
        logger.error(f"ffmpeg unavailable while decoding {path}: {e}")
        raise AudioProcessingError(f"Could not decode {path}: {e}") from e


def export_mp3(audio: AudioSegment, output_path: str,
               bitrate_kbps: int = COMPRESSION_BITRATE_KBPS) -> int:
    """Write ``audio`` as mono 16kHz MP3; returns the output size."""
    audio = audio.set_channels(1).set_frame_rate(SAMPLE_RATE_HZ)
    try:
        exported = audio.export(output_path, format="mp3", bitrate=f"{bitrate_kbps}k")
        exported.close()
    except (CouldntEncodeError, OSError) as e:
        raise AudioProcessingError(f"Could not encode {output_path}: {e}") from e
    return file_size(output_path)


def probe_duration(path: str) -> Optional[float]:
    """
    Duration in seconds from the container metadata, or None when unavailable.

    Browser recordings (WebM/Opus) often carry no duration header; callers
    fall back to ``estimate_audio_duration``.
    """
    try:
        duration = float(mediainfo(path).get('duration'))
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Could not read duration of {path}: {e}")
        return None

    if math.isnan(duration) or math.isinf(duration) or duration <= 0:
        logger.warning(f"Unusable duration {duration} reported for {path}")
        return None
    return duration


def transcode_audio(input_path: str, output_path: str,
                    bitrate_kbps: int = COMPRESSION_BITRATE_KBPS) -> int:
    """Re-encode to mono 16kHz MP3; returns the output size."""
    return export_mp3(load_audio(input_path), output_path, bitrate_kbps)


def compress_audio(input_path: str, output_path: str,
                   bitrate_kbps: int = COMPRESSION_BITRATE_KBPS,
                   ceiling: Optional[int] = None) -> int:
    """
    Compress ``input_path`` into ``output_path`` and return the compressed size.

    Raises MediaTooLargeError when the result is still over the ceiling; the
    compressed file is left in place so the caller can split it.
    """
    ceiling = ceiling or max_transcription_bytes()
    original_size = file_size(input_path)
    logger.info(f"Compressing {input_path} ({original_size / MB:.2f}MB) at {bitrate_kbps}kbps")

    compressed_size = transcode_audio(input_path, output_path, bitrate_kbps)
    reduction = (1 - compressed_size / original_size) * 100 if original_size else 0
    logger.info(f"Compressed to {compressed_size / MB:.2f}MB ({reduction:.1f}% smaller)")

    if compressed_size > ceiling:
        raise MediaTooLargeError(
            f"Compressed audio is {compressed_size / MB:.2f}MB, "
            f"still above the {ceiling / MB:.0f}MB limit",
            size_bytes=compressed_size,
            ceiling_bytes=ceiling,
        )
    return compressed_size


def remove_file(path: Optional[str]) -> None:
    """Best-effort delete; a missing file is not an error."""
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {path}: {e}")
