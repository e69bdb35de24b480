"""
Time-based splitting for audio that stays over the size ceiling after compression.
"""
import logging
import math
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional

from django.conf import settings
from pydub import AudioSegment

from stt.exceptions import MediaTooLargeError
from stt.services.audio_tools import (
    COMPRESSION_BITRATE_KBPS,
    MB,
    estimate_audio_duration,
    export_mp3,
    file_size,
    load_audio,
    max_transcription_bytes,
    probe_duration,
    remove_file,
    transcode_audio,
)

logger = logging.getLogger(__name__)

MIN_CHUNK_MINUTES = 5
MAX_CHUNK_MINUTES = 15
DEFAULT_CHUNK_TARGET_BYTES = 20 * MB
RECOMPRESSION_BITRATE_KBPS = 32
# Anything smaller is past the real end of the recording.
MIN_VIABLE_CHUNK_BYTES = 10 * 1024
# Hard stop for recordings whose duration had to be guessed (12h at 15 min/chunk).
MAX_ESTIMATED_CHUNKS = 48


@dataclass
class AudioChunk:
    path: str
    index: int
    start_time: float
    duration: float


def chunk_target_bytes() -> int:
    return getattr(settings, 'CHUNK_TARGET_BYTES', DEFAULT_CHUNK_TARGET_BYTES)


def resolve_duration(path: str, size_bytes: Optional[int] = None):
    """
    Return ``(duration_seconds, measured)``.

    ``measured`` is False when the metadata had nothing usable and the size-based
    estimate was used instead.
    """
    duration = probe_duration(path)
    if duration:
        return duration, True
    if size_bytes is None:
        size_bytes = file_size(path)
    estimated = estimate_audio_duration(size_bytes)
    logger.warning(f"Duration unavailable for {path}; estimated {estimated / 60:.1f} min from size")
    return estimated, False


def calculate_optimal_chunk_duration(path: str) -> int:
    """Chunk length in minutes keeping each piece under the chunk target at the observed MB/min."""
    size_bytes = file_size(path)
    duration, _ = resolve_duration(path, size_bytes)
    if duration <= 0:
        return MAX_CHUNK_MINUTES

    mb_per_minute = (size_bytes / MB) / (duration / 60)
    if mb_per_minute <= 0:
        return MAX_CHUNK_MINUTES

    ideal_minutes = math.floor((chunk_target_bytes() / MB) / mb_per_minute)
    minutes = max(MIN_CHUNK_MINUTES, min(MAX_CHUNK_MINUTES, ideal_minutes))
    logger.info(f"{mb_per_minute:.2f}MB/min -> chunks of {minutes} min")
    return minutes


def extract_chunk(audio: AudioSegment, output_path: str, start_seconds: float, duration_seconds: float) -> None:
    start_ms = int(start_seconds * 1000)
    end_ms = int((start_seconds + duration_seconds) * 1000)
    export_mp3(audio[start_ms:end_ms], output_path, COMPRESSION_BITRATE_KBPS)


def recompress_chunk(path: str) -> int:
    """Re-encode a chunk in place at the lowest bitrate; returns the new size."""
    temp_path = f"{path}.recompressed.mp3"
    try:
        transcode_audio(path, temp_path, RECOMPRESSION_BITRATE_KBPS)
        os.replace(temp_path, path)
    finally:
        remove_file(temp_path)
    return file_size(path)


def split_audio_by_time(path: str, chunk_minutes: int,
                        total_duration: Optional[float] = None) -> List[AudioChunk]:
    """
    Split ``path`` into consecutive chunks of ``chunk_minutes``.

    With a measured duration D this yields ceil(D / C) chunks starting at
    0, C, 2C, ... When the duration is only estimated, extraction continues
    until a near-empty chunk comes out. Chunk files belong to the caller.
    """
    chunk_seconds = chunk_minutes * 60
    audio = load_audio(path)
    if total_duration is None:
        total_duration, measured = resolve_duration(path)
        if not measured and len(audio):
            # decoded length is exact even when the container header is not
            total_duration, measured = len(audio) / 1000.0, True
    else:
        measured = True

    if measured:
        num_chunks = max(1, math.ceil(total_duration / chunk_seconds))
    else:
        num_chunks = MAX_ESTIMATED_CHUNKS

    logger.info(
        f"Splitting {path}: {total_duration / 60:.1f} min "
        f"({'measured' if measured else 'estimated'}) into {chunk_minutes} min chunks"
    )

    ceiling = max_transcription_bytes()
    session = uuid.uuid4().hex[:12]
    chunks: List[AudioChunk] = []
    chunk_path = None
    try:
        for index in range(num_chunks):
            start = index * chunk_seconds
            chunk_path = os.path.join(tempfile.gettempdir(), f"audio-chunk-{session}-{index}.mp3")
            extract_chunk(audio, chunk_path, start, chunk_seconds)
            size = file_size(chunk_path)

            if not measured and size < MIN_VIABLE_CHUNK_BYTES:
                logger.info(f"Chunk {index + 1} is {size} bytes; end of audio reached")
                remove_file(chunk_path)
                break

            if measured:
                duration = min(chunk_seconds, total_duration - start)
            else:
                duration = probe_duration(chunk_path) or chunk_seconds
            chunks.append(AudioChunk(path=chunk_path, index=index, start_time=start, duration=duration))

            if size > ceiling:
                logger.warning(f"Chunk {index + 1} is {size / MB:.2f}MB; recompressing")
                size = recompress_chunk(chunk_path)
                if size > ceiling:
                    raise MediaTooLargeError(
                        f"Chunk {index + 1} is {size / MB:.2f}MB after recompression",
                        size_bytes=size,
                        ceiling_bytes=ceiling,
                    )

            logger.info(f"Chunk {index + 1}: {size / MB:.2f}MB from {start / 60:.1f} min")
        else:
            if not measured:
                logger.warning(f"Stopped after {num_chunks} chunks without reaching end of audio")
    except Exception:
        cleanup_chunks(chunks)
        remove_file(chunk_path)
        raise

    return chunks


def cleanup_chunks(chunks: Iterable[AudioChunk]) -> None:
    for chunk in chunks:
        remove_file(chunk.path)
