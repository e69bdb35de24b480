"""
Transcription of consultation audio through the OpenAI-compatible audio API.
"""
import logging
import re
from typing import Any, List, Optional

from django.conf import settings

from integrations.clients.gpt_client import GPTClient
from integrations.exceptions import GPTClientError
from stt.exceptions import MediaTooLargeError, TranscriptionError
from stt.services.audio_tools import compress_audio, needs_compression, remove_file, select_bitrate
from stt.services.chunker import (
    AudioChunk,
    calculate_optimal_chunk_duration,
    cleanup_chunks,
    resolve_duration,
    split_audio_by_time,
)

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "Consulta médica pediátrica. Termos técnicos: diagnóstico, sintomas, tratamento, "
    "prescrição, anamnese, exame físico."
)
CONTEXT_TAIL_CHARS = 200
SPEAKER_LABEL = re.compile(r"^speaker[\s_]*(\d+)$", re.IGNORECASE)


def _field(obj: Any, name: str, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def normalize_transcription(response: Any) -> str:
    """
    Flatten a transcription response into text.

    Diarized responses become ``[Speaker N]: utterance`` blocks separated by a
    blank line, in the order the segments were spoken.
    """
    if isinstance(response, str):
        return response.strip()

    segments = _field(response, "segments") or []
    if segments and any(_field(s, "speaker") is not None for s in segments):
        return _format_diarized(segments)

    return (_field(response, "text") or "").strip()


def _format_diarized(segments) -> str:
    labels = {}
    blocks: List[List[str]] = []
    current = None

    for segment in segments:
        text = (_field(segment, "text") or "").strip()
        if not text:
            continue
        raw_label = str(_field(segment, "speaker") or "").strip()
        match = SPEAKER_LABEL.match(raw_label)
        if match:
            label = f"Speaker {match.group(1)}"
        else:
            if raw_label not in labels:
                labels[raw_label] = f"Speaker {len(labels) + 1}"
            label = labels[raw_label]

        if label == current:
            blocks[-1].append(text)
        else:
            blocks.append([label, text])
            current = label

    return "\n\n".join(f"[{block[0]}]: {' '.join(block[1:])}" for block in blocks)


class WhisperService:
    """Sends audio to the transcription model, compressing or chunking what does not fit."""

    def __init__(self, client: GPTClient, language: Optional[str] = None):
        self.client = client
        self.language = language or getattr(settings, "TRANSCRIPTION_LANGUAGE", "pt")

    def transcribe_file(self, path: str, prompt: Optional[str] = None) -> str:
        response = self.client.transcribe(path, language=self.language, prompt=prompt or DEFAULT_PROMPT)
        return normalize_transcription(response)

    def transcribe_chunks(self, chunks: List[AudioChunk]) -> str:
        """
        Transcribe chunks in order. Each request carries the tail of the previous
        transcript so sentences cut at a boundary stay coherent.
        """
        texts = []
        previous = ""
        total = len(chunks)
        if total > 1 and getattr(self.client, "supports_diarization", False):
            logger.info(
                f"Diarization model takes no prompt; {total} chunks are transcribed "
                f"without continuation context"
            )
        for position, chunk in enumerate(chunks, start=1):
            prompt = previous[-CONTEXT_TAIL_CHARS:] if previous else None
            logger.info(f"Transcribing chunk {position}/{total} (starts at {chunk.start_time / 60:.1f} min)")
            try:
                text = self.transcribe_file(chunk.path, prompt=prompt)
            except (GPTClientError, OSError) as e:
                raise TranscriptionError(
                    f"Transcription of chunk {position}/{total} failed: {e}",
                    chunk_index=chunk.index,
                    total_chunks=total,
                ) from e
            texts.append(text)
            previous = text

        return " ".join(texts)

    def transcribe_audio(self, path: str) -> str:
        """
        Transcribe a whole recording.

        Under the size ceiling the file goes as is. Above it the file is compressed
        at the highest bitrate expected to fit, and if that is still too big the
        compressed file is split by time.
        """
        if not needs_compression(path):
            return self.transcribe_file(path)

        compressed_path = f"{path}.compressed.mp3"
        chunks: List[AudioChunk] = []
        try:
            try:
                duration, _ = resolve_duration(path)
                compress_audio(path, compressed_path, bitrate_kbps=select_bitrate(duration))
                return self.transcribe_file(compressed_path)
            except MediaTooLargeError as e:
                logger.warning(f"{e}; splitting into chunks")

            chunk_minutes = calculate_optimal_chunk_duration(compressed_path)
            chunks = split_audio_by_time(compressed_path, chunk_minutes)
            logger.info(f"Transcribing {len(chunks)} chunks of {chunk_minutes} min")
            return self.transcribe_chunks(chunks)
        finally:
            cleanup_chunks(chunks)
            remove_file(compressed_path)
