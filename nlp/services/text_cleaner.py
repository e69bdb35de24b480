"""
LLM pass that strips small talk and noise from a raw consultation transcript.
"""
import logging
from typing import Optional

from integrations.clients.gpt_client import GPTClient
from integrations.exceptions import UpstreamResponseError
from nlp.context import PatientContext
from nlp.prompts import build_cleaning_messages
from nlp.serializers import CleanedTranscriptSerializer

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 30000
TRUNCATION_MARKER = "\n\n[... transcrição truncada por exceder o limite de processamento ...]"


def truncate_transcript(text: str, limit: int = MAX_INPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    logger.warning(f"Transcript has {len(text)} chars; truncating to {limit}")
    return text[:limit] + TRUNCATION_MARKER


class TextCleaner:
    def __init__(self, client: GPTClient, temperature: float = 0.3, max_tokens: int = 8000):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens

    def clean_transcription(self, raw_text: str, patient_context: Optional[PatientContext] = None) -> str:
        if not raw_text or not raw_text.strip():
            raise ValueError("Texto para limpeza está vazio")

        text = truncate_transcript(raw_text.strip())
        messages = build_cleaning_messages(text, patient_context)
        data = self.client.create_json_completion(
            messages, temperature=self.temperature, max_tokens=self.max_tokens
        )

        serializer = CleanedTranscriptSerializer(data=data)
        if not serializer.is_valid():
            raise UpstreamResponseError(
                "Cleaning response does not match the expected schema",
                payload=data,
                errors=serializer.errors,
            )

        cleaned = serializer.validated_data["cleaned_text"]
        logger.info(f"Transcript cleaned: {len(raw_text)} -> {len(cleaned)} chars")
        return cleaned
