"""
Structured clinical field extraction from a cleaned consultation transcript.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from integrations.clients.gpt_client import GPTClient
from integrations.exceptions import UpstreamResponseError
from nlp.context import PatientContext, PreviousConsultation
from nlp.exceptions import InsufficientDataError
from nlp.prompts import build_extraction_messages
from nlp.serializers import MEASUREMENT_FIELDS, TEXT_FIELDS, ExtractedFieldsSerializer

logger = logging.getLogger(__name__)

MIN_WORD_COUNT = 10
MAX_PREVIOUS_CONSULTATIONS = 3


def count_words(text: Optional[str]) -> int:
    return len(text.split()) if text else 0


def has_clinical_content(fields: Dict[str, Any]) -> bool:
    return any(fields.get(name) for name in TEXT_FIELDS + MEASUREMENT_FIELDS)


class FieldExtractor:
    def __init__(self, client: GPTClient, temperature: float = 0.2, max_tokens: int = 4000,
                 min_words: int = MIN_WORD_COUNT):
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.min_words = min_words

    def extract_consultation_fields(self, cleaned_text: str,
                                    patient_context: Optional[PatientContext] = None,
                                    consultation_type: Optional[str] = None,
                                    subtype: Optional[str] = None,
                                    previous_consultations: Optional[Iterable[PreviousConsultation]] = None
                                    ) -> Dict[str, Any]:
        """
        Extract the clinical record fields.

        Raises:
            InsufficientDataError: fewer than ``min_words`` words to work with.
            UpstreamResponseError: the model's JSON does not fit the schema or is empty.
        """
        word_count = count_words(cleaned_text)
        if word_count < self.min_words:
            logger.warning(f"Transcript too short for extraction: {word_count} words")
            raise InsufficientDataError(word_count=word_count, minimum=self.min_words)

        messages = build_extraction_messages(
            cleaned_text,
            patient_context,
            consultation_type,
            subtype,
            previous_consultations or [],
            MAX_PREVIOUS_CONSULTATIONS,
        )
        data = self.client.create_json_completion(
            messages, temperature=self.temperature, max_tokens=self.max_tokens
        )

        serializer = ExtractedFieldsSerializer(data=data)
        if not serializer.is_valid():
            logger.error(f"Extraction response failed validation: {serializer.errors}")
            raise UpstreamResponseError(
                "Extraction response does not match the expected schema",
                payload=data,
                errors=serializer.errors,
            )

        fields = serializer.to_fields()
        if not has_clinical_content(fields):
            raise UpstreamResponseError("Nenhum campo foi extraído da transcrição", payload=data)

        filled = [name for name in TEXT_FIELDS if fields.get(name)]
        logger.info(f"Extracted {len(filled)} text fields from {word_count} words: {', '.join(filled)}")
        return fields
