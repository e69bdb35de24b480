"""
OpenAI-compatible client used by transcription, cleaning and extraction.

One ``GPTClient`` is built from settings at startup (``build_gpt_client``) and
passed to the services that need it.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from openai import OpenAI, APIError

from integrations.exceptions import GPTClientError, UpstreamResponseError

logger = logging.getLogger(__name__)


class GPTClient:
    """Thin wrapper over ``openai.OpenAI`` for chat JSON completions and audio transcription."""

    def __init__(self, api_key: str, base_url: Optional[str] = None,
                 chat_model: str = "gpt-4o", transcription_model: str = "whisper-1",
                 timeout: float = 600.0, max_retries: int = 2, client: Optional[OpenAI] = None):
        if not api_key:
            raise ImproperlyConfigured("OPENAI_API_KEY is not configured")

        self.chat_model = chat_model
        self.transcription_model = transcription_model
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    @property
    def supports_diarization(self) -> bool:
        return "diarize" in self.transcription_model

    def create_json_completion(self, messages: List[Dict[str, str]], temperature: float = 0.3,
                               max_tokens: Optional[int] = None, model: Optional[str] = None) -> Dict[str, Any]:
        """
        Run a chat completion in JSON mode and return the decoded object.

        Raises:
            GPTClientError: the request failed.
            UpstreamResponseError: the model answered with something that is not a JSON object.
        """
        model = model or self.chat_model
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except APIError as e:
            logger.error(f"Chat completion failed: {model}: {e}")
            raise GPTClientError(str(e)) from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(f"Chat completion successful: {model}, tokens: {usage.total_tokens}")

        if not response.choices:
            raise UpstreamResponseError("Empty completion: no choices returned")
        content = response.choices[0].message.content
        if not content:
            raise UpstreamResponseError("Empty completion: message has no content")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Completion is not valid JSON: {content[:200]!r}")
            raise UpstreamResponseError(f"Invalid JSON from model: {e}", payload=content) from e

        if not isinstance(data, dict):
            raise UpstreamResponseError("Expected a JSON object from model", payload=content)
        return data

    def transcribe(self, file_path: str, language: Optional[str] = None, prompt: Optional[str] = None):
        """
        Submit one audio file and return the provider's response object.

        Diarization models answer with speaker segments and do not accept a prompt;
        other models get ``verbose_json`` and the optional continuation prompt.
        """
        params: Dict[str, Any] = {"model": self.transcription_model}
        if language:
            params["language"] = language

        if self.supports_diarization:
            params["response_format"] = "diarized_json"
            params["chunking_strategy"] = "auto"
        else:
            params["response_format"] = "verbose_json"
            if prompt:
                params["prompt"] = prompt

        try:
            with open(file_path, "rb") as audio_file:
                response = self.client.audio.transcriptions.create(file=audio_file, **params)
        except APIError as e:
            logger.error(f"Transcription request failed: {self.transcription_model}: {e}")
            raise GPTClientError(str(e)) from e

        logger.info(f"Transcription successful: {self.transcription_model}")
        return response


def build_gpt_client() -> GPTClient:
    """Build the shared client from settings; fails immediately when misconfigured."""
    return GPTClient(
        api_key=settings.OPENAI_API_KEY,
        base_url=getattr(settings, "OPENAI_BASE_URL", None),
        chat_model=getattr(settings, "OPENAI_CHAT_MODEL", "gpt-4o"),
        transcription_model=getattr(settings, "OPENAI_TRANSCRIPTION_MODEL", "whisper-1"),
        timeout=getattr(settings, "OPENAI_TIMEOUT", 600.0),
        max_retries=getattr(settings, "OPENAI_MAX_RETRIES", 2),
    )
