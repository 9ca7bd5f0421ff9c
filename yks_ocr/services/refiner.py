"""
Refinement stage: OCR text correction and YKS topic tagging via Gemini.

The stage never fails the request. Every failure resolves to a fallback
StructuredResult that carries the raw OCR text verbatim:
    - text shorter than min_refine_chars: no model call at all
    - call error or timeout: "AI processing unavailable" + warning
    - answer that does not match the schema: "Failed to process with AI" + warning

The model call is raced against a timer. When the timer wins the call is
abandoned, not cancelled: it keeps running in the background and whatever
it costs downstream is outside this service's control.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import google.generativeai as genai

from yks_ocr.config import settings
from yks_ocr.errors import RefinementParseError, RefinementUnavailableError
from yks_ocr.schemas import Refinement, StructuredResult

logger = logging.getLogger(__name__)

TOO_SHORT_NOTE = "Text too short to categorize"
UNAVAILABLE_NOTE = "AI processing unavailable - raw OCR result returned"
UNAVAILABLE_WARNING = "AI processing failed, OCR completed successfully"
UNPARSABLE_NOTE = "Failed to process with AI, returning raw OCR result"
UNPARSABLE_WARNING = "AI response could not be parsed, OCR completed successfully"

PROMPT_TEMPLATE = (
    "Aşağıdaki YKS sorusunu bir fotoğraftan OCR ile çıkardım. OCR kaynaklı "
    "yazım ve mantık hatalarını düzelt ve metnin düzeltilmiş halini JSON "
    'çıktısının "corrected_text" alanına yaz. Sorunun ait olduğu YKS '
    "(Yükseköğretim Kurumları Sınavı) konularını \"yks_topics\" alanında "
    'listele (örneğin: "TYT-Biyoloji-Bitkiler", "AYT-Kimya-Asitler-Bazlar"). '
    "Sorunun çözümünü kesinlikle verme.\n"
    "\n"
    "Metin:\n"
    "{text}"
)

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "corrected_text": {"type": "STRING"},
        "yks_topics": {"type": "ARRAY", "items": {"type": "STRING"}},
        "note": {"type": "STRING"},
    },
    "required": ["corrected_text", "yks_topics"],
}

PING_PROMPT = "Say 'Hello, Gemini API is working!' in JSON format with a 'message' field."

PING_SCHEMA = {
    "type": "OBJECT",
    "properties": {"message": {"type": "STRING"}},
    "required": ["message"],
}


def build_prompt(raw_text: str) -> str:
    return PROMPT_TEMPLATE.format(text=raw_text)


def parse_structured_result(response: Any) -> StructuredResult:
    """
    Parses a Gemini answer into StructuredResult.

    Raises:
        RefinementParseError: no text in the answer, invalid JSON, or
            JSON that does not match the output schema
    """
    try:
        payload = json.loads(response.text)
        return StructuredResult.model_validate(payload)
    except Exception as e:
        raise RefinementParseError(f"{type(e).__name__}: {e}") from e


# Calls that lost the timeout race; held here until they finish
_abandoned_calls: set = set()


def _log_abandoned_call(call: "asyncio.Future") -> None:
    _abandoned_calls.discard(call)
    if call.cancelled():
        return
    error = call.exception()
    if error is not None:
        logger.debug(f"Abandoned Gemini call finished with error: {error!r}")
    else:
        logger.debug("Abandoned Gemini call finished after the timeout")


class TopicRefiner:
    """
    Gemini client for text correction and topic classification.

    Attributes:
        model: object with a `generate_content_async` coroutine method
            (genai.GenerativeModel in production)
        timeout_seconds: how long to wait for the model
        min_chars: shorter texts are not sent to the model
    """

    def __init__(
        self,
        model: Any,
        *,
        timeout_seconds: Optional[float] = None,
        min_chars: Optional[int] = None,
    ):
        self.model = model
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.refine_timeout_seconds
        )
        self.min_chars = min_chars if min_chars is not None else settings.min_refine_chars

    @classmethod
    def from_settings(cls) -> "TopicRefiner":
        genai.configure(api_key=settings.gemini_api_key)
        model = genai.GenerativeModel(settings.gemini_model)
        logger.info(f"Gemini model configured: {settings.gemini_model}")
        return cls(model)

    async def refine(self, raw_text: str) -> Refinement:
        """
        Corrects the OCR text and tags it with YKS topics.

        Args:
            raw_text: trimmed OCR text

        Returns:
            Refinement: always a valid result, with a warning when the
            model could not be used
        """
        if len(raw_text.strip()) < self.min_chars:
            logger.info(f"Text too short for AI refinement ({len(raw_text.strip())} chars)")
            return Refinement(StructuredResult.fallback(raw_text, TOO_SHORT_NOTE))

        logger.info("Sending request to Gemini API")
        try:
            response = await self._generate(build_prompt(raw_text), RESPONSE_SCHEMA)
        except RefinementUnavailableError as e:
            logger.warning(f"Gemini API error, returning OCR-only result: {e}")
            return Refinement(
                StructuredResult.fallback(raw_text, UNAVAILABLE_NOTE),
                warning=UNAVAILABLE_WARNING,
            )

        try:
            result = parse_structured_result(response)
        except RefinementParseError as e:
            logger.warning(f"Failed to parse Gemini response as JSON: {e}")
            return Refinement(
                StructuredResult.fallback(raw_text, UNPARSABLE_NOTE),
                warning=UNPARSABLE_WARNING,
            )

        logger.info(f"Gemini refinement done: topics={result.yks_topics}")
        return Refinement(result)

    async def ping(self) -> tuple[dict, str]:
        """
        Round trip to the model with a trivial JSON schema.

        Returns:
            tuple: (parsed answer, raw answer text)

        Raises:
            RefinementUnavailableError: call failed or timed out
            RefinementParseError: answer is not the expected JSON object
        """
        response = await self._generate(PING_PROMPT, PING_SCHEMA)
        try:
            raw = response.text
            payload = json.loads(raw)
        except Exception as e:
            raise RefinementParseError(f"{type(e).__name__}: {e}") from e

        if not isinstance(payload, dict) or "message" not in payload:
            raise RefinementParseError(f"Unexpected Gemini answer: {raw}")
        return payload, raw

    async def _generate(self, prompt: str, schema: dict) -> Any:
        """
        Calls the model, first of {answer, timeout} wins.

        Raises:
            RefinementUnavailableError: the call failed or lost the race
        """
        try:
            generation_config = genai.types.GenerationConfig(
                response_mime_type="application/json",
                response_schema=schema,
            )
            call = asyncio.ensure_future(
                self.model.generate_content_async(
                    prompt, generation_config=generation_config
                )
            )
        except Exception as e:
            raise RefinementUnavailableError(f"Gemini request could not be sent: {e}") from e

        done, _ = await asyncio.wait({call}, timeout=self.timeout_seconds)

        if call not in done:
            # Abandoned, not cancelled; its late result is only logged
            _abandoned_calls.add(call)
            call.add_done_callback(_log_abandoned_call)
            raise RefinementUnavailableError(
                f"Gemini API timeout after {self.timeout_seconds:g} seconds"
            )

        try:
            response = call.result()
        except Exception as e:
            raise RefinementUnavailableError(f"{type(e).__name__}: {e}") from e

        logger.info("Received response from Gemini API")
        return response
