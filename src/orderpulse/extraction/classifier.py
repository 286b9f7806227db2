"""Two-pass message classification: cheap pre-filter, then full classification."""
from __future__ import annotations

import structlog
from pydantic import ValidationError

from ..errors import CompletionError
from ..llm.base import LLMClient
from ..llm.response_parser import extract_json_from_response
from ..models.enums import ClassificationType, coerce_enum
from ..models.extraction import ClassificationResult, ClassifierResponse, PreFilterResponse
from ..prompts.registry import PromptRegistry

logger = structlog.get_logger(__name__)

# Assigned when the classifier output cannot be read; low enough to land in review
UNREADABLE_CONFIDENCE = 0.1


class MessageClassifier:
    """Classifies messages into one of the ``ClassificationType`` values.

    The pre-filter runs on the small model with subject, sender and preview
    only.  Any failure there answers "order related": dropping a real order
    costs more than one extra classification call.
    """

    def __init__(
        self,
        prefilter_client: LLMClient,
        classifier_client: LLMClient,
        prompts: PromptRegistry | None = None,
        *,
        temperature: float = 0.0,
    ):
        self._prefilter_client = prefilter_client
        self._classifier_client = classifier_client
        self._prompts = prompts or PromptRegistry()
        self._temperature = temperature

    async def is_order_related(self, subject: str, preview: str, sender: str) -> bool:
        user_prompt = f"Subject: {subject}\nFrom: {sender}\nPreview: {preview}"
        try:
            response = await self._prefilter_client.complete_text(
                self._prompts.system_prompt("prefilter"),
                user_prompt,
                temperature=self._temperature,
                max_tokens=64,
                json_mode=True,
            )
            result = PreFilterResponse.model_validate(extract_json_from_response(response.content))
        except (CompletionError, ValueError, ValidationError) as e:
            logger.warning("prefilter_failed_defaulting_to_process", error=str(e))
            return True

        logger.info("prefilter_result", is_order_related=result.is_order_related, subject=subject[:80])
        return result.is_order_related

    async def classify(self, subject: str, body: str, sender: str) -> ClassificationResult:
        """Full classification.  ``CompletionError`` propagates."""
        user_prompt = f"Subject: {subject}\nFrom: {sender}\n\nEmail Body:\n{body}"
        response = await self._classifier_client.complete_text(
            self._prompts.system_prompt("classifier"),
            user_prompt,
            temperature=self._temperature,
            max_tokens=512,
            json_mode=True,
        )
        try:
            parsed = ClassifierResponse.model_validate(extract_json_from_response(response.content))
        except (ValueError, ValidationError) as e:
            logger.warning("classifier_response_unreadable", error=str(e))
            return ClassificationResult(type=ClassificationType.PROMOTIONAL, confidence=UNREADABLE_CONFIDENCE)

        classification = coerce_enum(ClassificationType, parsed.type, ClassificationType.PROMOTIONAL)
        logger.info(
            "message_classified",
            classification=str(classification),
            confidence=parsed.confidence,
            secondary_type=parsed.secondary_type,
            subject=subject[:80],
        )
        return ClassificationResult(
            type=classification,
            confidence=parsed.confidence,
            secondary_type=parsed.secondary_type,
        )
