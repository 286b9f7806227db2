"""Type-specific extraction with a confidence gate.

Every classification type except ``promotional`` maps to exactly one
extractor: a prompt template plus the pydantic model its output must
validate against.  The table is checked when the router is built so a
missing entry fails at startup rather than on the first matching message.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import structlog
from pydantic import BaseModel, ValidationError

from ..errors import UnknownClassificationError
from ..llm.base import LLMClient
from ..llm.response_parser import extract_json_from_response
from ..models.enums import ClassificationType
from ..models.extraction import (
    CancellationParserResult,
    DeliveryParserResult,
    ExtractionOutcome,
    OrderParserResult,
    PaymentParserResult,
    RefundParserResult,
    ReturnParserResult,
    ShipmentParserResult,
)
from ..prompts.registry import PromptRegistry

logger = structlog.get_logger(__name__)

DEFAULT_REVIEW_THRESHOLD = 0.7


@dataclass(frozen=True)
class Extractor:
    template: str
    result_model: type[BaseModel]
    max_tokens: int = 4096


ORDER = Extractor("order_parser", OrderParserResult)
SHIPMENT = Extractor("shipment_parser", ShipmentParserResult)
DELIVERY = Extractor("delivery_parser", DeliveryParserResult, max_tokens=2048)
RETURN = Extractor("return_parser", ReturnParserResult)
REFUND = Extractor("refund_parser", RefundParserResult, max_tokens=2048)
CANCELLATION = Extractor("cancellation_parser", CancellationParserResult)
PAYMENT = Extractor("payment_parser", PaymentParserResult, max_tokens=2048)

EXTRACTORS: Mapping[ClassificationType, Extractor] = {
    ClassificationType.ORDER_CONFIRMATION: ORDER,
    ClassificationType.ORDER_MODIFICATION: ORDER,
    ClassificationType.ORDER_CANCELLATION: CANCELLATION,
    ClassificationType.PAYMENT_CONFIRMATION: PAYMENT,
    ClassificationType.SHIPMENT_CONFIRMATION: SHIPMENT,
    ClassificationType.SHIPMENT_UPDATE: SHIPMENT,
    ClassificationType.DELIVERY_CONFIRMATION: DELIVERY,
    ClassificationType.DELIVERY_ISSUE: DELIVERY,
    ClassificationType.RETURN_INITIATION: RETURN,
    ClassificationType.RETURN_LABEL: RETURN,
    ClassificationType.RETURN_RECEIVED: RETURN,
    ClassificationType.RETURN_REJECTION: RETURN,
    ClassificationType.REFUND_CONFIRMATION: REFUND,
}

# Dropped after classification, never parsed
UNPARSED_TYPES = frozenset({ClassificationType.PROMOTIONAL})


def validate_table(table: Mapping[ClassificationType, Extractor]) -> None:
    """Raise ``ValueError`` unless every parseable type has an extractor."""
    missing = [t for t in ClassificationType if t not in UNPARSED_TYPES and t not in table]
    if missing:
        raise ValueError(f"No extractor registered for: {', '.join(sorted(missing))}")


def build_user_prompt(subject: str, body: str, sender: str, merchant_hint: str | None = None) -> str:
    prompt = f"Subject: {subject}\nFrom: {sender}\n\nEmail Body:\n{body}"
    if merchant_hint:
        prompt += f"\n\nKnown retailer context: {merchant_hint}"
    return prompt


class ExtractionRouter:
    """Sends a classified message to its extractor and gates the result."""

    def __init__(
        self,
        client: LLMClient,
        prompts: PromptRegistry | None = None,
        *,
        review_threshold: float = DEFAULT_REVIEW_THRESHOLD,
        temperature: float = 0.0,
        table: Mapping[ClassificationType, Extractor] | None = None,
    ):
        self._client = client
        self._prompts = prompts or PromptRegistry()
        self._review_threshold = review_threshold
        self._temperature = temperature
        self._table = dict(table if table is not None else EXTRACTORS)
        validate_table(self._table)

    @property
    def review_threshold(self) -> float:
        return self._review_threshold

    def extractor_for(self, classification: ClassificationType) -> Extractor:
        try:
            return self._table[classification]
        except KeyError:
            raise UnknownClassificationError(f"Unknown classification type: {classification}") from None

    async def extract(
        self,
        classification: ClassificationType,
        subject: str,
        body: str,
        sender: str,
        merchant_hint: str | None = None,
    ) -> ExtractionOutcome:
        """Run the extractor for *classification*.

        Unreadable or schema-violating output and results without a root
        object come back as ``data=None`` with ``needs_review=True``.
        ``CompletionError`` from the client propagates.
        """
        extractor = self.extractor_for(classification)
        response = await self._client.complete_text(
            self._prompts.system_prompt(extractor.template),
            build_user_prompt(subject, body, sender, merchant_hint),
            temperature=self._temperature,
            max_tokens=extractor.max_tokens,
            json_mode=True,
        )

        if response.is_empty:
            logger.warning("extraction_empty_response", template=extractor.template)
            return ExtractionOutcome(error="Empty completion")

        try:
            data = extractor.result_model.model_validate(extract_json_from_response(response.content))
        except (ValueError, ValidationError) as e:
            logger.warning("extraction_schema_violation", template=extractor.template, error=str(e)[:500])
            return ExtractionOutcome(error=f"Schema violation: {str(e)[:500]}")

        if not data.has_root():
            logger.warning("extraction_without_root", template=extractor.template, confidence=data.confidence)
            return ExtractionOutcome(confidence=data.confidence, error="No actionable data extracted")

        needs_review = data.confidence < self._review_threshold
        logger.info(
            "extraction_complete",
            template=extractor.template,
            prompt_version=self._prompts.get_version(extractor.template),
            confidence=data.confidence,
            needs_review=needs_review,
            model=response.model,
            tokens=response.total_tokens,
        )
        return ExtractionOutcome(data=data, confidence=data.confidence, needs_review=needs_review)
