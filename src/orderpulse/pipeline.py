"""Pipeline orchestrator: pre-filter → classify → extract → aggregate → status."""
from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .aggregation.engine import AggregationEngine
from .config import Settings
from .errors import CompletionError, MessageNotFoundError, UnknownClassificationError
from .extraction.classifier import MessageClassifier
from .extraction.router import ExtractionRouter
from .llm.anthropic_client import AnthropicClient
from .llm.base import LLMClient
from .llm.failover import FailoverLLMClient
from .llm.openai_client import OpenAIClient
from .mail.forwarded import clean_subject, extract_original_body
from .mail.retailer_matcher import RetailerMatcher
from .models.enums import ClassificationType, ProcessingStatus, coerce_enum
from .models.extraction import ClassificationResult, ItemData, ReturnParserResult, ShipmentParserResult
from .prompts.registry import PromptRegistry
from .storage.blob import BodyStore
from .storage.database import get_session_factory
from .storage.models import EmailMessage, Return, Shipment
from .storage.repositories import EmailMessageRepo, RetailerRepo
from .utils.dates import utcnow
from .utils.logging import bound_message_context

logger = structlog.get_logger(__name__)

# Confidence recorded when the pre-filter rules a message out
PREFILTER_PROMOTIONAL_CONFIDENCE = 0.95


class EmailProcessingPipeline:
    """Orchestrates classification, extraction and aggregation for one message.

    Every stage commits as it goes; a later failure never rolls back the
    work of an earlier, committed stage.  Fatal errors mark the message
    ``failed``, bump its retry count and are re-raised so the queue can
    redeliver it.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        prefilter_client: LLMClient | None = None,
        classifier_client: LLMClient | None = None,
        parser_client: LLMClient | None = None,
        body_store: BodyStore | None = None,
        retailer_matcher: RetailerMatcher | None = None,
        prompts: PromptRegistry | None = None,
    ):
        self.settings = settings
        self._session_factory = session_factory or get_session_factory()
        self.prompt_registry = prompts or PromptRegistry()

        if prefilter_client is None or classifier_client is None or parser_client is None:
            self._init_llm_clients()
        if prefilter_client is not None:
            self._prefilter_client = prefilter_client
        if classifier_client is not None:
            self._classifier_client = classifier_client
        if parser_client is not None:
            self._parser_client = parser_client

        if body_store is None and settings.blob_connection_string.get_secret_value():
            body_store = BodyStore(settings.blob_connection_string.get_secret_value())
        self._body_store = body_store

        self.retailer_matcher = retailer_matcher or RetailerMatcher(self._load_retailer_patterns)
        self.classifier = MessageClassifier(
            self._prefilter_client,
            self._classifier_client,
            self.prompt_registry,
            temperature=settings.llm_temperature,
        )
        self.router = ExtractionRouter(
            self._parser_client,
            self.prompt_registry,
            review_threshold=settings.review_threshold,
            temperature=settings.llm_temperature,
        )

    def _init_llm_clients(self):
        """Initialize LLM clients for the Azure OpenAI deployments.

        The pre-filter runs on the small classifier deployment; classification
        and parsing run on the parser deployment, failing over to Claude when
        an Anthropic key is configured.
        """
        api_key = self.settings.azure_openai_api_key.get_secret_value()
        endpoint = self.settings.azure_openai_endpoint
        timeout = self.settings.llm_timeout

        self._prefilter_client: LLMClient = OpenAIClient(
            api_key=api_key,
            model=self.settings.classifier_model,
            azure_endpoint=endpoint,
            timeout=timeout,
        )
        parser_primary: LLMClient = OpenAIClient(
            api_key=api_key,
            model=self.settings.parser_model,
            azure_endpoint=endpoint,
            timeout=timeout,
        )

        anthropic_key = self.settings.anthropic_api_key.get_secret_value()
        if self.settings.enable_failover and anthropic_key:
            fallback = AnthropicClient(
                api_key=anthropic_key,
                model=self.settings.anthropic_model,
                timeout=timeout,
                endpoint=self.settings.anthropic_endpoint or None,
            )
            parser_primary = FailoverLLMClient(parser_primary, fallback)
            logger.info("llm_init", mode="azure_openai_with_failover", parser_model=self.settings.parser_model)
        else:
            logger.info("llm_init", mode="azure_openai_only", parser_model=self.settings.parser_model)

        self._classifier_client: LLMClient = parser_primary
        self._parser_client: LLMClient = parser_primary

    async def _load_retailer_patterns(self):
        async with self._session_factory() as session:
            return await RetailerRepo(session).load_patterns()

    # ── Entry points ──────────────────────────────────────────────────────

    async def process_message(self, message_id: UUID) -> str:
        """Classify (if needed) and parse one message.  Returns its final status.

        Messages already parsed, dismissed or waiting for review are left
        alone; use ``parse_message`` to force a re-run.
        """
        with bound_message_context(str(message_id)):
            async with self._session_factory() as session:
                message = await self._get_message(session, message_id)
                if message.processing_status in (
                    ProcessingStatus.PARSED,
                    ProcessingStatus.DISMISSED,
                    ProcessingStatus.MANUAL_REVIEW,
                ):
                    logger.info("message_already_processed", status=message.processing_status)
                    return message.processing_status

                try:
                    if message.classification_type is None:
                        await self._classify(session, message)
                        if message.processing_status != ProcessingStatus.CLASSIFIED:
                            return message.processing_status
                    await self._parse(session, message)
                    return message.processing_status
                except Exception as e:
                    await self._record_failure(session, message_id, e)
                    raise

    async def classify_message(self, message_id: UUID) -> ClassificationResult | None:
        """Run only the classification stage."""
        with bound_message_context(str(message_id)):
            async with self._session_factory() as session:
                message = await self._get_message(session, message_id)
                try:
                    return await self._classify(session, message)
                except Exception as e:
                    await self._record_failure(session, message_id, e)
                    raise

    async def parse_message(self, message_id: UUID, *, accept_low_confidence: bool = False) -> list[UUID]:
        """Run only the parsing stage.  Returns the ids of the orders touched.

        *accept_low_confidence* is set when a reviewer approved the message:
        an extraction below the review threshold is then applied anyway.
        """
        with bound_message_context(str(message_id)):
            async with self._session_factory() as session:
                message = await self._get_message(session, message_id)
                try:
                    return await self._parse(session, message, accept_low_confidence=accept_low_confidence)
                except Exception as e:
                    await self._record_failure(session, message_id, e)
                    raise

    # ── Stages ────────────────────────────────────────────────────────────

    async def _classify(self, session: AsyncSession, message: EmailMessage) -> ClassificationResult | None:
        message.processing_status = ProcessingStatus.CLASSIFYING
        await session.commit()

        subject = clean_subject(message.subject)
        sender = message.original_from_address or message.from_address

        if self.settings.enable_prefilter:
            related = await self.classifier.is_order_related(subject, message.body_preview or "", sender)
            if not related:
                message.classification_type = ClassificationType.PROMOTIONAL
                message.classification_confidence = PREFILTER_PROMOTIONAL_CONFIDENCE
                message.processing_status = ProcessingStatus.PARSED
                message.processed_at = utcnow()
                await session.commit()
                logger.info("message_filtered_not_order_related")
                return None

        body = await self.load_body(message)
        result = await self.classifier.classify(subject, body, sender)
        message.classification_type = result.type
        message.classification_confidence = result.confidence

        if result.type == ClassificationType.PROMOTIONAL:
            message.processing_status = ProcessingStatus.PARSED
            message.processed_at = utcnow()
        elif result.confidence < self.settings.review_threshold:
            message.processing_status = ProcessingStatus.MANUAL_REVIEW
            message.error_message = f"Low classification confidence: {result.confidence:.2f}"
            logger.warning("message_flagged_for_review", reason=message.error_message)
        else:
            message.processing_status = ProcessingStatus.CLASSIFIED
        await session.commit()
        return result

    async def _parse(
        self, session: AsyncSession, message: EmailMessage, *, accept_low_confidence: bool = False
    ) -> list[UUID]:
        classification = coerce_enum(ClassificationType, message.classification_type)
        if classification is None:
            raise UnknownClassificationError(
                f"Unknown classification type: {message.classification_type!r}"
            )
        if classification == ClassificationType.PROMOTIONAL:
            message.processing_status = ProcessingStatus.PARSED
            message.processed_at = utcnow()
            await session.commit()
            return []
        # Fails fast, before any state changes, for types with no extractor
        self.router.extractor_for(classification)

        message.processing_status = ProcessingStatus.PARSING
        await session.commit()

        sender = message.original_from_address or message.from_address
        retailer = await self.retailer_matcher.match(message.from_address, message.original_from_address)
        if retailer is None:
            logger.info("retailer_not_matched", from_address=message.from_address,
                        original_from_address=message.original_from_address)
        else:
            logger.info("retailer_matched", retailer=retailer.name)

        body = await self.load_body(message)
        outcome = await self.router.extract(
            classification,
            clean_subject(message.subject),
            body,
            sender,
            retailer.name if retailer else None,
        )

        if outcome.data is None:
            await self._flag_for_review(session, message, outcome.error or "Extraction returned no data")
            return []
        if outcome.needs_review and not accept_low_confidence:
            await self._flag_for_review(session, message, f"Low confidence: {outcome.confidence:.2f}")
            return []

        engine = AggregationEngine(
            session,
            closed_after_days=self.settings.closed_after_days,
            min_fuzzy_length=self.settings.min_fuzzy_reference_length,
            reparse=lambda entity: self._reparse_items(session, entity),
        )
        orders = await engine.apply(classification, outcome.data, message, retailer)
        await session.commit()

        order_ids = [order.id for order in orders]
        for order_id in order_ids:
            await engine.recalculate_status(order_id, message.id)
            await session.commit()

        message.processing_status = ProcessingStatus.PARSED
        message.processed_at = utcnow()
        message.error_message = None
        await session.commit()
        logger.info("message_parsed", classification=str(classification), orders=[str(i) for i in order_ids])
        return order_ids

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _get_message(self, session: AsyncSession, message_id: UUID) -> EmailMessage:
        message = await EmailMessageRepo(session).get_by_id(message_id)
        if message is None:
            raise MessageNotFoundError(f"Email message {message_id} not found")
        return message

    async def _flag_for_review(self, session: AsyncSession, message: EmailMessage, reason: str) -> None:
        logger.warning("message_flagged_for_review", reason=reason)
        message.processing_status = ProcessingStatus.MANUAL_REVIEW
        message.error_message = reason
        await session.commit()

    async def _record_failure(self, session: AsyncSession, message_id: UUID, error: Exception) -> None:
        logger.error("message_processing_failed", error=str(error), error_type=type(error).__name__, exc_info=True)
        await session.rollback()
        await EmailMessageRepo(session).mark_failed(message_id, f"{type(error).__name__}: {error}")
        await session.commit()

    async def load_body(self, message: EmailMessage) -> str:
        """Full body from the body store, falling back to the stored preview."""
        body = message.body_preview or ""
        source = "preview"
        if self._body_store is not None and message.body_blob_url:
            try:
                full_body = await self._body_store.get(message.body_blob_url)
            except Exception as e:
                logger.warning("body_fetch_failed", error=str(e), url=message.body_blob_url)
                full_body = None
            if full_body:
                body = full_body
                source = "blob"
            else:
                logger.warning("body_missing_using_preview", url=message.body_blob_url)

        body = extract_original_body(body, max_length=self.settings.max_body_length)
        logger.debug(
            "body_loaded",
            source=source,
            length=len(body),
            preview=body[: self.settings.body_preview_log_chars],
        )
        return body

    async def _reparse_items(self, session: AsyncSession, entity: Shipment | Return) -> list[ItemData] | None:
        """Re-run the original extractor for an entity created before its order had lines."""
        if entity.source_message_id is None:
            return None
        message = await EmailMessageRepo(session).get_by_id(entity.source_message_id)
        if message is None:
            return None
        classification = coerce_enum(ClassificationType, message.classification_type)
        if classification is None or classification == ClassificationType.PROMOTIONAL:
            return None

        wanted = ShipmentParserResult if isinstance(entity, Shipment) else ReturnParserResult
        if self.router.extractor_for(classification).result_model is not wanted:
            return None

        body = await self.load_body(message)
        try:
            outcome = await self.router.extract(
                classification, clean_subject(message.subject), body,
                message.original_from_address or message.from_address,
            )
        except CompletionError as e:
            logger.warning("reconciliation_reparse_failed", entity_id=str(entity.id), error=str(e))
            return None
        if outcome.data is None:
            return None

        if isinstance(outcome.data, ReturnParserResult):
            return list(outcome.data.items)
        shipments = outcome.data.shipments
        for data in shipments:
            if entity.tracking_number and (data.tracking_number or "").strip() == entity.tracking_number:
                return list(data.items)
        return list(shipments[0].items) if shipments else None
