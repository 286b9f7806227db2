"""Review queue API routes: failed and low-confidence messages."""
from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from ...errors import PipelineError
from ...models.enums import ProcessingStatus
from ...pipeline import EmailProcessingPipeline
from ...storage.database import get_session
from ...storage.models import EmailMessage
from ...storage.repositories import REVIEW_STATUSES, EmailMessageRepo
from ...utils.dates import utcnow

router = APIRouter()


def get_pipeline(request: Request) -> EmailProcessingPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised")
    return pipeline


def _summary(m: EmailMessage) -> dict:
    return {
        "message_id": str(m.id),
        "subject": m.subject,
        "from_address": m.from_address,
        "original_from_address": m.original_from_address,
        "received_at": m.received_at.isoformat() if m.received_at else None,
        "classification_type": m.classification_type,
        "classification_confidence": m.classification_confidence,
        "processing_status": m.processing_status,
        "error_message": m.error_message,
        "retry_count": m.retry_count,
    }


async def _review_message(session, message_id: UUID) -> EmailMessage:
    message = await EmailMessageRepo(session).get_by_id(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if message.processing_status not in REVIEW_STATUSES:
        raise HTTPException(
            status_code=409,
            detail=f"Message is not awaiting review (status: {message.processing_status})",
        )
    return message


@router.get("/queue")
async def get_review_queue(
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    session=Depends(get_session),
):
    """Messages waiting for a reviewer, oldest first."""
    repo = EmailMessageRepo(session)
    messages = await repo.list_review_queue(offset=offset, limit=limit)
    return {
        "items": [_summary(m) for m in messages],
        "offset": offset,
        "limit": limit,
    }


@router.get("/queue/stats")
async def get_queue_stats(session=Depends(get_session)):
    """Message counts per processing status."""
    return {"counts_by_status": await EmailMessageRepo(session).count_by_status()}


@router.get("/{message_id}")
async def get_review_item(
    message_id: UUID,
    session=Depends(get_session),
    pipeline: EmailProcessingPipeline = Depends(get_pipeline),
):
    """Message detail with its full (normalized) body."""
    message = await EmailMessageRepo(session).get_by_id(message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    detail = _summary(message)
    detail["body"] = await pipeline.load_body(message)
    return detail


@router.post("/{message_id}/approve")
async def approve_message(
    message_id: UUID,
    session=Depends(get_session),
    pipeline: EmailProcessingPipeline = Depends(get_pipeline),
):
    """Apply the message's extraction even if it fell below the review threshold."""
    await _review_message(session, message_id)
    try:
        order_ids = await pipeline.parse_message(message_id, accept_low_confidence=True)
    except PipelineError as e:
        raise HTTPException(status_code=502, detail=str(e))
    message = await _refreshed(session, message_id)
    return {"status": message.processing_status, "order_ids": [str(i) for i in order_ids]}


@router.post("/{message_id}/reprocess")
async def reprocess_message(
    message_id: UUID,
    session=Depends(get_session),
    pipeline: EmailProcessingPipeline = Depends(get_pipeline),
):
    """Send the message through the pipeline again from its current stage."""
    message = await _review_message(session, message_id)
    message.processing_status = ProcessingStatus.PENDING
    message.error_message = None
    await session.commit()
    try:
        status = await pipeline.process_message(message_id)
    except PipelineError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": status}


@router.post("/{message_id}/dismiss")
async def dismiss_message(message_id: UUID, session=Depends(get_session)):
    """Drop the message from the review queue."""
    message = await _review_message(session, message_id)
    message.processing_status = ProcessingStatus.DISMISSED
    message.processed_at = utcnow()
    await session.commit()
    return {"status": ProcessingStatus.DISMISSED}


async def _refreshed(session, message_id: UUID) -> EmailMessage:
    message = await EmailMessageRepo(session).get_by_id(message_id)
    await session.refresh(message)
    return message
