"""Liveness and database readiness."""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...storage.database import get_session

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "orderpulse-api"


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": SERVICE_NAME}


@router.get("/health/ready")
async def readiness_check(session: AsyncSession = Depends(get_session)):
    """Ready once the database answers a trivial query."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("readiness_check_failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "service": SERVICE_NAME, "database": "unreachable"},
        )
    return {"status": "ok", "service": SERVICE_NAME, "database": "ok"}
