import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from backoffice.dependencies.services import get_postgres_tester
from backoffice.services.postgres import PostgresConnectionTester

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/database", summary="Database connectivity check")
async def ping_database(
    tester: Annotated[PostgresConnectionTester, Depends(get_postgres_tester)],
) -> dict[str, str]:
    try:
        await tester.test_connection()
    except Exception as exc:
        logger.warning("Database check failed: %s", exc)
        raise HTTPException(status_code=503, detail="Database is unavailable") from exc
    return {"status": "ok", "database": "ok"}
