from typing import Annotated

from fastapi import APIRouter, Depends

from vault_categorizer.api.dependencies import get_backfill
from vault_categorizer.logger import get_logger
from vault_categorizer.models import BackfillProgress
from vault_categorizer.services.backfill import EmbeddingBackfill

logger = get_logger(__name__)

router = APIRouter()


def _progress(progress: BackfillProgress, active: bool) -> dict:
    return {**progress.model_dump(), "percent": progress.percent, "active": active}


@router.post("/backfill")
async def run_backfill(
    backfill: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> dict:
    progress = await backfill.run()
    return _progress(progress, backfill.active)


@router.get("/backfill-status")
async def get_backfill_status(
    backfill: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> dict:
    return _progress(backfill.get_status(), backfill.active)


@router.post("/backfill-cancel")
async def cancel_backfill(
    backfill: Annotated[EmbeddingBackfill, Depends(get_backfill)],
) -> dict[str, str]:
    if backfill.request_cancel():
        logger.info("[BACKFILL] Cancel requested by user.")
        return {"status": "cancelling"}
    return {"status": "idle"}
