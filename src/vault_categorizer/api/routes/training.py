from typing import Annotated, Any

from fastapi import APIRouter, Depends

from vault_categorizer.api.dependencies import get_categorizer, get_training_manager
from vault_categorizer.api.errors import failure_to_http
from vault_categorizer.domain.errors import Failure, StorageFailure
from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.models import TrainingStats
from vault_categorizer.services.training import TrainingManager

router = APIRouter()


@router.post("/train")
async def train_classifier(
    training_manager: Annotated[TrainingManager, Depends(get_training_manager)],
) -> TrainingStats:
    result = await training_manager.retrain()
    if isinstance(result, Failure):
        raise failure_to_http(result)
    return result


@router.get("/train-status")
async def get_training_status(
    training_manager: Annotated[TrainingManager, Depends(get_training_manager)],
) -> dict[str, Any]:
    return training_manager.get_status()


@router.post("/clear-models")
async def clear_models(
    categorizer: Annotated[AutoCategorizer, Depends(get_categorizer)],
) -> dict[str, str]:
    try:
        await categorizer.clear_models()
    except StorageFailure as exc:
        raise failure_to_http(exc.failure) from exc
    return {"status": "success", "message": "All models cleared"}
