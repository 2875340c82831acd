from fastapi import HTTPException, Request

from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.services.backfill import EmbeddingBackfill
from vault_categorizer.services.suggestions import SuggestionPipeline
from vault_categorizer.services.training import TrainingManager
from vault_categorizer.storage.base import LocalStore


def get_categorizer(request: Request) -> AutoCategorizer:
    categorizer = getattr(request.app.state, "categorizer", None)
    if not categorizer:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return categorizer


def get_store(request: Request) -> LocalStore:
    store = getattr(request.app.state, "store", None)
    if not store:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return store


def get_pipeline(request: Request) -> SuggestionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if not pipeline:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return pipeline


def get_training_manager(request: Request) -> TrainingManager:
    manager = getattr(request.app.state, "training_manager", None)
    if not manager:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return manager


def get_backfill(request: Request) -> EmbeddingBackfill:
    backfill = getattr(request.app.state, "backfill", None)
    if not backfill:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return backfill
