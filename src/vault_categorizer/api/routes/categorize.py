from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from vault_categorizer.api.dependencies import get_categorizer, get_pipeline, get_store
from vault_categorizer.api.errors import failure_to_http
from vault_categorizer.api.schemas import (
    ApplyRequest,
    LearnCategoriesRequest,
    LearnRequest,
    PredictRequest,
    SuggestRequest,
)
from vault_categorizer.domain.errors import ErrorKind, Failure, StorageFailure, failure
from vault_categorizer.logger import get_logger
from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.models import Category, PendingSuggestion, Prediction, Suggestion, Transaction, utcnow
from vault_categorizer.services.suggestions import SuggestionPipeline
from vault_categorizer.storage.base import LocalStore

logger = get_logger(__name__)

router = APIRouter()


@router.post("/suggest", response_model=Suggestion | None)
async def suggest_category(
    req: SuggestRequest,
    categorizer: Annotated[AutoCategorizer, Depends(get_categorizer)],
) -> Suggestion | None:
    return categorizer.suggest_category(req.vendor, req.context)


@router.post("/predict", response_model=Prediction)
async def predict_category(
    req: PredictRequest,
    categorizer: Annotated[AutoCategorizer, Depends(get_categorizer)],
) -> Prediction:
    prediction = categorizer.classifier.predict(req.embedding)
    if prediction is None:
        raise failure_to_http(
            failure(ErrorKind.MODEL_NOT_READY, "Classifier is not trained or the embedding is unusable")
        )
    return prediction


@router.get("/categories")
async def get_categories(
    categorizer: Annotated[AutoCategorizer, Depends(get_categorizer)],
) -> list[Category]:
    await categorizer.refresh_categories()
    return list(categorizer.categories.values())


@router.get("/suggestions")
async def get_suggestions(
    pipeline: Annotated[SuggestionPipeline, Depends(get_pipeline)],
    limit: int | None = None,
) -> list[PendingSuggestion]:
    return await pipeline.pending(limit)


@router.post("/suggestions/apply-all")
async def apply_all_suggestions(
    pipeline: Annotated[SuggestionPipeline, Depends(get_pipeline)],
) -> dict[str, int | str]:
    result = await pipeline.apply_all()
    if isinstance(result, Failure):
        raise failure_to_http(result)
    return {"status": "success", "applied": result}


@router.post("/suggestions/{transaction_id}/apply")
async def apply_suggestion(
    transaction_id: str,
    req: ApplyRequest,
    pipeline: Annotated[SuggestionPipeline, Depends(get_pipeline)],
) -> Transaction:
    try:
        return await pipeline.apply_suggestion(transaction_id, req.category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageFailure as exc:
        raise failure_to_http(exc.failure) from exc


@router.post("/suggestions/{transaction_id}/dismiss")
async def dismiss_suggestion(
    transaction_id: str,
    pipeline: Annotated[SuggestionPipeline, Depends(get_pipeline)],
) -> dict[str, str]:
    try:
        updated = await pipeline.dismiss(transaction_id)
    except StorageFailure as exc:
        raise failure_to_http(exc.failure) from exc
    if updated is None:
        raise HTTPException(status_code=409, detail="No \"Other\" category to dismiss into")
    return {"status": "dismissed", "category": updated.category or ""}


@router.post("/learn")
async def learn_transaction(
    req: LearnRequest,
    categorizer: Annotated[AutoCategorizer, Depends(get_categorizer)],
    store: Annotated[LocalStore, Depends(get_store)],
) -> dict[str, str]:
    transaction = await store.get_transaction(req.transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail=f"Transaction {req.transaction_id} not found")
    if req.category_id not in categorizer.categories:
        raise HTTPException(status_code=404, detail=f"Unknown category: {req.category_id}")

    try:
        await store.update_transaction(transaction.id, {"category": req.category_id, "updated_at": utcnow()})
        result = await categorizer.learn(transaction, req.category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageFailure as exc:
        raise failure_to_http(exc.failure) from exc

    if result is None:
        classifier_status = "skipped"
    elif isinstance(result, Failure):
        classifier_status = result.kind.value
    else:
        classifier_status = "updated"

    logger.info("[LEARN] Transaction %s -> category %s (classifier: %s)", transaction.id, req.category_id, classifier_status)
    return {"status": "success", "message": "Learned new transaction", "classifier": classifier_status}


@router.post("/learn-categories")
async def learn_categories(
    req: LearnCategoriesRequest,
    categorizer: Annotated[AutoCategorizer, Depends(get_categorizer)],
) -> dict[str, int | str]:
    try:
        changed = await categorizer.learn_categories(req.mappings)
    except StorageFailure as exc:
        raise failure_to_http(exc.failure) from exc
    return {"status": "success", "changed": changed}
