from typing import Any

from pydantic import BaseModel

from vault_categorizer.models import TransactionContext, VendorMapping


class SuggestRequest(BaseModel):
    vendor: str | None = None
    context: TransactionContext | None = None


class PredictRequest(BaseModel):
    embedding: list[float]


class ApplyRequest(BaseModel):
    category_id: str


class LearnRequest(BaseModel):
    transaction_id: str
    category_id: str


class LearnCategoriesRequest(BaseModel):
    mappings: list[VendorMapping]


class SyncRequest(BaseModel):
    transaction_ids: list[str] | None = None
    transactions: list[dict[str, Any]] | None = None
