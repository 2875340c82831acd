from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(BaseModel):
    id: str
    date: datetime
    amount: float  # signed; negative amounts are income
    vendor: str = ""
    category: str | None = None  # category id, None when unset
    embedding: list[float] | None = None
    note: str | None = None
    currency: str = "USD"
    # Local-only fields; never part of a sync payload.
    raw_text: str | None = None
    file_path: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    confidence: float | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Category(BaseModel):
    id: str
    name: str


class VendorMapping(BaseModel):
    vendor: str
    category_id: str
    usage_count: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TransactionContext(BaseModel):
    embedding: list[float] | None = None


class RuleMatch(BaseModel):
    source: Literal["rule"] = "rule"
    category_name: str
    keyword: str
    confidence: float = 1.0


class LearnedMatch(BaseModel):
    source: Literal["learned"] = "learned"
    category_id: str
    vendor: str
    confidence: float = 1.0


class ClassifierMatch(BaseModel):
    source: Literal["classifier"] = "classifier"
    category_id: str
    confidence: float
    top_k: list[tuple[str, float]] = []


Match = RuleMatch | LearnedMatch | ClassifierMatch


class Suggestion(BaseModel):
    category_name: str
    confidence: float  # 0.0 to 1.0
    is_learned: bool
    learned_category_id: str | None = None
    source: Literal["rule", "learned", "classifier"]


class Prediction(BaseModel):
    category_id: str
    confidence: float
    top_k: list[tuple[str, float]] = []


class TrainingStats(BaseModel):
    num_classes: int
    num_samples: int
    final_loss: float
    incremental: bool = False


class ClassifierStats(BaseModel):
    is_trained: bool
    num_classes: int = 0
    training_samples: int = 0
    last_trained: datetime | None = None


class BackfillProgress(BaseModel):
    stage: Literal["idle", "scanning", "running", "done", "cancelled", "error"] = "idle"
    completed: int = 0
    failed: int = 0
    total: int = 0
    message: str | None = None

    @property
    def percent(self) -> float:
        return round(self.completed / self.total * 100, 1) if self.total > 0 else 0.0


class PendingSuggestion(BaseModel):
    transaction_id: str
    vendor: str
    amount: float
    date: datetime
    suggestion: Suggestion | None = None
    suggested_category_id: str | None = None
    suggested_category_name: str | None = None


class PayloadValidation(BaseModel):
    safe: bool
    violations: list[str] = []
