from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from vault_categorizer.models import Category, Transaction
from vault_categorizer.storage.memory import MemoryStore

DIM = 8

CATEGORIES = [
    Category(id="cat-a", name="Alpha"),
    Category(id="cat-b", name="Beta"),
    Category(id="cat-c", name="Gamma"),
    Category(id="groceries", name="Groceries"),
    Category(id="other", name="Other"),
]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_tx(
    tx_id: str,
    vendor: str = "",
    amount: float = 12.5,
    category: str | None = None,
    embedding: list[float] | None = None,
    days_ago: int = 0,
    **extra,
) -> Transaction:
    return Transaction(
        id=tx_id,
        date=datetime(2024, 3, 15, tzinfo=timezone.utc) - timedelta(days=days_ago),
        amount=amount,
        vendor=vendor,
        category=category,
        embedding=embedding,
        **extra,
    )


def cluster_embeddings(labels: list[str], per_class: int, dim: int = DIM, seed: int = 0) -> list[tuple[list[float], str]]:
    """Well separated points: class ``i`` sits around ``3 * e_i``."""
    rng = np.random.default_rng(seed)
    samples = []
    for index, label in enumerate(labels):
        center = np.zeros(dim)
        center[index] = 3.0
        for _ in range(per_class):
            point = center + rng.normal(0.0, 0.1, size=dim)
            samples.append((point.tolist(), label))
    return samples


def center(index: int, dim: int = DIM) -> list[float]:
    vector = [0.0] * dim
    vector[index] = 3.0
    return vector


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(categories=list(CATEGORIES))


@pytest.fixture
def labelled_store() -> MemoryStore:
    samples = cluster_embeddings(["cat-a", "cat-b", "cat-c"], per_class=10)
    transactions = [
        make_tx(f"t{i}", vendor=f"vendor {i}", category=label, embedding=embedding)
        for i, (embedding, label) in enumerate(samples)
    ]
    return MemoryStore(transactions=transactions, categories=list(CATEGORIES))
