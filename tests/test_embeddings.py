from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from conftest import make_tx
from vault_categorizer.domain.embeddings import (
    build_embedding_text,
    has_usable_text,
    is_placeholder,
    placeholder_embedding,
)
from vault_categorizer.domain.errors import EmbeddingProviderFailure, ErrorKind
from vault_categorizer.integration.embeddings import OpenAIEmbeddingProvider


def _client(vector: list[float]) -> MagicMock:
    client = MagicMock()
    response = MagicMock()
    response.data = [MagicMock(embedding=vector)]
    client.embeddings.create = AsyncMock(return_value=response)
    client.close = AsyncMock()
    return client


def test_placeholder_helpers() -> None:
    assert placeholder_embedding(3) == [0.0, 0.0, 0.0]
    assert is_placeholder(None)
    assert is_placeholder([])
    assert is_placeholder([0.0, 0.0])
    assert is_placeholder([0.1, 0.2], dim=3)
    assert not is_placeholder([0.0, 0.2])


def test_has_usable_text() -> None:
    assert has_usable_text(make_tx("t1", vendor="Corner Deli"))
    assert has_usable_text(make_tx("t2", note="dinner"))
    assert not has_usable_text(make_tx("t3", vendor="  "))


def test_build_text_for_expense_with_category() -> None:
    tx = make_tx("t1", vendor="Corner Deli", amount=8.25, category="cat-a", note="team lunch")

    text = build_embedding_text(tx, {"cat-a": "Food & Dining"})

    assert text == "Expense payment of $8.25 at Corner Deli on March 15, 2024 for Food & Dining. team lunch"


def test_build_text_for_income() -> None:
    tx = make_tx("t1", vendor="Acme Corp", amount=-2500.0, currency="EUR")

    text = build_embedding_text(tx)

    assert text == "Income credit of €2500.00 from Acme Corp on March 15, 2024"


def test_build_text_prefers_long_raw_text() -> None:
    assert build_embedding_text(make_tx("t1", vendor="X", raw_text="ACME PAYROLL DEPOSIT")) == "ACME PAYROLL DEPOSIT"
    assert build_embedding_text(make_tx("t2", vendor="X", raw_text="short")).startswith("Expense payment")


@pytest.mark.anyio
async def test_provider_returns_vector() -> None:
    client = _client([0.1, 0.2, 0.3])
    provider = OpenAIEmbeddingProvider(model="all-minilm", dimensions=3, client=client)

    vector = await provider.embed("Corner Deli")

    assert vector == [0.1, 0.2, 0.3]
    client.embeddings.create.assert_awaited_once_with(model="all-minilm", input="Corner Deli")


@pytest.mark.anyio
async def test_provider_rejects_wrong_dimension() -> None:
    provider = OpenAIEmbeddingProvider(dimensions=4, client=_client([0.1, 0.2, 0.3]))

    with pytest.raises(EmbeddingProviderFailure) as excinfo:
        await provider.embed("Corner Deli")

    assert excinfo.value.kind is ErrorKind.EMBEDDING_PROVIDER_FAILURE
    assert excinfo.value.failure.recoverable is False


@pytest.mark.anyio
async def test_provider_rejects_zero_vector_and_empty_text() -> None:
    provider = OpenAIEmbeddingProvider(dimensions=3, client=_client([0.0, 0.0, 0.0]))

    with pytest.raises(EmbeddingProviderFailure):
        await provider.embed("Corner Deli")
    with pytest.raises(EmbeddingProviderFailure):
        await provider.embed("   ")


@pytest.mark.anyio
async def test_provider_wraps_client_errors() -> None:
    client = _client([0.1])
    request = httpx.Request("POST", "http://localhost:11434/v1/embeddings")
    client.embeddings.create.side_effect = APIConnectionError(request=request)
    provider = OpenAIEmbeddingProvider(dimensions=1, client=client)

    with pytest.raises(EmbeddingProviderFailure) as excinfo:
        await provider.embed("Corner Deli")

    assert excinfo.value.failure.recoverable is True


@pytest.mark.anyio
async def test_provider_close() -> None:
    client = _client([0.1])
    provider = OpenAIEmbeddingProvider(dimensions=1, client=client)

    await provider.aclose()

    client.close.assert_awaited_once()
