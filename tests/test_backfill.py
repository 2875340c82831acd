import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import DIM, center, make_tx
from vault_categorizer.domain.errors import EmbeddingProviderFailure
from vault_categorizer.domain.session import SessionState
from vault_categorizer.integration.embeddings import EmbeddingProvider
from vault_categorizer.services.backfill import EmbeddingBackfill
from vault_categorizer.storage.memory import MemoryStore

PLACEHOLDER = [0.0] * DIM


def _provider(vector: list[float] | None = None) -> AsyncMock:
    provider = AsyncMock(spec=EmbeddingProvider)
    provider.embed.return_value = vector or center(0)
    return provider


@pytest.fixture
def pending_store() -> MemoryStore:
    return MemoryStore(transactions=[
        make_tx("a", vendor="Corner Deli", embedding=PLACEHOLDER),
        make_tx("b", vendor="Book Nook", embedding=None),
        make_tx("c", vendor="Done Already", embedding=center(1)),
        make_tx("d", vendor="", embedding=PLACEHOLDER),
        make_tx("e", vendor="", raw_text="POS PURCHASE HARDWARE STORE 0042", embedding=PLACEHOLDER),
    ])


@pytest.mark.anyio
async def test_backfill_embeds_pending_transactions(pending_store: MemoryStore) -> None:
    provider = _provider()
    backfill = EmbeddingBackfill(pending_store, provider, batch_size=2, dim=DIM)

    progress = await backfill.run()

    assert progress.stage == "done"
    assert progress.total == 3
    assert progress.completed == 3
    assert progress.failed == 0
    assert progress.percent == 100.0
    assert provider.embed.await_count == 3
    for tx_id in ("a", "b", "e"):
        assert (await pending_store.get_transaction(tx_id)).embedding == center(0)
    # Transactions with nothing to embed keep their placeholder.
    assert (await pending_store.get_transaction("d")).embedding == PLACEHOLDER
    assert (await pending_store.get_transaction("c")).embedding == center(1)


@pytest.mark.anyio
async def test_raw_text_is_used_when_long_enough(pending_store: MemoryStore) -> None:
    provider = _provider()
    backfill = EmbeddingBackfill(pending_store, provider, dim=DIM)

    await backfill.run()

    texts = [call.args[0] for call in provider.embed.await_args_list]
    assert "POS PURCHASE HARDWARE STORE 0042" in texts
    assert any(text.startswith("Expense payment of $12.50 at Corner Deli on March 15, 2024") for text in texts)


@pytest.mark.anyio
async def test_second_run_only_embeds_remaining_placeholders(pending_store: MemoryStore) -> None:
    provider = _provider()
    provider.embed.side_effect = [center(0), EmbeddingProviderFailure("model offline"), center(0)]
    backfill = EmbeddingBackfill(pending_store, provider, dim=DIM)

    first = await backfill.run()
    assert first.completed == 2
    assert first.failed == 1

    provider.embed.reset_mock(side_effect=True)
    provider.embed.return_value = center(2)
    second = await backfill.run()

    assert second.total == 1
    assert second.completed == 1
    assert provider.embed.await_count == 1


@pytest.mark.anyio
async def test_failures_keep_placeholder_and_continue(pending_store: MemoryStore) -> None:
    provider = _provider()
    provider.embed.side_effect = EmbeddingProviderFailure("model offline")
    backfill = EmbeddingBackfill(pending_store, provider, dim=DIM)

    progress = await backfill.run()

    assert progress.stage == "done"
    assert progress.failed == 3
    assert progress.completed == 0
    assert (await pending_store.get_transaction("a")).embedding == PLACEHOLDER


@pytest.mark.anyio
async def test_cancel_stops_before_next_write(pending_store: MemoryStore) -> None:
    backfill = EmbeddingBackfill(pending_store, _provider(), batch_size=1, dim=DIM)

    async def embed_then_cancel(text: str) -> list[float]:
        backfill.request_cancel()
        return center(0)

    backfill.provider.embed.side_effect = embed_then_cancel

    progress = await backfill.run()

    assert progress.stage == "cancelled"
    assert progress.completed == 0
    assert backfill.provider.embed.await_count == 1
    assert (await pending_store.get_transaction("a")).embedding == PLACEHOLDER


@pytest.mark.anyio
async def test_cancel_keeps_completed_writes(pending_store: MemoryStore) -> None:
    backfill = EmbeddingBackfill(pending_store, _provider(), batch_size=1, dim=DIM)
    calls = 0

    async def embed(text: str) -> list[float]:
        nonlocal calls
        calls += 1
        if calls == 2:
            backfill.request_cancel()
        return center(0)

    backfill.provider.embed.side_effect = embed

    progress = await backfill.run()

    assert progress.stage == "cancelled"
    assert progress.completed == 1
    assert (await pending_store.get_transaction("a")).embedding == center(0)


@pytest.mark.anyio
async def test_concurrent_run_returns_in_flight_status(pending_store: MemoryStore) -> None:
    gate = asyncio.Event()
    backfill = EmbeddingBackfill(pending_store, _provider(), dim=DIM)

    async def slow_embed(text: str) -> list[float]:
        await gate.wait()
        return center(0)

    backfill.provider.embed.side_effect = slow_embed

    first = asyncio.create_task(backfill.run())
    await asyncio.sleep(0)
    in_flight = await backfill.run()
    gate.set()
    finished = await first

    assert in_flight.stage == "running"
    assert finished.stage == "done"
    assert finished.completed == 3


@pytest.mark.anyio
async def test_request_cancel_when_idle(pending_store: MemoryStore) -> None:
    backfill = EmbeddingBackfill(pending_store, _provider(), dim=DIM)
    assert backfill.request_cancel() is False


@pytest.mark.anyio
async def test_run_once_per_session(pending_store: MemoryStore) -> None:
    provider = _provider()
    backfill = EmbeddingBackfill(pending_store, provider, dim=DIM)
    session = SessionState()

    assert await backfill.run_once_per_session(session) is True
    assert session.backfill_done is True
    assert await backfill.run_once_per_session(session) is False
    assert provider.embed.await_count == 3


@pytest.mark.anyio
async def test_session_marker_not_set_when_everything_failed(pending_store: MemoryStore) -> None:
    provider = _provider()
    provider.embed.side_effect = EmbeddingProviderFailure("model offline")
    backfill = EmbeddingBackfill(pending_store, provider, dim=DIM)
    session = SessionState()

    await backfill.run_once_per_session(session)

    assert session.backfill_done is False


@pytest.mark.anyio
async def test_nothing_to_do_marks_session() -> None:
    store = MemoryStore(transactions=[make_tx("c", vendor="Done", embedding=center(1))])
    backfill = EmbeddingBackfill(store, _provider(), dim=DIM)
    session = SessionState()

    await backfill.run_once_per_session(session)

    assert session.backfill_done is True
    assert backfill.get_status().total == 0
