from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import DIM, center, make_tx
from vault_categorizer.classifiers.linear import LocalClassifier
from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.models import ClassifierMatch, Suggestion, TrainingStats, TransactionContext, VendorMapping
from vault_categorizer.storage.memory import MemoryStore


@pytest.fixture
async def categorizer(labelled_store: MemoryStore, anyio_backend: str) -> AutoCategorizer:
    classifier = LocalClassifier(labelled_store, dim=DIM, min_samples=20)
    service = AutoCategorizer(labelled_store, classifier=classifier)
    await service.initialize()
    return service


@pytest.mark.anyio
async def test_rule_beats_learned_mapping(categorizer: AutoCategorizer) -> None:
    await categorizer.learn_categories([VendorMapping(vendor="Starbucks", category_id="cat-a")])

    suggestion = categorizer.suggest_category("Starbucks")

    assert suggestion.source == "rule"
    assert suggestion.category_name == "Food & Dining"
    assert suggestion.is_learned is False
    assert suggestion.learned_category_id is None


@pytest.mark.anyio
async def test_learned_beats_classifier(categorizer: AutoCategorizer) -> None:
    await categorizer.classifier.train()
    await categorizer.learn_categories([VendorMapping(vendor="Corner Deli", category_id="cat-a")])

    suggestion = categorizer.suggest_category("Corner Deli", TransactionContext(embedding=center(1)))

    assert suggestion.source == "learned"
    assert suggestion.is_learned is True
    assert suggestion.learned_category_id == "cat-a"
    assert suggestion.category_name == "Alpha"
    assert suggestion.confidence == 1.0


@pytest.mark.anyio
async def test_classifier_needs_an_embedding(categorizer: AutoCategorizer) -> None:
    await categorizer.classifier.train()

    assert categorizer.suggest_category("Corner Deli") is None

    suggestion = categorizer.suggest_category("Corner Deli", TransactionContext(embedding=center(1)))
    assert suggestion.source == "classifier"
    assert suggestion.is_learned is False
    assert suggestion.learned_category_id == "cat-b"
    assert suggestion.category_name == "Beta"
    assert 0.0 < suggestion.confidence <= 1.0


@pytest.mark.anyio
async def test_no_vendor_and_no_model(categorizer: AutoCategorizer) -> None:
    assert categorizer.suggest_category(None) is None
    assert categorizer.suggest_category("", TransactionContext(embedding=center(0))) is None


@pytest.mark.anyio
async def test_learned_hit_on_removed_category_is_discarded(categorizer: AutoCategorizer) -> None:
    await categorizer.learn_categories([VendorMapping(vendor="Corner Deli", category_id="gone")])

    assert categorizer.suggest_category("Corner Deli") is None


@pytest.mark.anyio
async def test_priority_is_not_overridden_by_confidence(labelled_store: MemoryStore) -> None:
    classifier = MagicMock(spec=LocalClassifier)
    classifier.dim = DIM
    classifier.load_weights = AsyncMock(return_value=False)
    classifier.classify.return_value = ClassifierMatch(category_id="cat-c", confidence=0.99)
    service = AutoCategorizer(labelled_store, classifier=classifier)
    await service.initialize()
    await service.learn_categories([VendorMapping(vendor="Corner Deli", category_id="cat-a")])

    suggestion = service.suggest_category("Corner Deli", TransactionContext(embedding=center(2)))

    assert suggestion.source == "learned"
    classifier.classify.assert_not_called()


@pytest.mark.anyio
async def test_suggest_is_deterministic(categorizer: AutoCategorizer) -> None:
    await categorizer.classifier.train()
    context = TransactionContext(embedding=center(2))
    results = {categorizer.suggest_category("Corner Deli", context).model_dump_json() for _ in range(5)}
    assert len(results) == 1


@pytest.mark.anyio
async def test_seeds_default_categories_on_empty_store() -> None:
    store = MemoryStore()
    service = AutoCategorizer(store)
    await service.initialize()

    names = {c.name for c in await store.list_categories()}
    assert "Food & Dining" in names
    assert "Other" in names
    assert service.other_category().id == "other"


@pytest.mark.anyio
async def test_resolve_category_id(categorizer: AutoCategorizer) -> None:
    rule = Suggestion(category_name="groceries", confidence=1.0, is_learned=False, source="rule")
    unknown = Suggestion(category_name="Travel", confidence=1.0, is_learned=False, source="rule")
    learned = Suggestion(
        category_name="Alpha", confidence=1.0, is_learned=True, learned_category_id="cat-a", source="learned"
    )

    assert categorizer.resolve_category_id(rule) == "groceries"
    assert categorizer.resolve_category_id(unknown) is None
    assert categorizer.resolve_category_id(learned) == "cat-a"


@pytest.mark.anyio
async def test_learn_records_mapping_and_updates_classifier(categorizer: AutoCategorizer) -> None:
    await categorizer.classifier.train()
    tx = make_tx("n1", vendor="Corner Deli", embedding=center(0))

    result = await categorizer.learn(tx, "cat-b")

    assert isinstance(result, TrainingStats)
    assert result.incremental is True
    assert categorizer.suggest_category("corner deli").learned_category_id == "cat-b"


@pytest.mark.anyio
async def test_learn_without_embedding_skips_classifier(categorizer: AutoCategorizer) -> None:
    tx = make_tx("n1", vendor="Corner Deli", embedding=[0.0] * DIM)

    assert await categorizer.learn(tx, "cat-a") is None
    assert categorizer.classifier.snapshot is None


@pytest.mark.anyio
async def test_learn_rejects_unknown_category(categorizer: AutoCategorizer) -> None:
    with pytest.raises(ValueError):
        await categorizer.learn(make_tx("n1", vendor="Corner Deli"), "missing")


@pytest.mark.anyio
async def test_suggest_for_uses_transaction_embedding(categorizer: AutoCategorizer) -> None:
    await categorizer.classifier.train()

    suggestion = categorizer.suggest_for(make_tx("n1", vendor="Zyxw Holdings", amount=-40.0, embedding=center(1)))

    assert suggestion is not None
    assert suggestion.source == "classifier"
    assert suggestion.category_name == "Beta"
    assert set(TransactionContext.model_fields) == {"embedding"}
