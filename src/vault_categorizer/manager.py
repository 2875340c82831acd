from vault_categorizer.classifiers.base import Classifier
from vault_categorizer.classifiers.learned import LearnedVendorMap
from vault_categorizer.classifiers.linear import LocalClassifier
from vault_categorizer.classifiers.rules import OTHER_CATEGORY_NAME, VendorRuleTable, category_slug
from vault_categorizer.domain.embeddings import is_placeholder
from vault_categorizer.domain.errors import Failure
from vault_categorizer.logger import get_logger
from vault_categorizer.models import (
    Category,
    ClassifierMatch,
    LearnedMatch,
    Match,
    RuleMatch,
    Suggestion,
    TrainingStats,
    Transaction,
    TransactionContext,
    VendorMapping,
)
from vault_categorizer.storage.base import LocalStore

logger = get_logger(__name__)


class AutoCategorizer:
    def __init__(
        self,
        store: LocalStore,
        rules: VendorRuleTable | None = None,
        learned: LearnedVendorMap | None = None,
        classifier: LocalClassifier | None = None,
    ):
        self.store = store

        # 1. Built-in vendor rules (highest priority)
        self.rules = rules or VendorRuleTable()
        # 2. Vendor mappings the user taught us
        self.learned = learned or LearnedVendorMap(store)
        # 3. Embedding classifier (only when an embedding is supplied)
        self.classifier = classifier or LocalClassifier(store)

        self.classifiers: list[Classifier] = [self.rules, self.learned, self.classifier]
        self.categories: dict[str, Category] = {}

    async def initialize(self) -> None:
        await self.seed_categories()
        await self.refresh_categories()
        await self.learned.load()
        await self.classifier.load_weights()

    async def dispose(self) -> None:
        self.categories = {}
        self.learned.memory = {}

    async def seed_categories(self) -> None:
        """Create the default category table the first time the store is opened."""
        if await self.store.list_categories():
            return
        names = [*self.rules.category_names(), OTHER_CATEGORY_NAME]
        await self.store.add_categories([Category(id=category_slug(name), name=name) for name in names])
        logger.info("[SUGGEST] Seeded %d default categories.", len(names))

    async def refresh_categories(self) -> None:
        self.categories = {c.id: c for c in await self.store.list_categories()}

    def category_by_name(self, name: str) -> Category | None:
        wanted = name.strip().lower()
        for category in self.categories.values():
            if category.name.lower() == wanted:
                return category
        return None

    def other_category(self) -> Category | None:
        return self.category_by_name(OTHER_CATEGORY_NAME)

    def resolve_category_id(self, suggestion: Suggestion) -> str | None:
        if suggestion.learned_category_id and suggestion.learned_category_id in self.categories:
            return suggestion.learned_category_id
        category = self.category_by_name(suggestion.category_name)
        return category.id if category else None

    def _to_suggestion(self, match: Match) -> Suggestion | None:
        if isinstance(match, RuleMatch):
            return Suggestion(
                category_name=match.category_name,
                confidence=match.confidence,
                is_learned=False,
                source="rule",
            )

        category = self.categories.get(match.category_id)
        if category is None:
            logger.debug("[SUGGEST] Dropping %s hit on unknown category %s.", match.source, match.category_id)
            return None
        if isinstance(match, LearnedMatch):
            return Suggestion(
                category_name=category.name,
                confidence=match.confidence,
                is_learned=True,
                learned_category_id=category.id,
                source="learned",
            )
        if isinstance(match, ClassifierMatch):
            return Suggestion(
                category_name=category.name,
                confidence=match.confidence,
                is_learned=False,
                learned_category_id=category.id,
                source="classifier",
            )
        return None

    def suggest_category(self, vendor: str | None, context: TransactionContext | None = None) -> Suggestion | None:
        """First hit in priority order wins; later classifiers are never consulted."""
        for classifier in self.classifiers:
            classifier_name = classifier.__class__.__name__
            match = classifier.classify(vendor or "", context)
            if match is None:
                continue

            suggestion = self._to_suggestion(match)
            if suggestion is not None:
                logger.debug(
                    "[SUGGEST] %s returned '%s' (confidence: %.2f)",
                    classifier_name,
                    suggestion.category_name,
                    suggestion.confidence,
                )
                return suggestion

        return None

    def suggest_for(self, transaction: Transaction) -> Suggestion | None:
        return self.suggest_category(transaction.vendor, TransactionContext(embedding=transaction.embedding))

    async def learn_categories(self, mappings: list[VendorMapping]) -> int:
        return await self.learned.learn(mappings)

    async def learn(self, transaction: Transaction, category_id: str) -> TrainingStats | Failure | None:
        """
        Record a user correction.

        The vendor mapping is always stored. The classifier is nudged only when
        the transaction carries a real embedding; its outcome is returned.
        """
        if category_id not in self.categories:
            raise ValueError(f"Unknown category: {category_id}")

        if transaction.vendor.strip():
            await self.learned.learn([VendorMapping(vendor=transaction.vendor, category_id=category_id)])

        if is_placeholder(transaction.embedding, self.classifier.dim):
            return None
        return await self.classifier.update(transaction.embedding, category_id)

    async def clear_models(self) -> None:
        await self.learned.clear()
        await self.classifier.reset()
        logger.info("[TRAIN] All models cleared.")
