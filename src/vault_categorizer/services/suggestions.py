from vault_categorizer.domain.errors import Failure, StorageFailure
from vault_categorizer.logger import get_logger
from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.models import PendingSuggestion, Transaction, VendorMapping, utcnow
from vault_categorizer.storage.base import LocalStore

logger = get_logger(__name__)

DEFAULT_SUGGESTION_LIMIT = 10


class SuggestionPipeline:
    """Suggestions for transactions that are uncategorized or parked under "Other"."""

    def __init__(
        self,
        store: LocalStore,
        categorizer: AutoCategorizer,
        limit: int = DEFAULT_SUGGESTION_LIMIT,
    ) -> None:
        self.store = store
        self.categorizer = categorizer
        self.limit = limit

    async def _needs_category(self) -> list[Transaction]:
        other = self.categorizer.other_category()
        other_id = other.id if other else None
        transactions = await self.store.list_transactions()
        flagged = [tx for tx in transactions if not tx.category or tx.category == other_id]
        return sorted(flagged, key=lambda tx: tx.date, reverse=True)

    def _suggest(self, tx: Transaction) -> PendingSuggestion:
        suggestion = self.categorizer.suggest_for(tx)
        category_id = self.categorizer.resolve_category_id(suggestion) if suggestion else None
        category = self.categorizer.categories.get(category_id) if category_id else None
        return PendingSuggestion(
            transaction_id=tx.id,
            vendor=tx.vendor,
            amount=tx.amount,
            date=tx.date,
            suggestion=suggestion,
            suggested_category_id=category_id,
            suggested_category_name=category.name if category else None,
        )

    async def pending(self, limit: int | None = None) -> list[PendingSuggestion]:
        limit = self.limit if limit is None else limit
        transactions = await self._needs_category()
        return [self._suggest(tx) for tx in transactions[:limit]]

    async def apply_suggestion(self, transaction_id: str, category_id: str) -> Transaction:
        if category_id not in self.categorizer.categories:
            raise ValueError(f"Unknown category: {category_id}")
        return await self.store.update_transaction(
            transaction_id,
            {"category": category_id, "updated_at": utcnow()},
        )

    async def apply_all(self) -> int | Failure:
        """
        Apply every resolvable suggestion in one store transaction.

        Either all eligible transactions are updated or none are. Learning the
        vendor mappings afterwards is best effort.
        """
        applicable = []
        for tx in await self._needs_category():
            item = self._suggest(tx)
            if item.suggested_category_id is not None and item.suggested_category_id != tx.category:
                applicable.append(item)
        if not applicable:
            return 0

        now = utcnow()
        updates = {
            item.transaction_id: {"category": item.suggested_category_id, "updated_at": now}
            for item in applicable
        }
        try:
            applied = await self.store.update_many(updates)
        except StorageFailure as exc:
            logger.error("[SUGGEST] Bulk apply rolled back: %s", exc)
            return exc.failure

        mappings = [
            VendorMapping(vendor=item.vendor, category_id=item.suggested_category_id)
            for item in applicable
            if item.vendor.strip() and item.suggested_category_id
        ]
        if mappings:
            try:
                await self.categorizer.learn_categories(mappings)
            except StorageFailure as exc:
                logger.warning("[SUGGEST] Applied %d suggestions but could not learn vendors: %s", applied, exc)

        logger.info("[SUGGEST] Applied %d suggestions.", applied)
        return applied

    async def dismiss(self, transaction_id: str) -> Transaction | None:
        other = self.categorizer.other_category()
        if other is None:
            logger.warning("[SUGGEST] No \"Other\" category; cannot dismiss.")
            return None
        return await self.store.update_transaction(
            transaction_id,
            {"category": other.id, "updated_at": utcnow()},
        )
