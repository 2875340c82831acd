from collections.abc import Mapping
from typing import Any

from vault_categorizer.domain.errors import StorageFailure
from vault_categorizer.logger import get_logger
from vault_categorizer.models import Category, Transaction, VendorMapping

from .base import LocalStore, apply_fields

logger = get_logger(__name__)


class MemoryStore(LocalStore):
    def __init__(
        self,
        transactions: list[Transaction] | None = None,
        categories: list[Category] | None = None,
    ) -> None:
        self.transactions: dict[str, Transaction] = {}
        self.categories: dict[str, Category] = {}
        self.vendor_mappings: dict[str, VendorMapping] = {}
        self.weights_blob: bytes | None = None
        for tx in transactions or []:
            self.transactions[tx.id] = tx
        for category in categories or []:
            self.categories[category.id] = category

    def _require(self, transaction_id: str) -> Transaction:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise StorageFailure(
                f"Transaction {transaction_id} not found",
                recoverable=False,
            )
        return transaction

    async def _persist(self, table: str) -> None:
        """Hook for durable subclasses; called after every committed write."""

    def _rollback(
        self,
        staged: Mapping[str, Transaction],
        originals: Mapping[str, Transaction | None],
    ) -> None:
        # Rows rewritten by another writer while the persist was pending keep their newer value.
        for transaction_id, row in staged.items():
            if self.transactions.get(transaction_id) is not row:
                continue
            original = originals[transaction_id]
            if original is None:
                del self.transactions[transaction_id]
            else:
                self.transactions[transaction_id] = original

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self.transactions.get(transaction_id)

    async def list_transactions(self) -> list[Transaction]:
        return list(self.transactions.values())

    async def add_transactions(self, transactions: list[Transaction]) -> None:
        staged = {tx.id: tx for tx in transactions}
        originals = {tx_id: self.transactions.get(tx_id) for tx_id in staged}
        self.transactions.update(staged)
        try:
            await self._persist("transactions")
        except StorageFailure:
            self._rollback(staged, originals)
            raise

    async def update_transaction(self, transaction_id: str, fields: Mapping[str, Any]) -> Transaction:
        current = self._require(transaction_id)
        updated = apply_fields(current, fields)
        self.transactions[transaction_id] = updated
        try:
            await self._persist("transactions")
        except StorageFailure:
            self._rollback({transaction_id: updated}, {transaction_id: current})
            raise
        return updated

    async def update_many(self, updates: Mapping[str, Mapping[str, Any]]) -> int:
        # Validate every row before touching the table so a bad row leaves nothing applied.
        staged = {
            transaction_id: apply_fields(self._require(transaction_id), fields)
            for transaction_id, fields in updates.items()
        }
        originals = {transaction_id: self.transactions[transaction_id] for transaction_id in staged}
        self.transactions.update(staged)
        try:
            await self._persist("transactions")
        except StorageFailure:
            self._rollback(staged, originals)
            raise
        logger.debug("[STORE] Bulk update committed for %d transactions.", len(staged))
        return len(staged)

    async def list_categories(self) -> list[Category]:
        return list(self.categories.values())

    async def add_categories(self, categories: list[Category]) -> None:
        previous = dict(self.categories)
        for category in categories:
            self.categories[category.id] = category
        try:
            await self._persist("categories")
        except StorageFailure:
            self.categories = previous
            raise

    async def list_vendor_mappings(self) -> list[VendorMapping]:
        return list(self.vendor_mappings.values())

    async def put_vendor_mapping(self, mapping: VendorMapping) -> None:
        previous = self.vendor_mappings.get(mapping.vendor)
        self.vendor_mappings[mapping.vendor] = mapping
        try:
            await self._persist("vendor_mappings")
        except StorageFailure:
            if previous is None:
                self.vendor_mappings.pop(mapping.vendor, None)
            else:
                self.vendor_mappings[mapping.vendor] = previous
            raise

    async def clear_vendor_mappings(self) -> None:
        previous = dict(self.vendor_mappings)
        self.vendor_mappings = {}
        try:
            await self._persist("vendor_mappings")
        except StorageFailure:
            self.vendor_mappings = previous
            raise

    async def load_weights_blob(self) -> bytes | None:
        return self.weights_blob

    async def replace_weights_blob(self, blob: bytes) -> None:
        previous = self.weights_blob
        self.weights_blob = blob
        try:
            await self._persist("classifier_weights")
        except StorageFailure:
            self.weights_blob = previous
            raise

    async def delete_weights_blob(self) -> None:
        previous = self.weights_blob
        self.weights_blob = None
        try:
            await self._persist("classifier_weights")
        except StorageFailure:
            self.weights_blob = previous
            raise
