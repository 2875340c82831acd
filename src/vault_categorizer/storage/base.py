from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from vault_categorizer.domain.embeddings import is_placeholder
from vault_categorizer.domain.errors import StorageFailure
from vault_categorizer.models import Category, Transaction, VendorMapping

_IMMUTABLE_FIELDS = frozenset({"id"})


def apply_fields(transaction: Transaction, fields: Mapping[str, Any]) -> Transaction:
    """Return a validated copy of ``transaction`` with ``fields`` replaced.

    Rejects unknown fields, identity changes, and any write that would turn a
    real embedding back into the placeholder.
    """
    unknown = set(fields) - set(Transaction.model_fields)
    if unknown:
        raise StorageFailure(
            f"Unknown transaction fields: {', '.join(sorted(unknown))}",
            recoverable=False,
        )
    if _IMMUTABLE_FIELDS & set(fields):
        raise StorageFailure("Transaction identity cannot be changed", recoverable=False)
    if "embedding" in fields and not is_placeholder(transaction.embedding):
        if is_placeholder(fields["embedding"]):
            raise StorageFailure(
                f"Refusing to reset the embedding of transaction {transaction.id}",
                recoverable=False,
            )

    data = transaction.model_dump()
    data.update(fields)
    try:
        return Transaction.model_validate(data)
    except ValueError as exc:
        raise StorageFailure(
            f"Invalid update for transaction {transaction.id}: {exc}",
            recoverable=False,
        ) from exc


class LocalStore(ABC):
    """
    Ordered, queryable persistence for the on-device tables.

    Implementations raise ``StorageFailure`` when a
    read or write cannot be completed. ``update_many`` must be all-or-nothing.
    """

    async def initialize(self) -> None:
        """Open the store; the default store has nothing to open."""

    async def dispose(self) -> None:
        """Release the store; the default store has nothing to release."""

    # -- transactions ----------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        pass

    @abstractmethod
    async def list_transactions(self) -> list[Transaction]:
        """All transactions in insertion order."""
        pass

    @abstractmethod
    async def add_transactions(self, transactions: list[Transaction]) -> None:
        """Insert or replace whole transactions (import/entry flows)."""
        pass

    @abstractmethod
    async def update_transaction(self, transaction_id: str, fields: Mapping[str, Any]) -> Transaction:
        """Field-level update of a single transaction."""
        pass

    @abstractmethod
    async def update_many(self, updates: Mapping[str, Mapping[str, Any]]) -> int:
        """Apply field updates to several transactions atomically."""
        pass

    async def find_transactions(self, **criteria: Any) -> list[Transaction]:
        transactions = await self.list_transactions()
        return [
            tx for tx in transactions
            if all(getattr(tx, name) == value for name, value in criteria.items())
        ]

    # -- categories ------------------------------------------------------

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        pass

    @abstractmethod
    async def add_categories(self, categories: list[Category]) -> None:
        pass

    async def find_category_by_name(self, name: str) -> Category | None:
        wanted = name.strip().lower()
        for category in await self.list_categories():
            if category.name.lower() == wanted:
                return category
        return None

    # -- vendor mappings -------------------------------------------------

    @abstractmethod
    async def list_vendor_mappings(self) -> list[VendorMapping]:
        pass

    @abstractmethod
    async def put_vendor_mapping(self, mapping: VendorMapping) -> None:
        pass

    @abstractmethod
    async def clear_vendor_mappings(self) -> None:
        pass

    # -- classifier weights ----------------------------------------------

    @abstractmethod
    async def load_weights_blob(self) -> bytes | None:
        pass

    @abstractmethod
    async def replace_weights_blob(self, blob: bytes) -> None:
        """Replace the persisted snapshot in one step; readers see old or new, never a mix."""
        pass

    @abstractmethod
    async def delete_weights_blob(self) -> None:
        pass
