from vault_categorizer.logger import get_logger
from vault_categorizer.models import LearnedMatch, TransactionContext, VendorMapping, utcnow
from vault_categorizer.storage.base import LocalStore

from .base import Classifier
from .rules import normalize_vendor

logger = get_logger(__name__)


class LearnedVendorMap(Classifier):
    """Vendor → category corrections the user has made, keyed by normalized vendor."""

    def __init__(self, store: LocalStore):
        self.store = store
        self.memory: dict[str, VendorMapping] = {}

    async def load(self) -> None:
        mappings = await self.store.list_vendor_mappings()
        self.memory = {normalize_vendor(m.vendor): m for m in mappings if normalize_vendor(m.vendor)}
        logger.info("[LEARN] Loaded %d vendor mappings.", len(self.memory))

    def __len__(self) -> int:
        return len(self.memory)

    def lookup(self, vendor: str) -> VendorMapping | None:
        key = normalize_vendor(vendor)
        if not key:
            return None
        return self.memory.get(key)

    def classify(self, vendor: str, context: TransactionContext | None = None) -> LearnedMatch | None:
        mapping = self.lookup(vendor)
        if mapping is None:
            return None
        return LearnedMatch(category_id=mapping.category_id, vendor=mapping.vendor)

    async def learn(self, mappings: list[VendorMapping]) -> int:
        """Upsert ``mappings``; returns how many entries actually changed."""
        changed = 0
        for incoming in mappings:
            key = normalize_vendor(incoming.vendor)
            if not key:
                continue
            existing = self.memory.get(key)
            if existing is not None and existing.category_id == incoming.category_id:
                continue

            now = utcnow()
            if existing is None:
                mapping = VendorMapping(vendor=key, category_id=incoming.category_id, created_at=now, updated_at=now)
            else:
                mapping = existing.model_copy(
                    update={
                        "category_id": incoming.category_id,
                        "usage_count": existing.usage_count + 1,
                        "updated_at": now,
                    }
                )
            await self.store.put_vendor_mapping(mapping)
            self.memory[key] = mapping
            changed += 1

        if changed:
            logger.debug("[LEARN] Stored %d vendor mapping changes.", changed)
        return changed

    async def clear(self) -> None:
        await self.store.clear_vendor_mappings()
        self.memory = {}
