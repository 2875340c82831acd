import asyncio

from vault_categorizer.domain.embeddings import (
    DEFAULT_EMBEDDING_DIM,
    build_embedding_text,
    has_usable_text,
    is_placeholder,
)
from vault_categorizer.domain.errors import CoreError
from vault_categorizer.domain.session import SessionState
from vault_categorizer.integration.embeddings import EmbeddingProvider
from vault_categorizer.logger import get_logger
from vault_categorizer.models import BackfillProgress, Transaction
from vault_categorizer.storage.base import LocalStore

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 20


class EmbeddingBackfill:
    """
    Replaces placeholder embeddings with real ones, in the background.

    The job only ever looks at transactions that still hold a placeholder, so
    an interrupted run picks up where it stopped the next time it starts.
    """

    def __init__(
        self,
        store: LocalStore,
        provider: EmbeddingProvider,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dim: int = DEFAULT_EMBEDDING_DIM,
    ) -> None:
        self.store = store
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.dim = dim
        self.cancel_event = asyncio.Event()
        self.active = False
        self.status = BackfillProgress()

    def get_status(self) -> BackfillProgress:
        return self.status.model_copy()

    def request_cancel(self) -> bool:
        if self.active:
            self.cancel_event.set()
            return True
        return False

    async def find_pending(self) -> list[Transaction]:
        transactions = await self.store.list_transactions()
        return [tx for tx in transactions if is_placeholder(tx.embedding, self.dim) and has_usable_text(tx)]

    async def run(self) -> BackfillProgress:
        if self.active:
            return self.get_status()

        self.active = True
        self.cancel_event.clear()
        self.status = BackfillProgress(stage="scanning")
        try:
            await self._run()
        except CoreError as exc:
            logger.error("[BACKFILL] Aborted: %s", exc)
            self.status.stage = "error"
            self.status.message = str(exc)
        finally:
            self.active = False
        return self.get_status()

    async def _run(self) -> None:
        pending = await self.find_pending()
        self.status.total = len(pending)
        if not pending:
            logger.info("[BACKFILL] No transactions need embeddings.")
            self.status.stage = "done"
            return

        category_names = {c.id: c.name for c in await self.store.list_categories()}
        logger.info("[BACKFILL] Embedding %d transactions in batches of %d.", len(pending), self.batch_size)
        self.status.stage = "running"

        for start in range(0, len(pending), self.batch_size):
            if self.cancel_event.is_set():
                break
            for tx in pending[start:start + self.batch_size]:
                if self.cancel_event.is_set():
                    break
                await self._embed_one(tx, category_names)

            logger.debug(
                "[BACKFILL] Progress: %d/%d (%d failed)",
                self.status.completed,
                self.status.total,
                self.status.failed,
            )
            await asyncio.sleep(0)

        if self.cancel_event.is_set():
            self.status.stage = "cancelled"
            logger.info(
                "[BACKFILL] Cancelled after %d/%d embeddings.",
                self.status.completed,
                self.status.total,
            )
            return

        self.status.stage = "done"
        logger.info(
            "[BACKFILL] Complete! Embedded: %d, Failed: %d, Total: %d",
            self.status.completed,
            self.status.failed,
            self.status.total,
        )

    async def _embed_one(self, tx: Transaction, category_names: dict[str, str]) -> None:
        try:
            embedding = await self.provider.embed(build_embedding_text(tx, category_names))
            if self.cancel_event.is_set():
                return
            await self.store.update_transaction(tx.id, {"embedding": embedding})
        except CoreError as exc:
            self.status.failed += 1
            logger.warning("[BACKFILL] Transaction %s failed (%s): %s", tx.id, exc.kind.value, exc)
            return
        self.status.completed += 1

    async def run_once_per_session(self, session: SessionState) -> bool:
        """Run unless this session already backfilled. Returns whether a run happened."""
        if session.backfill_done:
            return False

        progress = await self.run()
        if progress.stage == "done" and (progress.completed > 0 or progress.total == 0):
            session.backfill_done = True
        return True
