import asyncio
import contextlib
import json
import os
from typing import Any

from pydantic import BaseModel

from vault_categorizer.domain.errors import StorageFailure
from vault_categorizer.logger import get_logger
from vault_categorizer.models import Category, Transaction, VendorMapping

from .memory import MemoryStore

logger = get_logger(__name__)

_TABLE_FILES = {
    "transactions": "transactions.json",
    "categories": "categories.json",
    "vendor_mappings": "vendor_mappings.json",
}
WEIGHTS_FILENAME = "classifier_weights.pkl"


def write_atomic(path: str, data: bytes) -> None:
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        with contextlib.suppress(OSError):
            os.remove(tmp_path)
        raise


class FileStore(MemoryStore):
    """
    MemoryStore that mirrors every committed write into ``data_dir``.

    Each table is one JSON file and the classifier snapshot is one binary
    blob. Files are replaced through a temp file and ``os.replace`` so a
    crash mid-write leaves the previous version in place.
    """

    def __init__(self, data_dir: str = ".") -> None:
        super().__init__()
        self.data_dir = data_dir
        self._write_lock = asyncio.Lock()

    def _path(self, filename: str) -> str:
        return os.path.join(self.data_dir, filename)

    def _read_table(self, table: str) -> list[dict[str, Any]]:
        path = self._path(_TABLE_FILES[table])
        if not os.path.exists(path):
            return []
        try:
            with open(path, encoding="utf-8") as f:
                rows = json.load(f)
        except json.JSONDecodeError:
            logger.warning("[STORE] %s is not valid JSON; starting with an empty table.", path)
            return []
        if not isinstance(rows, list):
            logger.warning("[STORE] %s does not hold a list; starting with an empty table.", path)
            return []
        return rows

    def _load_sync(self) -> None:
        self.transactions = {
            tx.id: tx for tx in (Transaction.model_validate(row) for row in self._read_table("transactions"))
        }
        self.categories = {
            c.id: c for c in (Category.model_validate(row) for row in self._read_table("categories"))
        }
        self.vendor_mappings = {
            m.vendor: m for m in (VendorMapping.model_validate(row) for row in self._read_table("vendor_mappings"))
        }
        weights_path = self._path(WEIGHTS_FILENAME)
        if os.path.exists(weights_path):
            with open(weights_path, "rb") as f:
                self.weights_blob = f.read()

    async def initialize(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        try:
            await asyncio.to_thread(self._load_sync)
        except (OSError, ValueError) as exc:
            raise StorageFailure(f"Could not load store from {self.data_dir}: {exc}") from exc
        logger.info(
            "[STORE] Loaded %d transactions, %d categories, %d vendor mappings from %s.",
            len(self.transactions),
            len(self.categories),
            len(self.vendor_mappings),
            self.data_dir,
        )

    def _serialize(self, table: str) -> bytes:
        rows: list[BaseModel] = list(getattr(self, table).values())
        payload = [row.model_dump(mode="json") for row in rows]
        return json.dumps(payload, indent=2).encode("utf-8")

    async def _persist(self, table: str) -> None:
        async with self._write_lock:
            await self._persist_locked(table)

    async def _persist_locked(self, table: str) -> None:
        try:
            if table == "classifier_weights":
                path = self._path(WEIGHTS_FILENAME)
                if self.weights_blob is None:
                    if os.path.exists(path):
                        await asyncio.to_thread(os.remove, path)
                    return
                await asyncio.to_thread(write_atomic, path, self.weights_blob)
                return
            data = self._serialize(table)
            await asyncio.to_thread(write_atomic, self._path(_TABLE_FILES[table]), data)
        except OSError as exc:
            logger.error("[STORE] Failed to persist %s: %s", table, exc)
            raise StorageFailure(f"Failed to persist {table}: {exc}") from exc
