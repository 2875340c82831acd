from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from vault_categorizer.api.dependencies import get_store
from vault_categorizer.api.errors import failure_to_http
from vault_categorizer.api.schemas import SyncRequest
from vault_categorizer.domain.errors import Failure
from vault_categorizer.services.sync import prepare_sync_payload
from vault_categorizer.storage.base import LocalStore

router = APIRouter(prefix="/sync")


@router.post("/prepare")
async def prepare_sync(
    req: SyncRequest,
    store: Annotated[LocalStore, Depends(get_store)],
) -> dict[str, Any]:
    """Return the sanitized payload to the caller. Nothing is sent anywhere."""
    if req.transactions is not None:
        transactions: list = req.transactions
    elif req.transaction_ids is not None:
        transactions = []
        for transaction_id in req.transaction_ids:
            transaction = await store.get_transaction(transaction_id)
            if transaction is None:
                raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
            transactions.append(transaction)
    else:
        transactions = await store.list_transactions()

    result = prepare_sync_payload(transactions)
    if isinstance(result, Failure):
        raise failure_to_http(result)
    return {"status": "ready", "count": len(result), "transactions": result}
