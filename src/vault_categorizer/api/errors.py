from fastapi import HTTPException

from vault_categorizer.domain.errors import ErrorKind, Failure

_STATUS_CODES = {
    ErrorKind.MODEL_NOT_READY: 409,
    ErrorKind.TRAINING_INSUFFICIENT_DATA: 409,
    ErrorKind.TRAINING_IN_PROGRESS: 409,
    ErrorKind.SYNC_PRIVACY_VIOLATION: 422,
    ErrorKind.EMBEDDING_PROVIDER_FAILURE: 503,
    ErrorKind.STORAGE_FAILURE: 503,
}


def failure_to_http(result: Failure) -> HTTPException:
    # Violation details carry the matched values; they are not echoed back.
    return HTTPException(
        status_code=_STATUS_CODES.get(result.kind, 500),
        detail={"kind": result.kind.value, "message": result.message, "recoverable": result.recoverable},
    )
