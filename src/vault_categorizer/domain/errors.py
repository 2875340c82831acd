from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    MODEL_NOT_READY = "model_not_ready"
    TRAINING_INSUFFICIENT_DATA = "training_insufficient_data"
    TRAINING_IN_PROGRESS = "training_in_progress"
    EMBEDDING_PROVIDER_FAILURE = "embedding_provider_failure"
    STORAGE_FAILURE = "storage_failure"
    SYNC_PRIVACY_VIOLATION = "sync_privacy_violation"


_UNRECOVERABLE = {ErrorKind.SYNC_PRIVACY_VIOLATION}


class Failure(BaseModel):
    """Outcome of an operation that did not produce a result.

    Callers branch on ``kind``; ``recoverable`` tells them whether retrying
    later (after training, after more labels, after the store comes back)
    can succeed.
    """

    kind: ErrorKind
    message: str
    recoverable: bool = True
    details: list[str] = []


def failure(
    kind: ErrorKind,
    message: str,
    *,
    recoverable: bool | None = None,
    details: list[str] | None = None,
) -> Failure:
    if recoverable is None:
        recoverable = kind not in _UNRECOVERABLE
    return Failure(kind=kind, message=message, recoverable=recoverable, details=details or [])


class CoreError(Exception):
    """Raised by store and embedding collaborators; carries the tagged failure."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure

    @property
    def kind(self) -> ErrorKind:
        return self.failure.kind

    @classmethod
    def of(cls, kind: ErrorKind, message: str, *, recoverable: bool | None = None) -> "CoreError":
        return cls(failure(kind, message, recoverable=recoverable))


class StorageFailure(CoreError):
    def __init__(self, message: str, *, recoverable: bool = True) -> None:
        super().__init__(failure(ErrorKind.STORAGE_FAILURE, message, recoverable=recoverable))


class EmbeddingProviderFailure(CoreError):
    def __init__(self, message: str, *, recoverable: bool = True) -> None:
        super().__init__(failure(ErrorKind.EMBEDDING_PROVIDER_FAILURE, message, recoverable=recoverable))
