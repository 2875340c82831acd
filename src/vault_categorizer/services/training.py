from typing import Any

from vault_categorizer.domain.errors import ErrorKind, Failure, StorageFailure
from vault_categorizer.domain.session import SessionState
from vault_categorizer.logger import get_logger
from vault_categorizer.manager import AutoCategorizer
from vault_categorizer.models import TrainingStats

logger = get_logger(__name__)


class TrainingManager:
    def __init__(self, categorizer: AutoCategorizer) -> None:
        self.categorizer = categorizer
        self.status: dict[str, Any] = {"stage": "idle"}

    @property
    def classifier(self):
        return self.categorizer.classifier

    def get_status(self) -> dict[str, Any]:
        status = dict(self.status)
        status["active"] = self.classifier.is_training
        status["stats"] = self.classifier.stats().model_dump(mode="json")
        return status

    def _record(self, result: TrainingStats | Failure) -> None:
        self.status.clear()
        if isinstance(result, Failure):
            self.status.update({"stage": "error", "kind": result.kind.value, "message": result.message})
        else:
            self.status.update({"stage": "done", **result.model_dump()})

    async def retrain(self) -> TrainingStats | Failure:
        self.status.clear()
        self.status.update({"stage": "running"})
        result = await self.classifier.train()
        if isinstance(result, Failure) and result.kind is ErrorKind.TRAINING_IN_PROGRESS:
            # Leave the in-flight run's status alone.
            self.status.update({"stage": "running"})
            return result
        self._record(result)
        return result

    async def ensure_trained(self, session: SessionState) -> TrainingStats | Failure | None:
        """
        Make a model available for this session.

        Saved weights are preferred. A fresh training run happens at most once
        per session, and only when nothing was saved.
        """
        try:
            if self.classifier.is_trained or await self.classifier.load_weights():
                return None
        except StorageFailure as exc:
            logger.error("[TRAIN] Could not read saved weights: %s", exc)
            return exc.failure

        if session.classifier_trained:
            return None

        logger.info("[TRAIN] No saved classifier weights; training from stored transactions.")
        result = await self.retrain()
        if isinstance(result, TrainingStats):
            session.classifier_trained = True
        else:
            logger.info("[TRAIN] Startup training skipped: %s", result.message)
        return result
