import asyncio
import pickle
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import numpy as np
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import log_loss

from vault_categorizer.domain.embeddings import DEFAULT_EMBEDDING_DIM, is_placeholder
from vault_categorizer.domain.errors import ErrorKind, Failure, StorageFailure, failure
from vault_categorizer.logger import get_logger
from vault_categorizer.models import (
    ClassifierMatch,
    ClassifierStats,
    Prediction,
    TrainingStats,
    TransactionContext,
    utcnow,
)
from vault_categorizer.storage.base import LocalStore

from .base import Classifier

logger = get_logger(__name__)

WEIGHTS_VERSION = 1
DEFAULT_MIN_SAMPLES = 20
LEARNING_RATE = 0.005
L2_PENALTY = 0.001
INCREMENTAL_EPOCHS = 3
TOP_K = 3


def _frozen(values, ndim: int) -> np.ndarray:
    array = np.array(values, dtype=np.float64)
    if array.ndim != ndim:
        raise ValueError(f"Expected a {ndim}-d array, got {array.ndim}-d")
    array.setflags(write=False)
    return array


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


@dataclass(frozen=True)
class WeightsSnapshot:
    """One trained state of the classifier. Never mutated; updates build a new snapshot."""

    class_labels: tuple[str, ...]
    weights: np.ndarray  # (num_classes, dim)
    biases: np.ndarray  # (num_classes,)
    training_samples: int
    last_trained: datetime
    version: int = WEIGHTS_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "class_labels", tuple(self.class_labels))
        object.__setattr__(self, "weights", _frozen(self.weights, 2))
        object.__setattr__(self, "biases", _frozen(self.biases, 1))
        if self.weights.shape[0] != len(self.class_labels) or self.biases.shape[0] != len(self.class_labels):
            raise ValueError("Weights, biases and class labels disagree on the number of classes")

    @property
    def num_classes(self) -> int:
        return len(self.class_labels)

    @property
    def dim(self) -> int:
        return int(self.weights.shape[1])

    def probabilities(self, embedding: np.ndarray) -> np.ndarray:
        return softmax(self.weights @ embedding + self.biases)

    def to_blob(self) -> bytes:
        return pickle.dumps(
            {
                "version": self.version,
                "class_labels": list(self.class_labels),
                "weights": np.asarray(self.weights),
                "biases": np.asarray(self.biases),
                "training_samples": self.training_samples,
                "last_trained": self.last_trained,
            }
        )

    @classmethod
    def from_blob(cls, blob: bytes) -> "WeightsSnapshot":
        data = pickle.loads(blob)
        if not isinstance(data, dict):
            raise ValueError("Weights blob does not hold a mapping")
        if data.get("version") != WEIGHTS_VERSION:
            raise ValueError(f"Unsupported weights version: {data.get('version')!r}")
        return cls(
            class_labels=tuple(data["class_labels"]),
            weights=data["weights"],
            biases=data["biases"],
            training_samples=int(data["training_samples"]),
            last_trained=data["last_trained"],
        )


def _fit(features: np.ndarray, labels: np.ndarray) -> tuple[list[str], np.ndarray, np.ndarray, float]:
    model = LogisticRegression(C=1.0, max_iter=500)
    model.fit(features, labels)
    classes = [str(label) for label in model.classes_]
    loss = float(log_loss(labels, model.predict_proba(features), labels=model.classes_))

    coef = np.asarray(model.coef_, dtype=np.float64)
    intercept = np.asarray(model.intercept_, dtype=np.float64)
    if len(classes) == 2:
        # Binary fits return a single row; split it so the softmax reproduces the sigmoid.
        coef = np.vstack([-coef[0] / 2, coef[0] / 2])
        intercept = np.array([-intercept[0] / 2, intercept[0] / 2])
    return classes, coef, intercept, loss


class LocalClassifier(Classifier):
    """
    Multinomial logistic regression over transaction embeddings.

    The live model is a single immutable ``WeightsSnapshot``. Training builds
    a new snapshot, persists it through the store, and only then swaps it in,
    so readers always see either the old or the new weights.
    """

    def __init__(
        self,
        store: LocalStore,
        dim: int = DEFAULT_EMBEDDING_DIM,
        min_samples: int = DEFAULT_MIN_SAMPLES,
    ):
        self.store = store
        self.dim = dim
        self.min_samples = min_samples
        self.snapshot: WeightsSnapshot | None = None
        self._train_lock = asyncio.Lock()

    @property
    def is_trained(self) -> bool:
        return self.snapshot is not None

    @property
    def is_training(self) -> bool:
        return self._train_lock.locked()

    # -- persistence -----------------------------------------------------

    async def load_weights(self) -> bool:
        blob = await self.store.load_weights_blob()
        if blob is None:
            return False
        try:
            snapshot = WeightsSnapshot.from_blob(blob)
        except (pickle.UnpicklingError, EOFError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("[TRAIN] Stored classifier weights are unreadable (%s); ignoring them.", exc)
            return False
        if snapshot.dim != self.dim:
            logger.warning(
                "[TRAIN] Stored classifier weights have dimension %d, expected %d; ignoring them.",
                snapshot.dim,
                self.dim,
            )
            return False

        self.snapshot = snapshot
        logger.info(
            "[TRAIN] Loaded classifier weights: %d classes, %d samples.",
            snapshot.num_classes,
            snapshot.training_samples,
        )
        return True

    async def save_weights(self) -> None:
        if self.snapshot is None:
            return
        await self.store.replace_weights_blob(self.snapshot.to_blob())

    async def _commit(self, snapshot: WeightsSnapshot) -> None:
        await self.store.replace_weights_blob(snapshot.to_blob())
        self.snapshot = snapshot

    async def reset(self) -> None:
        await self.store.delete_weights_blob()
        self.snapshot = None
        logger.info("[TRAIN] Classifier weights cleared.")

    # -- training --------------------------------------------------------

    async def train(self) -> TrainingStats | Failure:
        if self._train_lock.locked():
            return failure(ErrorKind.TRAINING_IN_PROGRESS, "A training run is already in progress")
        async with self._train_lock:
            try:
                return await self._train_locked()
            except StorageFailure as exc:
                logger.error("[TRAIN] Training aborted by a storage failure: %s", exc)
                return exc.failure

    async def _train_locked(self) -> TrainingStats | Failure:
        transactions = await self.store.list_transactions()
        samples = [
            (tx.embedding, tx.category)
            for tx in transactions
            if tx.category and not is_placeholder(tx.embedding, self.dim)
        ]

        if len(samples) < self.min_samples:
            logger.info("[TRAIN] Not enough samples to train (%d/%d).", len(samples), self.min_samples)
            return failure(
                ErrorKind.TRAINING_INSUFFICIENT_DATA,
                f"Need at least {self.min_samples} labelled transactions with embeddings, found {len(samples)}",
            )

        distinct = {label for _, label in samples}
        if len(distinct) < 2:
            logger.info("[TRAIN] Need at least 2 categories to train, found %d.", len(distinct))
            return failure(
                ErrorKind.TRAINING_INSUFFICIENT_DATA,
                f"Need at least 2 categories to train, found {len(distinct)}",
            )

        features = np.array([embedding for embedding, _ in samples], dtype=np.float64)
        labels = np.array([label for _, label in samples])

        logger.info("[TRAIN] Training on %d samples across %d categories...", len(samples), len(distinct))
        classes, coef, intercept, loss = await asyncio.to_thread(_fit, features, labels)

        snapshot = WeightsSnapshot(
            class_labels=tuple(classes),
            weights=coef,
            biases=intercept,
            training_samples=len(samples),
            last_trained=utcnow(),
        )
        await self._commit(snapshot)
        logger.info("[TRAIN] Training complete: %d classes, loss %.4f.", snapshot.num_classes, loss)
        return TrainingStats(num_classes=snapshot.num_classes, num_samples=len(samples), final_loss=loss)

    async def update(self, embedding: Sequence[float] | None, category_id: str) -> TrainingStats | Failure:
        """Nudge the live weights towards one new labelled example."""
        if is_placeholder(embedding, self.dim):
            return failure(ErrorKind.TRAINING_INSUFFICIENT_DATA, "Cannot learn from a placeholder embedding")

        snapshot = self.snapshot
        if snapshot is None or category_id not in snapshot.class_labels:
            logger.info("[TRAIN] Incremental update needs a full retrain (new model or new category).")
            return await self.train()
        if self._train_lock.locked():
            return failure(ErrorKind.TRAINING_IN_PROGRESS, "A training run is already in progress")

        async with self._train_lock:
            x = np.asarray(embedding, dtype=np.float64)
            target = np.zeros(snapshot.num_classes)
            target[snapshot.class_labels.index(category_id)] = 1.0

            weights = np.array(snapshot.weights)
            biases = np.array(snapshot.biases)
            for _ in range(INCREMENTAL_EPOCHS):
                error = softmax(weights @ x + biases) - target
                weights -= LEARNING_RATE * (np.outer(error, x) + L2_PENALTY * weights)
                biases -= LEARNING_RATE * error

            probs = softmax(weights @ x + biases)
            loss = float(-np.log(max(float(probs[target.argmax()]), 1e-15)))
            updated = WeightsSnapshot(
                class_labels=snapshot.class_labels,
                weights=weights,
                biases=biases,
                training_samples=snapshot.training_samples + 1,
                last_trained=utcnow(),
            )
            try:
                await self._commit(updated)
            except StorageFailure as exc:
                logger.error("[TRAIN] Could not persist incremental update: %s", exc)
                return exc.failure

        logger.debug("[TRAIN] Incremental update applied (%d samples).", updated.training_samples)
        return TrainingStats(
            num_classes=updated.num_classes,
            num_samples=updated.training_samples,
            final_loss=loss,
            incremental=True,
        )

    # -- inference -------------------------------------------------------

    def predict_proba(self, embedding: Sequence[float] | None) -> dict[str, float] | None:
        snapshot = self.snapshot
        if snapshot is None or is_placeholder(embedding, self.dim):
            return None
        probs = snapshot.probabilities(np.asarray(embedding, dtype=np.float64))
        return {label: float(p) for label, p in zip(snapshot.class_labels, probs)}

    def predict(self, embedding: Sequence[float] | None) -> Prediction | None:
        snapshot = self.snapshot
        if snapshot is None or is_placeholder(embedding, self.dim):
            return None

        probs = snapshot.probabilities(np.asarray(embedding, dtype=np.float64))
        # Stable sort keeps the lower category id first on equal probability.
        order = np.argsort(-probs, kind="stable")
        top_k = [(snapshot.class_labels[i], float(probs[i])) for i in order[:TOP_K]]
        best_id, best_prob = top_k[0]
        return Prediction(category_id=best_id, confidence=best_prob, top_k=top_k)

    def classify(self, vendor: str, context: TransactionContext | None = None) -> ClassifierMatch | None:
        if context is None or context.embedding is None:
            return None
        prediction = self.predict(context.embedding)
        if prediction is None:
            return None
        return ClassifierMatch(
            category_id=prediction.category_id,
            confidence=prediction.confidence,
            top_k=prediction.top_k,
        )

    def stats(self) -> ClassifierStats:
        snapshot = self.snapshot
        if snapshot is None:
            return ClassifierStats(is_trained=False)
        return ClassifierStats(
            is_trained=True,
            num_classes=snapshot.num_classes,
            training_samples=snapshot.training_samples,
            last_trained=snapshot.last_trained,
        )
