from abc import ABC, abstractmethod

from vault_categorizer.models import Match, TransactionContext


class Classifier(ABC):
    @abstractmethod
    def classify(self, vendor: str, context: TransactionContext | None = None) -> Match | None:
        """Attempt to categorize the vendor."""
        pass
