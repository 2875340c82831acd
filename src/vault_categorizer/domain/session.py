from dataclasses import dataclass, field
from datetime import datetime

from vault_categorizer.models import utcnow


@dataclass
class SessionState:
    """Per-process markers owned by the host; a fresh instance means a fresh session."""

    started_at: datetime = field(default_factory=utcnow)
    classifier_trained: bool = False
    backfill_done: bool = False

    def reset(self) -> None:
        self.classifier_trained = False
        self.backfill_done = False
