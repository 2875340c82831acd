"""
Privacy gate for anything that would leave the device.

``sanitize_for_sync`` keeps an allow-list of fields; ``validate_network_payload``
is a second, independent check over the serialized payload. A payload is only
handed out when both agree it is clean.
"""

import json
import re
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from vault_categorizer.domain.errors import ErrorKind, Failure, failure
from vault_categorizer.logger import get_logger
from vault_categorizer.models import PayloadValidation, Transaction

logger = get_logger(__name__)

SYNCABLE_FIELDS = ("id", "date", "amount", "vendor", "category", "note", "created_at", "updated_at")
_FIELD_ALIASES = ("createdAt", "updatedAt")

SENSITIVE_FIELD_PATTERNS = (
    ("raw_text", re.compile(r"^raw_?text$", re.IGNORECASE)),
    ("embedding", re.compile(r"^embedding$", re.IGNORECASE)),
    ("query_embedding", re.compile(r"^query_?embedding$", re.IGNORECASE)),
    ("file_path", re.compile(r"^file_?path$", re.IGNORECASE)),
    ("file_size", re.compile(r"^file_?size$", re.IGNORECASE)),
    ("mime_type", re.compile(r"^mime_?type$", re.IGNORECASE)),
    ("confidence", re.compile(r"^confidence$", re.IGNORECASE)),
    ("ocr_output", re.compile(r"^ocr_?output$", re.IGNORECASE)),
)

PII_PATTERNS = (
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("card_number", re.compile(r"\b(?:\d[ -]?){12,18}\d\b")),
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("account_number", re.compile(r"\b\d{10,19}\b")),
    ("embedding_vector", re.compile(r"\[\s*-?\d*\.\d+\s*,\s*-?\d*\.\d+\s*,")),
    ("ocr_text", re.compile(r'"[^"]{2000,}"')),
)

_JSON_KEY = re.compile(r'"((?:[^"\\]|\\.)*)"\s*:')


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def sanitize_for_sync(transaction: Transaction | Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``transaction`` holding only the fields that may be synced."""
    if isinstance(transaction, Transaction):
        data = transaction.model_dump(mode="json")
    else:
        data = dict(transaction)

    allowed = (*SYNCABLE_FIELDS, *_FIELD_ALIASES)
    return {key: data[key] for key in allowed if key in data}


def validate_network_payload(payload: Any) -> PayloadValidation:
    """Violations name the kind of each hit, never the matched text."""
    text = json.dumps(payload, default=_json_default)
    violations: list[str] = []

    for key in _JSON_KEY.findall(text):
        for label, pattern in SENSITIVE_FIELD_PATTERNS:
            if pattern.match(key):
                violations.append(f"field:{label}")

    for label, pattern in PII_PATTERNS:
        violations.extend(label for _ in pattern.finditer(text))

    return PayloadValidation(safe=not violations, violations=violations)


def prepare_sync_payload(transactions: list[Transaction] | list[dict[str, Any]]) -> list[dict[str, Any]] | Failure:
    payload = [sanitize_for_sync(tx) for tx in transactions]

    violations: list[str] = []
    for item in payload:
        validation = validate_network_payload(item)
        violations.extend(validation.violations)

    if violations:
        labels = sorted(set(violations))
        logger.warning(
            "[SYNC] Payload discarded: %d privacy violations (%s).",
            len(violations),
            ", ".join(labels),
        )
        return failure(
            ErrorKind.SYNC_PRIVACY_VIOLATION,
            f"Sync payload failed privacy validation ({len(violations)} violations)",
            details=violations,
        )

    logger.info("[SYNC] Prepared %d transactions for sync.", len(payload))
    return payload
