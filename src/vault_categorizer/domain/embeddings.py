from collections.abc import Mapping, Sequence

from vault_categorizer.models import Transaction

DEFAULT_EMBEDDING_DIM = 384

# Raw text shorter than this is usually an OCR fragment and embeds worse than the structured fields.
MIN_RAW_TEXT_LENGTH = 10

_CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "INR": "₹",
    "JPY": "¥",
}


def placeholder_embedding(dim: int = DEFAULT_EMBEDDING_DIM) -> list[float]:
    return [0.0] * dim


def is_placeholder(embedding: Sequence[float] | None, dim: int | None = None) -> bool:
    """True when the vector is missing, all zeros, or (if ``dim`` is given) the wrong length."""
    if embedding is None or len(embedding) == 0:
        return True
    if dim is not None and len(embedding) != dim:
        return True
    return not any(value != 0 for value in embedding)


def has_usable_text(transaction: Transaction) -> bool:
    for value in (transaction.vendor, transaction.raw_text, transaction.note):
        if value and value.strip():
            return True
    return False


def currency_symbol(currency: str | None) -> str:
    code = (currency or "USD").upper()
    return _CURRENCY_SYMBOLS.get(code, f"{code} ")


def build_embedding_text(
    transaction: Transaction,
    category_names: Mapping[str, str] | None = None,
) -> str:
    raw_text = (transaction.raw_text or "").strip()
    if len(raw_text) > MIN_RAW_TEXT_LENGTH:
        return raw_text

    category_names = category_names or {}
    amount = f"{currency_symbol(transaction.currency)}{abs(transaction.amount):.2f}"
    day = transaction.date
    date_text = f"{day:%B} {day.day}, {day.year}"
    category_name = category_names.get(transaction.category or "", "")
    vendor = transaction.vendor.strip()
    note = f". {transaction.note.strip()}" if transaction.note and transaction.note.strip() else ""

    if transaction.amount < 0:
        vendor_part = f"from {vendor}" if vendor else "received"
        category_part = f" categorized as {category_name}" if category_name else ""
        return f"Income credit of {amount} {vendor_part} on {date_text}{category_part}{note}"

    vendor_part = f"at {vendor} " if vendor else ""
    category_part = f" for {category_name}" if category_name else ""
    return f"Expense payment of {amount} {vendor_part}on {date_text}{category_part}{note}"
