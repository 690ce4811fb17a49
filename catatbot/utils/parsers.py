"""
Parsers for free-text chat input: amounts, descriptions and edit commands.

Amounts arrive as whatever the user typed ("500000", "500.000", "Rp 1,250,000",
"1.234.567,50") and are stored unparsed in the session. Every consumer goes
through parse_amount() so there is exactly one place that turns text into a
Decimal.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from catatbot.config import (
    EDIT_FIELD_MAP,
    MAX_AMOUNT_DECIMAL_PLACES,
    MAX_DESCRIPTION_LENGTH,
    MAX_INPUT_AMOUNT,
)
from catatbot.database.models import EditField
from catatbot.errors import ValidationError

logger = logging.getLogger(__name__)

_CURRENCY_PREFIX = re.compile(r"^(?:rp\.?|idr)\s*", re.IGNORECASE)
_ALLOWED = re.compile(r"^[\d.,]+$")

# Digits grouped in threes by the given separator: "500.000", "1,234,567"
_DOT_GROUPED = re.compile(r"^\d{1,3}(?:\.\d{3})+$")
_COMMA_GROUPED = re.compile(r"^\d{1,3}(?:,\d{3})+$")
_PLAIN_DECIMAL = re.compile(r"^\d+(?:[.,]\d+)?$")

# "<amount> <description>" where the description starts with a non-digit
_AMOUNT_WITH_NOTE = re.compile(
    r"^(?P<amount>(?:rp\.?\s*|idr\s*)?[\d.,]+(?: \d{3})*)\s+(?P<note>[^\d\s].*)$",
    re.IGNORECASE | re.DOTALL,
)


def parse_amount(text: str) -> Decimal:
    """Parse a user-typed amount into an exact Decimal.

    Thousands separators are stripped; whichever of `.`/`,` is not used for
    digit grouping is the decimal point. Raises ValidationError when the text
    is not a plain number.
    """
    if text is None:
        raise ValidationError("Amount is required")

    cleaned = _CURRENCY_PREFIX.sub("", text.strip())
    cleaned = cleaned.replace(" ", "").replace("\u00a0", "")
    if not cleaned or not _ALLOWED.match(cleaned):
        raise ValidationError(f"Not a number: {text!r}")

    normalized = _normalize_separators(cleaned)
    if normalized is None:
        raise ValidationError(f"Ambiguous number format: {text!r}")

    try:
        amount = Decimal(normalized)
    except InvalidOperation as e:
        raise ValidationError(f"Not a number: {text!r}") from e
    logger.debug("Amount parsing: raw=%r → normalized=%r → decimal=%s", text, normalized, amount)
    return amount


def _normalize_separators(cleaned: str) -> Optional[str]:
    has_dot = "." in cleaned
    has_comma = "," in cleaned

    if not has_dot and not has_comma:
        return cleaned

    if has_dot and has_comma:
        # The separator appearing last is the decimal point.
        decimal_sep = "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
        group_sep = "," if decimal_sep == "." else "."
        integer_part, _, fraction = cleaned.rpartition(decimal_sep)
        grouped = _DOT_GROUPED if group_sep == "." else _COMMA_GROUPED
        if not fraction.isdigit() or not grouped.match(integer_part):
            return None
        return integer_part.replace(group_sep, "") + "." + fraction

    if _DOT_GROUPED.match(cleaned):
        return cleaned.replace(".", "")
    if _COMMA_GROUPED.match(cleaned):
        return cleaned.replace(",", "")
    if _PLAIN_DECIMAL.match(cleaned):
        return cleaned.replace(",", ".")
    return None


def validate_amount(text: str) -> Decimal:
    """Parse and range-check an amount: 0 < amount <= MAX_INPUT_AMOUNT.

    At most MAX_AMOUNT_DECIMAL_PLACES decimals are accepted so the stored
    value is exactly the parsed one.
    """
    amount = parse_amount(text)
    if amount.as_tuple().exponent < -MAX_AMOUNT_DECIMAL_PLACES:
        raise ValidationError(f"More than {MAX_AMOUNT_DECIMAL_PLACES} decimal places")
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if amount > MAX_INPUT_AMOUNT:
        raise ValidationError(f"Amount exceeds {MAX_INPUT_AMOUNT}")
    return amount


def split_amount_and_description(text: str) -> tuple[str, Optional[str]]:
    """Split "50000 makan siang" into ("50000", "makan siang").

    Text without a trailing note comes back unchanged with None.
    """
    stripped = text.strip()
    match = _AMOUNT_WITH_NOTE.match(stripped)
    if not match:
        return stripped, None
    return match.group("amount").strip(), match.group("note").strip()


def validate_description(text: str) -> str:
    """Trim and length-check a free-text description."""
    description = (text or "").strip()
    if not description:
        raise ValidationError("Description cannot be empty")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description longer than {MAX_DESCRIPTION_LENGTH} characters")
    return description


def normalize_command(text: str) -> str:
    """Lower-case and collapse whitespace for keyword matching."""
    return " ".join((text or "").lower().split())


def parse_edit_command(command: str) -> Optional[EditField]:
    """Return the field named by "edit <field>", or None.

    `command` must already be normalized.
    """
    if not command.startswith("edit "):
        return None
    target = command[len("edit "):].strip()
    field_name = EDIT_FIELD_MAP.get(target)
    return EditField(field_name) if field_name else None


def parse_transaction_id(args: list[str]) -> Optional[str]:
    """Extract the transaction id from command arguments (/approve <id>)."""
    if not args:
        return None
    candidate = args[0].strip()
    return candidate or None
