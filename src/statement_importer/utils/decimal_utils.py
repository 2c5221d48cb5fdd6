"""Decimal utilities for statement amounts.

All monetary values use Decimal to avoid floating-point precision issues.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


# Currency symbols to strip
CURRENCY_SYMBOLS = {"$", "€", "£", "¥", "₹", "₽", "₩", "₿"}

# Regex for parentheses-enclosed negatives: ($1,234.56) or (1234.56)
PARENS_NEGATIVE_PATTERN = re.compile(r"^\s*\(\s*([^)]+)\s*\)\s*$")

# Regex for trailing DR/CR indicators
DR_CR_PATTERN = re.compile(r"\s*(DR|CR|D|C)\s*$", re.IGNORECASE)

# QIF amounts keep only digits, separators and the sign
QIF_AMOUNT_NOISE = re.compile(r"[^0-9.\-,]")

# 1.234,56 / -12.345.678,90 / 1.234 (European grouping)
EUROPEAN_GROUPING = re.compile(r"^-?\d{1,3}(\.\d{3})*(,\d{2})?$")

CENTS = Decimal("0.01")


def parse_amount(raw_amount: str, locale: str = "US") -> tuple[Decimal, bool]:
    """Parse a raw amount string into a Decimal.

    Handles various formats:
    - Standard: 1234.56, -1234.56
    - With currency: $1,234.56, -$1,234.56
    - Parentheses for negative: ($1,234.56), (1234.56)
    - European format: 1.234,56 (thousand separator is period)
    - DR/CR suffix: 1234.56 DR, 1234.56 CR

    Ambiguous formats like "1,234" are interpreted based on locale:
    - US (default): "1,234" = 1234 (comma is thousands separator)
    - EU: "1,234" = 1.234 (comma is decimal separator)

    Args:
        raw_amount: The raw amount string to parse.
        locale: Locale hint for ambiguous formats ("US" or "EU"). Default: "US".

    Returns:
        Tuple of (absolute amount as Decimal, is_negative flag).

    Raises:
        ValueError: If the amount cannot be parsed.
    """
    if not raw_amount:
        raise ValueError("Empty amount string")

    original = raw_amount
    amount_str = raw_amount.strip()
    is_negative = False

    parens_match = PARENS_NEGATIVE_PATTERN.match(amount_str)
    if parens_match:
        amount_str = parens_match.group(1).strip()
        is_negative = True

    if amount_str.startswith("-"):
        is_negative = True
        amount_str = amount_str[1:].strip()
    elif amount_str.startswith("+"):
        amount_str = amount_str[1:].strip()

    dr_cr_match = DR_CR_PATTERN.search(amount_str)
    if dr_cr_match:
        indicator = dr_cr_match.group(1).upper()
        if indicator in ("DR", "D"):
            is_negative = True
        amount_str = DR_CR_PATTERN.sub("", amount_str).strip()

    for symbol in CURRENCY_SYMBOLS:
        amount_str = amount_str.replace(symbol, "")
    amount_str = amount_str.strip()

    # Currency symbol before the sign: $-12.00
    if amount_str.startswith("-"):
        is_negative = True
        amount_str = amount_str[1:].strip()

    if "," in amount_str and "." in amount_str:
        if re.search(r",\d{1,4}$", amount_str) and "." in amount_str[:-3]:
            # European: 1.234,56 -> 1234.56
            amount_str = amount_str.replace(".", "").replace(",", ".")
        else:
            # US format: 1,234.56 -> 1234.56
            amount_str = amount_str.replace(",", "")
    elif "," in amount_str:
        if re.search(r",\d{1,2}$", amount_str):
            # European decimal: 1234,56 -> 1234.56
            amount_str = amount_str.replace(",", ".")
        elif re.search(r",\d{3,4}$", amount_str) and locale == "EU":
            amount_str = amount_str.replace(",", ".")
        else:
            amount_str = amount_str.replace(",", "")

    amount_str = amount_str.replace(" ", "")

    try:
        amount = Decimal(amount_str)
    except InvalidOperation as e:
        raise ValueError(f"Cannot parse amount '{original}': {e}") from e

    if not amount.is_finite():
        raise ValueError(f"Cannot parse amount '{original}': not a finite number")

    return abs(amount), is_negative


def parse_signed_amount(raw_amount: str, locale: str = "US") -> Decimal:
    """Parse a raw amount string and return it with its sign applied.

    Args:
        raw_amount: The raw amount string to parse.
        locale: Locale hint for ambiguous formats.

    Returns:
        Signed Decimal amount.

    Raises:
        ValueError: If the amount cannot be parsed.
    """
    amount, is_negative = parse_amount(raw_amount, locale)
    return -amount if is_negative else amount


def parse_qif_amount(raw_amount: str) -> Decimal:
    """Parse a QIF amount field.

    Everything except digits, '.', '-' and ',' is stripped. If what remains
    looks like European grouping (1.234,56) the separator roles are swapped,
    otherwise commas are dropped as thousands separators. Note that a value
    such as "1.234" also matches the European pattern and reads as 1234.

    Args:
        raw_amount: Amount text as found after the QIF field code.

    Returns:
        Signed Decimal amount.

    Raises:
        ValueError: If nothing numeric remains after cleanup.
    """
    cleaned = QIF_AMOUNT_NOISE.sub("", raw_amount or "")

    if EUROPEAN_GROUPING.match(cleaned):
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"Cannot parse QIF amount '{raw_amount}'") from e

    if not amount.is_finite():
        raise ValueError(f"Cannot parse QIF amount '{raw_amount}'")
    return amount


def parse_ofx_amount(raw_amount: str) -> Decimal:
    """Parse an OFX TRNAMT/BALAMT value.

    OFX mandates a plain signed decimal, but some banks emit a comma as the
    decimal separator; those are handed to the general parser.

    Args:
        raw_amount: Tag value text.

    Returns:
        Signed Decimal amount.

    Raises:
        ValueError: If the amount cannot be parsed.
    """
    text = raw_amount.strip()
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return parse_signed_amount(text)
    if not amount.is_finite():
        raise ValueError(f"Cannot parse OFX amount '{raw_amount}'")
    return amount


def format_currency(
    amount: Decimal,
    decimal_places: int = 2,
    include_sign: bool = True,
) -> str:
    """Format a Decimal amount for display.

    Args:
        amount: The amount to format.
        decimal_places: Number of decimal places (default 2).
        include_sign: Whether to include sign for negative amounts.

    Returns:
        Formatted string like "-1234.56" or "1234.56".
    """
    quantize_str = "0." + "0" * decimal_places
    rounded = amount.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)

    if include_sign and rounded < 0:
        return str(rounded)
    return str(abs(rounded))


def amount_key(amount: Decimal) -> str:
    """Return a stable text form of an amount for hashing.

    Args:
        amount: Amount to render.

    Returns:
        Amount quantized to cents, with -0 folded to 0.
    """
    normalized = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if normalized == 0:
        normalized = Decimal("0.00")
    return str(normalized)
