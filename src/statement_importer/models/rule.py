"""Import rule data model."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from statement_importer.models.transaction import NormalizedTransaction
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum pattern length to prevent overly complex patterns
MAX_PATTERN_LENGTH = 500

# Patterns that can cause catastrophic backtracking (ReDoS)
# These are checked via substring matching for known dangerous patterns
DANGEROUS_PATTERN_SIGNATURES = [
    r'(\w+)+',   # Nested quantifiers on word chars
    r'(.*)*',    # Nested quantifiers on any chars
    r'(.+)+',    # Nested quantifiers on one-or-more
    r'([^"]+)+', # Nested quantifiers on negated char class
    r'(\s+)+',   # Nested quantifiers on whitespace
]

# Regex to detect nested quantifiers dynamically (catches (a+)+, ([a-z]+)+, etc.)
# Also catches {n,m} bounded quantifiers like (a+){2,}
_NESTED_QUANTIFIER_PATTERN = re.compile(
    r'\([^)]*[+*?][^)]*\)[+*?]|'        # Nested +, *, ? quantifiers
    r'\([^)]*[+*?][^)]*\)\{[0-9,]+\}'   # Nested with {n,m} bounded quantifier
)


def is_safe_pattern(pattern: str) -> tuple[bool, str]:
    """Check if regex pattern is safe from ReDoS attacks.

    Args:
        pattern: Regex pattern string to validate.

    Returns:
        Tuple of (is_safe, reason if unsafe).
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        return False, f"Pattern exceeds {MAX_PATTERN_LENGTH} character limit"

    if _NESTED_QUANTIFIER_PATTERN.search(pattern):
        return False, "Pattern contains dangerous nested quantifier"

    for dangerous in DANGEROUS_PATTERN_SIGNATURES:
        if dangerous in pattern:
            return False, "Pattern contains known dangerous signature"

    return True, ""


class MatchField(Enum):
    """Transaction field a rule pattern is tested against."""

    DESCRIPTION = "description"
    VENDOR = "vendor"
    REFERENCE = "reference"


class MatchType(Enum):
    """How a rule pattern is compared with the field value."""

    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"

    @classmethod
    def from_string(cls, value: str) -> "MatchType":
        """Parse a match type name, accepting "exact" as an alias of equals.

        Args:
            value: Match type name from configuration.

        Returns:
            The matching MatchType.

        Raises:
            ValueError: If the name is unknown.
        """
        normalized = value.strip().lower()
        if normalized == "exact":
            return cls.EQUALS
        return cls(normalized)


@dataclass
class ImportRule:
    """User rule that assigns a category and/or vendor to imported transactions.

    All comparisons are case-insensitive.

    Attributes:
        id: Unique identifier; lower ids win ties on priority.
        name: Human-readable rule name.
        pattern: Text or regex to look for.
        match_field: Field the pattern is tested against.
        match_type: How the pattern is compared.
        category_id: Category to assign on match.
        vendor_name: Vendor name to set on match (ignored when empty).
        priority: Rule priority (higher = evaluated first).
        is_active: Whether this rule is active.
    """

    id: str
    name: str
    pattern: str
    match_field: MatchField = MatchField.DESCRIPTION
    match_type: MatchType = MatchType.CONTAINS
    category_id: Optional[str] = None
    vendor_name: Optional[str] = None
    priority: int = 0
    is_active: bool = True

    # Compiled regex pattern (cached), None if rejected or not a regex rule
    _compiled: Optional[re.Pattern[str]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Compile regex patterns for efficiency."""
        self._compiled = None
        if self.match_type != MatchType.REGEX:
            return

        is_safe, reason = is_safe_pattern(self.pattern)
        if not is_safe:
            logger.warning(
                f"Rejecting unsafe regex pattern '{self.pattern}' in rule '{self.id}': {reason}"
            )
            return
        try:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"Invalid regex pattern '{self.pattern}' in rule '{self.id}': {e}")

    @property
    def sort_key(self) -> tuple[int, object]:
        """Ordering key: priority descending, then id ascending.

        Numeric ids compare numerically so that rule 2 precedes rule 10.
        """
        rule_id: object = int(self.id) if self.id.isdigit() else self.id
        return (-self.priority, (0, rule_id) if isinstance(rule_id, int) else (1, rule_id))

    def field_value(self, transaction: NormalizedTransaction) -> Optional[str]:
        """Return the transaction field this rule inspects.

        Args:
            transaction: Transaction to read from.

        Returns:
            The field value, or None when the transaction has none.
        """
        if self.match_field == MatchField.VENDOR:
            return transaction.vendor
        if self.match_field == MatchField.REFERENCE:
            return transaction.reference
        return transaction.description

    def matches_text(self, value: Optional[str]) -> bool:
        """Check a field value against this rule's pattern.

        Args:
            value: Field value; None or empty never matches.

        Returns:
            True if the value matches.
        """
        if not self.is_active or not value or not self.pattern:
            return False

        if self.match_type == MatchType.REGEX:
            return self._compiled is not None and self._compiled.search(value) is not None

        haystack = value.lower()
        needle = self.pattern.lower()
        if self.match_type == MatchType.EQUALS:
            return haystack == needle
        if self.match_type == MatchType.STARTS_WITH:
            return haystack.startswith(needle)
        if self.match_type == MatchType.ENDS_WITH:
            return haystack.endswith(needle)
        return needle in haystack

    def matches(self, transaction: NormalizedTransaction) -> bool:
        """Check if a transaction matches this rule.

        Args:
            transaction: Normalized transaction.

        Returns:
            True if the configured field matches the pattern.
        """
        return self.matches_text(self.field_value(transaction))

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ImportRule":
        """Create an ImportRule from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary containing rule data.

        Returns:
            A new ImportRule instance.

        Raises:
            KeyError: If id or pattern is missing.
            ValueError: If match_field or match_type is unknown.
        """
        vendor = data.get("vendor")
        category = data.get("category")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            pattern=str(data["pattern"]),
            match_field=MatchField(str(data.get("field", "description")).lower()),
            match_type=MatchType.from_string(str(data.get("match_type", "contains"))),
            category_id=str(category) if category is not None else None,
            vendor_name=str(vendor) if vendor is not None else None,
            priority=int(data.get("priority", 0)),  # type: ignore[arg-type]
            is_active=bool(data.get("is_active", True)),
        )

    def __repr__(self) -> str:
        return (
            f"ImportRule(id={self.id!r}, name={self.name!r}, "
            f"{self.match_field.value} {self.match_type.value} {self.pattern!r}, "
            f"priority={self.priority})"
        )
