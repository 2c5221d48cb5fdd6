"""Applies user import rules to normalized transactions."""

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from statement_importer.models.rule import ImportRule
from statement_importer.models.transaction import AppliedRule, NormalizedTransaction
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RulePreview:
    """A transaction that a rule would change."""

    index: int
    transaction: NormalizedTransaction
    rule: ImportRule

    @property
    def category_id(self) -> Optional[str]:
        """Category the rule would assign."""
        return self.rule.category_id

    @property
    def vendor_name(self) -> Optional[str]:
        """Vendor the rule would set."""
        return self.rule.vendor_name or None


@dataclass
class RuleMatchStatistics:
    """Match counts of a rule set over a batch of transactions.

    Attributes:
        total: Number of transactions examined.
        matched: Transactions with a matching rule.
        unmatched: Transactions without one.
        match_rate: matched / total, 0.0 for an empty batch.
        rule_usage: Rule id -> number of transactions it won.
    """

    total: int = 0
    matched: int = 0
    unmatched: int = 0
    match_rate: float = 0.0
    rule_usage: dict[str, int] = field(default_factory=dict)


class ImportRuleApplicator:
    """Assigns category and vendor to transactions from the first matching rule.

    Active rules are evaluated by priority (highest first), ties broken by
    lowest rule id. Later rules are not consulted once one matches.
    """

    def __init__(self, rules: Iterable[ImportRule]):
        """Initialize applicator with a rule set.

        Args:
            rules: Import rules in any order; inactive rules are dropped.
        """
        self.rules = sorted((r for r in rules if r.is_active), key=lambda r: r.sort_key)
        logger.debug(f"Loaded {len(self.rules)} active import rules")

    def find_matching_rule(self, transaction: NormalizedTransaction) -> Optional[ImportRule]:
        """Find the first rule matching a transaction.

        Args:
            transaction: Transaction to match.

        Returns:
            The winning rule, or None.
        """
        for rule in self.rules:
            if rule.matches(transaction):
                logger.debug(
                    f"Rule {rule.id} matched for {transaction.description!r}: "
                    f"category={rule.category_id}, vendor={rule.vendor_name}"
                )
                return rule
        return None

    def apply(self, transaction: NormalizedTransaction) -> NormalizedTransaction:
        """Apply the first matching rule to a transaction.

        A transaction that already carries an applied rule is returned
        unchanged, so rules are applied at most once.

        Args:
            transaction: Transaction to categorize.

        Returns:
            A copy with category, vendor, and applied_rule set, or the same
            transaction when no rule matches.
        """
        if transaction.applied_rule is not None:
            return transaction

        rule = self.find_matching_rule(transaction)
        if rule is None:
            return transaction

        changes: dict[str, object] = {"applied_rule": AppliedRule(id=rule.id, name=rule.name)}
        if rule.category_id:
            changes["category_id"] = rule.category_id
        if rule.vendor_name and rule.vendor_name.strip():
            changes["vendor"] = rule.vendor_name.strip()
        return replace(transaction, **changes)

    def apply_many(self, transactions: Iterable[NormalizedTransaction]) -> list[NormalizedTransaction]:
        """Apply rules to a batch of transactions.

        Args:
            transactions: Transactions to categorize.

        Returns:
            New list in the same order.
        """
        result = [self.apply(txn) for txn in transactions]
        matched = sum(1 for txn in result if txn.applied_rule is not None)
        logger.info(
            f"Applied import rules: {matched} matched, {len(result) - matched} unmatched"
        )
        return result

    def preview(self, transactions: Iterable[NormalizedTransaction]) -> list[RulePreview]:
        """List which rule would apply to each transaction, without applying it.

        Args:
            transactions: Transactions to check.

        Returns:
            One RulePreview per matched transaction, in input order.
        """
        previews = []
        for index, txn in enumerate(transactions):
            rule = self.find_matching_rule(txn)
            if rule is not None:
                previews.append(RulePreview(index=index, transaction=txn, rule=rule))
        return previews

    def get_match_statistics(
        self,
        transactions: Iterable[NormalizedTransaction],
    ) -> RuleMatchStatistics:
        """Count how many transactions each rule would win.

        Args:
            transactions: Transactions to check.

        Returns:
            RuleMatchStatistics for the batch.
        """
        stats = RuleMatchStatistics()
        for txn in transactions:
            stats.total += 1
            rule = self.find_matching_rule(txn)
            if rule is None:
                stats.unmatched += 1
                continue
            stats.matched += 1
            stats.rule_usage[rule.id] = stats.rule_usage.get(rule.id, 0) + 1

        stats.match_rate = stats.matched / stats.total if stats.total else 0.0
        return stats


def apply_rules(
    transactions: list[NormalizedTransaction],
    rules: Iterable[ImportRule],
) -> list[NormalizedTransaction]:
    """Convenience function to apply import rules to transactions.

    Args:
        transactions: Transactions to categorize.
        rules: Import rules.

    Returns:
        New list with rules applied.
    """
    return ImportRuleApplicator(rules).apply_many(transactions)
