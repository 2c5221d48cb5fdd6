"""Duplicate detection by import key."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

import yaml

from statement_importer.models.transaction import DuplicateVerdict, NormalizedTransaction
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)


class ExistingKeyLookup(Protocol):
    """Read-only access to the import keys already stored for an account."""

    def find_existing_keys(self, account_id: str, keys: Iterable[str]) -> set[str]:
        """Return the subset of keys already imported into the account."""
        ...


@dataclass
class DuplicatePartition:
    """Transactions split by duplicate verdict, input order preserved."""

    unique: list[NormalizedTransaction] = field(default_factory=list)
    duplicates: list[NormalizedTransaction] = field(default_factory=list)
    verdicts: list[DuplicateVerdict] = field(default_factory=list)


def source_id_key(transaction: NormalizedTransaction) -> Optional[str]:
    """Key a transaction by its parser-assigned content id.

    QIF records have no bank id, so their content id (a hash of date,
    amount, payee, number and memo) identifies the same transaction
    across exports. Records without one fall back to the import key.
    Pass as ``key_for`` to DuplicateDetector.partition.
    """
    return transaction.source_id or transaction.import_key


class DuplicateDetector:
    """Flags transactions whose import key already exists for the account.

    Detection is exact key membership only. Records without a bank id get
    a key that includes their row position, so the same transaction
    exported at a different position in a later file is not caught here.
    """

    def __init__(self, lookup: ExistingKeyLookup):
        """Initialize detector.

        Args:
            lookup: Source of already-imported keys.
        """
        self.lookup = lookup

    def is_duplicate_by_import_key(self, account_id: str, import_key: Optional[str]) -> bool:
        """Check a single import key.

        Args:
            account_id: Destination account.
            import_key: Key to check; empty keys are never duplicates.

        Returns:
            True if the key was already imported.
        """
        if not import_key:
            return False
        return import_key in self.lookup.find_existing_keys(account_id, [import_key])

    def classify(self, account_id: str, transaction: NormalizedTransaction) -> bool:
        """Check whether a transaction was already imported.

        Args:
            account_id: Destination account.
            transaction: Transaction to check.

        Returns:
            True if its import key exists. Transactions without a key are
            never duplicates; no fuzzy matching is attempted.
        """
        return self.is_duplicate_by_import_key(account_id, transaction.import_key)

    def check_batch(self, account_id: str, keys: Iterable[str]) -> dict[str, bool]:
        """Check many keys with a single lookup.

        Args:
            account_id: Destination account.
            keys: Import keys to check.

        Returns:
            Dict mapping each non-empty key to its duplicate flag.
        """
        unique_keys = list(dict.fromkeys(k for k in keys if k))
        if not unique_keys:
            return {}
        existing = self.lookup.find_existing_keys(account_id, unique_keys)
        return {key: key in existing for key in unique_keys}

    def partition(
        self,
        account_id: str,
        transactions: Iterable[NormalizedTransaction],
        key_for: Optional[Callable[[NormalizedTransaction], Optional[str]]] = None,
    ) -> DuplicatePartition:
        """Split transactions into new ones and duplicates.

        One lookup is made for the whole batch. A key repeated within the
        batch marks every occurrence after the first as a duplicate.

        Args:
            account_id: Destination account.
            transactions: Transactions to classify.
            key_for: Override how the key is read from a transaction,
                e.g. source_id_key.

        Returns:
            DuplicatePartition with verdicts in input order.
        """
        get_key = key_for or (lambda txn: txn.import_key)
        txns = list(transactions)
        flags = self.check_batch(account_id, (get_key(t) or "" for t in txns))

        result = DuplicatePartition()
        seen: set[str] = set()
        for txn in txns:
            key = get_key(txn)
            is_duplicate = bool(key) and (flags.get(key, False) or key in seen)
            if key:
                seen.add(key)

            result.verdicts.append(
                DuplicateVerdict(transaction=txn, is_duplicate=is_duplicate, account_id=account_id)
            )
            if is_duplicate:
                result.duplicates.append(txn)
            else:
                result.unique.append(txn)

        logger.info(
            f"Duplicate check: {len(result.unique)} new, "
            f"{len(result.duplicates)} already imported"
        )
        return result


class InMemoryKeyStore:
    """Import keys per account held in memory, optionally backed by a YAML file.

    File layout::

        account-id:
          - ofx_123_FIT1
          - ofx_123_FIT2
    """

    def __init__(self, keys: Optional[dict[str, Iterable[str]]] = None):
        """Initialize the store.

        Args:
            keys: Initial keys per account id.
        """
        self._keys: dict[str, set[str]] = {
            account_id: set(account_keys) for account_id, account_keys in (keys or {}).items()
        }

    def find_existing_keys(self, account_id: str, keys: Iterable[str]) -> set[str]:
        """Return the subset of keys already stored for the account."""
        stored = self._keys.get(account_id, set())
        return {key for key in keys if key in stored}

    def add(self, account_id: str, keys: Iterable[str]) -> None:
        """Record keys as imported for an account.

        Args:
            account_id: Destination account.
            keys: Keys to add; empty keys are ignored.
        """
        self._keys.setdefault(account_id, set()).update(k for k in keys if k)

    def keys_for(self, account_id: str) -> set[str]:
        """Return a copy of the keys stored for an account."""
        return set(self._keys.get(account_id, set()))

    @classmethod
    def load(cls, path: Path) -> "InMemoryKeyStore":
        """Load a store from a YAML file. A missing file gives an empty store.

        Args:
            path: Path to the key file.

        Returns:
            A new InMemoryKeyStore.

        Raises:
            ValueError: If the file is not a mapping of account ids to key lists.
        """
        if not path.exists():
            logger.debug(f"Key file {path} not found, starting empty")
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Key file {path} must contain a mapping of account ids to keys")

        keys: dict[str, list[str]] = {}
        for account_id, account_keys in data.items():
            if not isinstance(account_keys, list):
                raise ValueError(f"Keys for account '{account_id}' in {path} must be a list")
            keys[str(account_id)] = [str(k) for k in account_keys]
        return cls(keys)

    def save(self, path: Path) -> None:
        """Write the store to a YAML file.

        Args:
            path: Destination path.
        """
        data = {account_id: sorted(keys) for account_id, keys in sorted(self._keys.items())}
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)
        logger.debug(f"Saved import keys for {len(data)} account(s) to {path}")
