"""Data models for uploads, accounts, transactions, and import rules."""

from statement_importer.models.account import AccountContext, AccountType
from statement_importer.models.rule import ImportRule, MatchField, MatchType
from statement_importer.models.transaction import (
    AppliedRule,
    CategoryPath,
    ClearedStatus,
    DuplicateVerdict,
    NormalizedTransaction,
    NormalizationError,
    RawParsedTransaction,
    Split,
    TransactionType,
)
from statement_importer.models.upload import FileFormat, RawUpload

__all__ = [
    "AccountContext",
    "AccountType",
    "AppliedRule",
    "CategoryPath",
    "ClearedStatus",
    "DuplicateVerdict",
    "NormalizationError",
    "FileFormat",
    "ImportRule",
    "MatchField",
    "MatchType",
    "NormalizedTransaction",
    "RawParsedTransaction",
    "RawUpload",
    "Split",
    "TransactionType",
]
