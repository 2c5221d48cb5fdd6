"""Transaction processing pipeline components."""

from statement_importer.processing.normalizer import (
    ColumnMapping,
    ColumnMappingError,
    MissingFieldError,
    NormalizationBatch,
    NormalizationError,
    RecordError,
    TransactionNormalizer,
)
from statement_importer.processing.rule_applicator import (
    ImportRuleApplicator,
    RuleMatchStatistics,
    RulePreview,
    apply_rules,
)
from statement_importer.processing.deduplicator import (
    DuplicateDetector,
    DuplicatePartition,
    ExistingKeyLookup,
    InMemoryKeyStore,
    source_id_key,
)

__all__ = [
    "ColumnMapping",
    "ColumnMappingError",
    "MissingFieldError",
    "NormalizationBatch",
    "NormalizationError",
    "RecordError",
    "TransactionNormalizer",
    "ImportRuleApplicator",
    "RuleMatchStatistics",
    "RulePreview",
    "apply_rules",
    "DuplicateDetector",
    "DuplicatePartition",
    "ExistingKeyLookup",
    "InMemoryKeyStore",
    "source_id_key",
]
