"""End-to-end import of one uploaded statement file."""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from statement_importer.config import Config
from statement_importer.models.account import AccountContext
from statement_importer.models.rule import ImportRule
from statement_importer.models.transaction import (
    DuplicateVerdict,
    NormalizedTransaction,
    RawParsedTransaction,
)
from statement_importer.models.upload import FileFormat, RawUpload
from statement_importer.parsers.detector import ParserFactory, detect_format
from statement_importer.parsers.file_validator import FileValidator
from statement_importer.processing.deduplicator import (
    DuplicateDetector,
    ExistingKeyLookup,
    InMemoryKeyStore,
)
from statement_importer.processing.normalizer import (
    ColumnMapping,
    RecordError,
    TransactionNormalizer,
)
from statement_importer.processing.rule_applicator import (
    ImportRuleApplicator,
    RuleMatchStatistics,
)
from statement_importer.utils.logging_config import LogContext, get_logger, mask_account_id

logger = get_logger(__name__)


@dataclass
class ImportResult:
    """Outcome of importing one file.

    Attributes:
        format: Detected file format.
        verdicts: Every routed transaction with its duplicate flag, file order.
        errors: Records that could not be normalized.
        skipped: Records missing a date or amount.
        total_records: Records the parser produced.
        accounts: Accounts found in the file (OFX/QIF).
        rule_statistics: Rule matches over the normalized transactions.
        unrouted: Transactions dropped because no destination account was known.
    """

    format: FileFormat
    verdicts: list[DuplicateVerdict] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)
    skipped: int = 0
    total_records: int = 0
    accounts: list[AccountContext] = field(default_factory=list)
    rule_statistics: RuleMatchStatistics = field(default_factory=RuleMatchStatistics)
    unrouted: int = 0

    @property
    def unique(self) -> list[NormalizedTransaction]:
        """Transactions not seen before."""
        return [v.transaction for v in self.verdicts if not v.is_duplicate]

    @property
    def duplicates(self) -> list[NormalizedTransaction]:
        """Transactions already imported."""
        return [v.transaction for v in self.verdicts if v.is_duplicate]


class ImportPipeline:
    """Runs validate, detect, parse, normalize, apply rules and dedupe on an upload."""

    def __init__(
        self,
        config: Optional[Config] = None,
        lookup: Optional[ExistingKeyLookup] = None,
        key_for: Optional[Callable[[NormalizedTransaction], Optional[str]]] = None,
    ):
        """Initialize pipeline.

        Args:
            config: Loaded configuration (defaults when None).
            lookup: Source of already-imported keys. Without one nothing is a duplicate.
            key_for: Key checked against the lookup (default: the import key).
        """
        if lookup is None:
            lookup = InMemoryKeyStore()
        self.config = config or Config()
        self.settings = self.config.import_settings
        self.detector = DuplicateDetector(lookup)
        self.key_for = key_for
        self.validator = FileValidator(
            max_file_size=self.settings.max_file_size,
            sample_size=self.settings.sample_size,
            max_non_printable_ratio=self.settings.max_non_printable_ratio,
        )
        self.factory = ParserFactory(csv_delimiter=self.settings.csv_delimiter)

    def run(
        self,
        upload: RawUpload,
        account_id: Optional[str] = None,
        rules: Optional[Iterable[ImportRule]] = None,
        column_mapping: Optional[ColumnMapping] = None,
        account_mapping: Optional[dict[str, str]] = None,
        file_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ImportResult:
        """Import an uploaded file.

        Args:
            upload: The uploaded file.
            account_id: Destination account for records with no mapped source account.
            rules: Import rules (default: rules from config).
            column_mapping: CSV column mapping (default: detected from headers).
            account_mapping: Source account id or name -> destination account id
                (default: account_mappings from config).
            file_id: Identifier used in fallback import keys (default: content hash).
            limit: Stop after this many parsed records.

        Returns:
            ImportResult with one verdict per routed transaction.

        Raises:
            ValidationError: If the upload is rejected.
            ParseError: If the file has no recognizable structure.
            NormalizationError: In strict mode, for the first unparseable record.
        """
        with LogContext(logger, "import", filename=upload.filename, account_id=account_id):
            self.validator.validate_upload(upload)
            fmt = detect_format(upload.filename)
            content = upload.text()

            raws, accounts = self._parse(content, fmt, limit)
            result = ImportResult(format=fmt, total_records=len(raws), accounts=accounts)

            normalizer = TransactionNormalizer(
                file_id=file_id or upload.content_hash,
                column_mapping=column_mapping,
                amount_locale=self.settings.amount_locale,
            )
            batch = normalizer.normalize_all(raws, strict=self.settings.strict)
            result.errors = batch.errors
            result.skipped = batch.skipped

            applicator = ImportRuleApplicator(self.config.rules if rules is None else rules)
            result.rule_statistics = applicator.get_match_statistics(batch.transactions)
            transactions = applicator.apply_many(batch.transactions)

            mapping = self.config.account_mappings if account_mapping is None else account_mapping
            result.verdicts, result.unrouted = self._dedupe(transactions, account_id, mapping)

        logger.info(
            f"Imported {upload.filename}: {len(result.unique)} new, "
            f"{len(result.duplicates)} duplicates, {len(result.errors)} errors, "
            f"{result.skipped} skipped"
        )
        return result

    def preview(self, upload: RawUpload, **kwargs: object) -> ImportResult:
        """Import only the first records of a file, without persisting anything.

        Args:
            upload: The uploaded file.
            **kwargs: Same options as run(), except limit.

        Returns:
            ImportResult over at most preview_limit records.
        """
        return self.run(upload, limit=self.settings.preview_limit, **kwargs)  # type: ignore[arg-type]

    def count_records(self, upload: RawUpload) -> int:
        """Validate a file and count its records.

        Raises:
            ValidationError: If the upload is rejected.
            ParseError: If the file has no recognizable structure.
        """
        self.validator.validate_upload(upload)
        fmt = detect_format(upload.filename)
        return self.factory.count_records(upload.text(), fmt)

    def _parse(
        self,
        content: str,
        fmt: FileFormat,
        limit: Optional[int],
    ) -> tuple[list[RawParsedTransaction], list[AccountContext]]:
        """Parse content, returning records and the accounts they were found under."""
        if limit is None:
            statement = self.factory.parse_full(content, fmt)
            raws = [txn for account in statement.accounts for txn in account.transactions]
            return raws, [a.context for a in statement.accounts if a.context is not None]

        raws = self.factory.parse(content, fmt, limit)
        accounts: list[AccountContext] = []
        for raw in raws:
            if raw.account is not None and raw.account not in accounts:
                accounts.append(raw.account)
        return raws, accounts

    def _destination(
        self,
        txn: NormalizedTransaction,
        account_id: Optional[str],
        account_mapping: dict[str, str],
    ) -> Optional[str]:
        """Resolve the destination account of a transaction."""
        source = txn.account
        if source is not None:
            for key in (source.external_account_id, source.name):
                if key and key in account_mapping:
                    return account_mapping[key]
        return account_id

    def _dedupe(
        self,
        transactions: list[NormalizedTransaction],
        account_id: Optional[str],
        account_mapping: dict[str, str],
    ) -> tuple[list[DuplicateVerdict], int]:
        """Check duplicates with one lookup per destination account.

        Returns:
            Verdicts in input order, and the number of unrouted transactions.
        """
        groups: dict[str, list[int]] = {}
        unrouted: list[NormalizedTransaction] = []
        for position, txn in enumerate(transactions):
            destination = self._destination(txn, account_id, account_mapping)
            if destination is None:
                unrouted.append(txn)
                continue
            groups.setdefault(destination, []).append(position)

        if unrouted:
            sources = {mask_account_id(t.account.key) if t.account else "<none>" for t in unrouted}
            logger.warning(
                f"Skipped {len(unrouted)} transactions with no destination account "
                f"(source accounts: {', '.join(sorted(sources))})"
            )

        by_position: dict[int, DuplicateVerdict] = {}
        for destination, positions in groups.items():
            partition = self.detector.partition(
                destination, (transactions[p] for p in positions), key_for=self.key_for
            )
            by_position.update(zip(positions, partition.verdicts))

        return [by_position[p] for p in sorted(by_position)], len(unrouted)
