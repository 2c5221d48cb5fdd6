"""Command-line interface for the statement importer."""

import argparse
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from statement_importer import __version__
from statement_importer.config import Config, ConfigError, load_config
from statement_importer.models.upload import RawUpload
from statement_importer.output.csv_exporter import export_result
from statement_importer.parsers.base import ParseError
from statement_importer.parsers.file_validator import ValidationError
from statement_importer.processing.deduplicator import InMemoryKeyStore
from statement_importer.processing.normalizer import ColumnMapping, NormalizationError
from statement_importer.processing.pipeline import ImportPipeline, ImportResult
from statement_importer.utils.decimal_utils import format_currency
from statement_importer.utils.logging_config import get_logger, setup_logging

# Load environment variables from .env file (if it exists)
load_dotenv()

console = Console()
logger = get_logger(__name__)

DEFAULT_ACCOUNT_ID = "default"


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="statement-importer",
        description=(
            "Import a bank or card statement (CSV, OFX, QIF), categorize it with "
            "import rules, and flag transactions that were already imported"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s statement.ofx
  %(prog)s export.csv --account-id checking --map date=Posted --map amount=Amount
  %(prog)s export.csv --mapping chase -o review.csv
  %(prog)s money.qif --existing-keys keys.yaml --save-keys
  %(prog)s --validate-only --config-dir ./config
        """,
    )

    # Version
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "file",
        type=Path,
        nargs="?",
        default=None,
        help="Statement file to import (.csv, .ofx, .qif, .txt)",
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Write the import result to this CSV file",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings.yaml (default: config/settings.yaml)",
    )

    parser.add_argument(
        "--rules",
        type=Path,
        default=None,
        help="Path to rules.yaml (default: config/rules.yaml)",
    )

    parser.add_argument(
        "--config-dir",
        type=Path,
        default=Path("config"),
        help="Base config directory (default: ./config)",
    )

    # Import options
    parser.add_argument(
        "--account-id",
        default=DEFAULT_ACCOUNT_ID,
        help=(
            "Destination account for transactions whose source account has no "
            f"account_mappings entry (default: {DEFAULT_ACCOUNT_ID})"
        ),
    )

    parser.add_argument(
        "--mapping",
        default=None,
        metavar="NAME",
        help="Named CSV column mapping from settings.yaml",
    )

    parser.add_argument(
        "--map",
        action="append",
        default=[],
        metavar="FIELD=COLUMN",
        help="Map a transaction field to a CSV column (repeatable, overrides --mapping)",
    )

    parser.add_argument(
        "--existing-keys",
        type=Path,
        default=None,
        metavar="FILE",
        help="YAML file of import keys already imported, per account",
    )

    parser.add_argument(
        "--save-keys",
        action="store_true",
        help="Add the keys of new transactions to --existing-keys after importing",
    )

    parser.add_argument(
        "--strict",
        action="store_true",
        help="Strict mode: abort on the first record that cannot be normalized",
    )

    # Modes
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Only import the first preview_limit records",
    )

    parser.add_argument(
        "--count-only",
        action="store_true",
        help="Validate the file and print its record count",
    )

    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate configuration files only",
    )

    # Verbosity
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (-v, -vv)",
    )

    return parser


def get_log_level(verbosity: int) -> str:
    """Convert verbosity count to log level.

    Args:
        verbosity: Number of -v flags.

    Returns:
        Log level string.
    """
    if verbosity >= 2:
        return "DEBUG"
    elif verbosity >= 1:
        return "INFO"
    else:
        return "WARNING"


def validate_output_path(path: Path, base_dir: Path | None = None) -> Path:
    """Validate that output path is within allowed directory.

    Args:
        path: The path to validate.
        base_dir: Base directory to constrain paths within (default: cwd).

    Returns:
        The resolved, validated path.

    Raises:
        ValueError: If the path escapes the allowed directory.
    """
    if base_dir is None:
        base_dir = Path.cwd()

    resolved_base = base_dir.resolve()
    resolved_path = (base_dir / path).resolve()

    try:
        resolved_path.relative_to(resolved_base)
    except ValueError:
        raise ValueError(
            f"Invalid path: '{path}' escapes the allowed directory. "
            f"Paths must be within '{resolved_base}'"
        ) from None

    return resolved_path


def parse_column_overrides(pairs: list[str]) -> dict[str, str]:
    """Parse --map FIELD=COLUMN arguments.

    Args:
        pairs: Raw argument values.

    Returns:
        Field name -> column header.

    Raises:
        ValueError: If a value is not of the form FIELD=COLUMN.
    """
    overrides: dict[str, str] = {}
    for pair in pairs:
        field_name, sep, column = pair.partition("=")
        if not sep or not field_name.strip() or not column.strip():
            raise ValueError(f"Invalid --map value '{pair}', expected FIELD=COLUMN")
        overrides[field_name.strip()] = column.strip()
    return overrides


def build_column_mapping(
    config: Config,
    mapping_name: Optional[str],
    pairs: list[str],
) -> Optional[ColumnMapping]:
    """Combine a named CSV mapping with --map overrides.

    Args:
        config: Loaded configuration.
        mapping_name: Name of a mapping in settings.yaml, or None.
        pairs: --map arguments.

    Returns:
        The ColumnMapping, or None to detect columns from the header row.

    Raises:
        ConfigError: If the named mapping does not exist.
        ValueError: If the combined mapping is invalid.
    """
    fields: dict[str, object] = {}
    if mapping_name:
        base = config.get_csv_mapping(mapping_name)
        fields = {
            name: getattr(base, name)
            for name in ColumnMapping.field_names()
            if getattr(base, name)
        }
    fields.update(parse_column_overrides(pairs))
    if not fields:
        return None
    return ColumnMapping.from_dict(fields)


def validate_config(args: argparse.Namespace) -> int:
    """Validate configuration files.

    Args:
        args: Parsed command-line arguments.

    Returns:
        0 if valid, 1 if errors found.
    """
    console.print("[bold]Validating configuration files...[/bold]\n")

    errors = []
    warnings = []

    config_dir = args.config_dir
    if not config_dir.exists():
        warnings.append(f"Config directory not found: {config_dir}")

    settings_path = args.config or (config_dir / "settings.yaml")
    if settings_path.exists():
        console.print(f"[green]✓[/green] Settings: {settings_path}")
    else:
        warnings.append(f"Settings file not found: {settings_path}")

    rules_path = args.rules or (config_dir / "rules.yaml")
    if rules_path.exists():
        console.print(f"[green]✓[/green] Rules: {rules_path}")
    else:
        warnings.append(f"Rules file not found: {rules_path}")

    try:
        config = load_config(
            settings_path=args.config,
            rules_path=args.rules,
            config_dir=config_dir,
        )
        console.print("\n[green]✓[/green] Configuration loaded successfully")
        console.print(f"  - {len(config.rules)} import rules")
        console.print(f"  - {len(config.csv_mappings)} CSV mappings")
        console.print(f"  - {len(config.account_mappings)} account mappings")
    except ConfigError as e:
        errors.append(f"Failed to load configuration: {e}")

    if warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for w in warnings:
            console.print(f"  - {w}")

    if errors:
        console.print("\n[red]Errors:[/red]")
        for err in errors:
            console.print(f"  - {err}")
        return 1

    console.print("\n[green]Configuration is valid.[/green]")
    return 0


def display_transactions(result: ImportResult, max_rows: int) -> None:
    """Print the first transactions of an import as a table.

    Args:
        result: Import result.
        max_rows: Maximum rows to show.
    """
    if not result.verdicts:
        return

    table = Table(title="Transactions")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Vendor")
    table.add_column("Category")
    table.add_column("Status")

    for verdict in result.verdicts[:max_rows]:
        txn = verdict.transaction
        table.add_row(
            txn.date.isoformat(),
            format_currency(txn.signed_amount),
            txn.description,
            txn.vendor or "",
            txn.category_id or "",
            "[yellow]duplicate[/yellow]" if verdict.is_duplicate else "[green]new[/green]",
        )

    console.print(table)
    if len(result.verdicts) > max_rows:
        console.print(f"[dim]... and {len(result.verdicts) - max_rows} more[/dim]")


def display_summary(result: ImportResult) -> None:
    """Display import summary.

    Args:
        result: Import result.
    """
    stats = result.rule_statistics

    console.print("\n[bold]Import Summary[/bold]")
    console.print(f"  Format: {result.format.value.upper()}")
    console.print(f"  Accounts: {len(result.accounts)}")
    console.print(f"  Records parsed: {result.total_records}")
    console.print(f"  New transactions: {len(result.unique)}")
    console.print(f"  Duplicates: {len(result.duplicates)}")
    console.print(f"  Skipped (missing date or amount): {result.skipped}")
    if result.unrouted:
        console.print(f"  Skipped (no destination account): {result.unrouted}")
    console.print(
        f"  Rule matches: {stats.matched}/{stats.total} ({stats.match_rate:.0%})"
    )
    for rule_id, count in sorted(stats.rule_usage.items(), key=lambda item: -item[1]):
        console.print(f"    - rule {rule_id}: {count}")

    if result.errors:
        console.print(f"\n[red]Errors ({len(result.errors)}):[/red]")
        for e in result.errors[:10]:
            console.print(f"  - {e.message}")
        if len(result.errors) > 10:
            console.print(f"  ... and {len(result.errors) - 10} more")


def create_progress() -> Progress:
    """Create a progress display.

    Returns:
        Rich Progress instance.
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def save_new_keys(store: InMemoryKeyStore, path: Path, result: ImportResult) -> int:
    """Record the keys of new transactions and write the key file.

    Args:
        store: Key store the import was checked against.
        path: Key file to write.
        result: Import result.

    Returns:
        Number of keys added.
    """
    added = 0
    for verdict in result.verdicts:
        if verdict.is_duplicate or verdict.account_id is None:
            continue
        store.add(verdict.account_id, [verdict.transaction.import_key])
        added += 1
    store.save(path)
    return added


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Arguments (default: sys.argv).

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = get_log_level(args.verbose)
    setup_logging(level=log_level, console_output=args.verbose > 0)

    if args.validate_only:
        return validate_config(args)

    if args.file is None:
        console.print("[red]Error: a statement file is required[/red]")
        parser.print_usage()
        return 1

    if not args.file.is_file():
        console.print(f"[red]Error: File not found: {args.file}[/red]")
        return 1

    if args.save_keys and args.existing_keys is None:
        console.print("[red]Error: --save-keys requires --existing-keys[/red]")
        return 1

    try:
        config = load_config(
            settings_path=args.config,
            rules_path=args.rules,
            config_dir=args.config_dir,
        )
        column_mapping = build_column_mapping(config, args.mapping, args.map)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("Run with --validate-only to check configuration files.")
        return 1

    # Log to the configured file; -v overrides the configured level
    setup_logging(
        level=log_level if args.verbose else config.logging.level,
        log_file=config.logging.file,
        console_output=args.verbose > 0,
    )

    if args.strict:
        config.import_settings.strict = True

    try:
        store = InMemoryKeyStore.load(args.existing_keys) if args.existing_keys else InMemoryKeyStore()
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    pipeline = ImportPipeline(config, store)
    upload = RawUpload.from_path(args.file)

    try:
        if args.count_only:
            count = pipeline.count_records(upload)
            console.print(f"{args.file.name}: {count} records")
            return 0

        with create_progress() as progress:
            progress.add_task(f"Importing {args.file.name}...", total=None)
            run = pipeline.preview if args.preview else pipeline.run
            result = run(
                upload,
                account_id=args.account_id,
                column_mapping=column_mapping,
            )
    except ValidationError as e:
        console.print(f"[red]Rejected {args.file.name}: {e}[/red]")
        return 1
    except ParseError as e:
        console.print(f"[red]Could not parse {args.file.name}: {e}[/red]")
        return 1
    except NormalizationError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    display_transactions(result, config.output.preview_rows)
    display_summary(result)

    if args.output:
        try:
            output_path = validate_output_path(args.output)
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1
        for path in export_result(output_path, result, config.output):
            console.print(f"[green]Output written to {path}[/green]")

    if args.save_keys:
        if args.preview:
            console.print("[yellow]Preview mode - import keys not saved[/yellow]")
        else:
            added = save_new_keys(store, args.existing_keys, result)
            console.print(f"[green]Saved {added} new import keys to {args.existing_keys}[/green]")

    return 0


if __name__ == "__main__":
    sys.exit(main())
