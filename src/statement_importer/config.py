"""Configuration loading and validation for the statement importer."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from statement_importer.models.rule import ImportRule
from statement_importer.parsers.file_validator import (
    MAX_FILE_SIZE,
    MAX_NON_PRINTABLE_RATIO,
    SAMPLE_SIZE,
)
from statement_importer.processing.normalizer import ColumnMapping
from statement_importer.utils.logging_config import DEFAULT_LOG_FILE, get_logger

logger = get_logger(__name__)

SUPPORTED_LOCALES = ("US", "EU")


class ConfigError(Exception):
    """Exception raised for configuration errors."""

    pass


def _section(data: dict[str, object], name: str) -> dict[str, object]:
    """Return a mapping section of a config file, empty if absent."""
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


@dataclass
class ImportSettings:
    """Settings for the import pipeline.

    Attributes:
        max_file_size: Largest accepted upload in bytes.
        sample_size: Bytes inspected by the content checks.
        max_non_printable_ratio: Share of non-printable bytes that marks a file as binary.
        preview_limit: Number of transactions returned by a preview.
        amount_locale: Locale hint for ambiguous CSV amounts ("US" or "EU").
        strict: Fail the import on the first unparseable record.
        csv_delimiter: Force a CSV delimiter instead of sniffing it.
    """

    max_file_size: int = MAX_FILE_SIZE
    sample_size: int = SAMPLE_SIZE
    max_non_printable_ratio: float = MAX_NON_PRINTABLE_RATIO
    preview_limit: int = 50
    amount_locale: str = "US"
    strict: bool = False
    csv_delimiter: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ImportSettings":
        """Create from dictionary.

        Raises:
            ConfigError: If a value is out of range.
        """
        try:
            settings = cls(
                max_file_size=int(data.get("max_file_size", MAX_FILE_SIZE)),  # type: ignore[arg-type]
                sample_size=int(data.get("sample_size", SAMPLE_SIZE)),  # type: ignore[arg-type]
                max_non_printable_ratio=float(
                    data.get("max_non_printable_ratio", MAX_NON_PRINTABLE_RATIO)  # type: ignore[arg-type]
                ),
                preview_limit=int(data.get("preview_limit", 50)),  # type: ignore[arg-type]
                amount_locale=str(data.get("amount_locale", "US")).upper(),
                strict=bool(data.get("strict", False)),
                csv_delimiter=str(data["csv_delimiter"]) if data.get("csv_delimiter") else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid import setting: {e}") from e

        if settings.max_file_size <= 0:
            raise ConfigError("'max_file_size' must be positive")
        if settings.sample_size <= 0:
            raise ConfigError("'sample_size' must be positive")
        if not 0 <= settings.max_non_printable_ratio <= 1:
            raise ConfigError("'max_non_printable_ratio' must be between 0 and 1")
        if settings.preview_limit < 0:
            raise ConfigError("'preview_limit' must not be negative")
        if settings.amount_locale not in SUPPORTED_LOCALES:
            raise ConfigError(
                f"'amount_locale' must be one of {', '.join(SUPPORTED_LOCALES)}, "
                f"got {settings.amount_locale!r}"
            )
        return settings


@dataclass
class OutputConfig:
    """Configuration for output generation.

    Attributes:
        date_format: Date format for exported files.
        decimal_places: Number of decimal places.
        preview_rows: Rows shown in the console preview table.
    """

    date_format: str = "%Y-%m-%d"
    decimal_places: int = 2
    preview_rows: int = 20

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "OutputConfig":
        """Create from dictionary."""
        return cls(
            date_format=str(data.get("date_format", "%Y-%m-%d")),
            decimal_places=int(data.get("decimal_places", 2)),  # type: ignore[arg-type]
            preview_rows=int(data.get("preview_rows", 20)),  # type: ignore[arg-type]
        )


@dataclass
class LoggingConfig:
    """Configuration for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Path to log file, None to log to the console only.
    """

    level: str = "INFO"
    file: Optional[str] = DEFAULT_LOG_FILE

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "LoggingConfig":
        """Create from dictionary."""
        log_file = data.get("file", DEFAULT_LOG_FILE)
        return cls(
            level=str(data.get("level", "INFO")),
            file=str(log_file) if log_file else None,
        )


@dataclass
class Config:
    """Main configuration container.

    Attributes:
        import_settings: Import pipeline settings.
        output: Output generation configuration.
        logging: Logging configuration.
        csv_mappings: Named CSV column mappings.
        account_mappings: Source account id/name -> destination account id.
        rules: Import rules.
    """

    import_settings: ImportSettings = field(default_factory=ImportSettings)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    csv_mappings: dict[str, ColumnMapping] = field(default_factory=dict)
    account_mappings: dict[str, str] = field(default_factory=dict)
    rules: list[ImportRule] = field(default_factory=list)

    def get_csv_mapping(self, name: str) -> ColumnMapping:
        """Look up a named CSV column mapping.

        Args:
            name: Mapping name from settings.yaml.

        Returns:
            The ColumnMapping.

        Raises:
            ConfigError: If no mapping has that name.
        """
        if name not in self.csv_mappings:
            known = ", ".join(sorted(self.csv_mappings)) or "none defined"
            raise ConfigError(f"Unknown CSV mapping '{name}' (available: {known})")
        return self.csv_mappings[name]


def load_yaml_file(path: Path) -> dict[str, object]:
    """Load a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ConfigError: If the file is not valid YAML or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not content:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return content


def load_settings(path: Path) -> Config:
    """Load settings from settings.yaml.

    Args:
        path: Path to settings.yaml.

    Returns:
        Config with settings, mappings, and no rules.

    Raises:
        ConfigError: If the file is malformed.
    """
    data = load_yaml_file(path)
    config = Config(
        import_settings=ImportSettings.from_dict(_section(data, "import")),
        output=OutputConfig.from_dict(_section(data, "output")),
        logging=LoggingConfig.from_dict(_section(data, "logging")),
    )

    for name, mapping_data in _section(data, "csv_mappings").items():
        if not isinstance(mapping_data, dict):
            raise ConfigError(f"CSV mapping '{name}' must be a mapping of field to column")
        try:
            config.csv_mappings[str(name)] = ColumnMapping.from_dict(mapping_data)
        except ValueError as e:
            raise ConfigError(f"CSV mapping '{name}': {e}") from e

    config.account_mappings = {
        str(source): str(target) for source, target in _section(data, "account_mappings").items()
    }
    return config


def load_rules(path: Path) -> list[ImportRule]:
    """Load import rules from rules.yaml.

    Args:
        path: Path to rules.yaml.

    Returns:
        Rules in file order; the applicator sorts them.

    Raises:
        ConfigError: If the rules list or a rule is malformed.
    """
    data = load_yaml_file(path)

    rules: list[ImportRule] = []
    rule_list = data.get("rules")
    if rule_list is None:
        return rules
    if not isinstance(rule_list, list):
        raise ConfigError(f"'rules' must be a list, got {type(rule_list).__name__}")

    seen_ids: set[str] = set()
    for position, rule_data in enumerate(rule_list, start=1):
        if not isinstance(rule_data, dict):
            raise ConfigError(f"Rule #{position} must be a mapping")
        try:
            rule = ImportRule.from_dict(rule_data)
        except KeyError as e:
            raise ConfigError(f"Rule #{position} is missing required field {e}") from e
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Rule #{position} is invalid: {e}") from e
        if rule.id in seen_ids:
            raise ConfigError(f"Duplicate rule id '{rule.id}'")
        seen_ids.add(rule.id)
        rules.append(rule)

    return rules


def load_config(
    settings_path: Optional[Path] = None,
    rules_path: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> Config:
    """Load complete configuration from all config files.

    Missing files fall back to defaults with a warning.

    Args:
        settings_path: Path to settings.yaml (or None to use default).
        rules_path: Path to rules.yaml (or None to use default).
        config_dir: Base config directory (default: ./config).

    Returns:
        Complete Config object.

    Raises:
        ConfigError: If a config file is malformed.
    """
    if config_dir is None:
        config_dir = Path("config")

    if settings_path is None:
        settings_path = config_dir / "settings.yaml"
    if rules_path is None:
        rules_path = config_dir / "rules.yaml"

    if settings_path.exists():
        config = load_settings(settings_path)
        logger.info(f"Loaded settings from {settings_path}")
    else:
        config = Config()
        logger.warning(f"Settings file not found: {settings_path}, using defaults")

    if rules_path.exists():
        config.rules = load_rules(rules_path)
        logger.info(f"Loaded {len(config.rules)} import rules from {rules_path}")
    else:
        logger.warning(f"Rules file not found: {rules_path}")

    return config
