"""Tests for configuration loading."""

from pathlib import Path

import pytest

from statement_importer.config import (
    Config,
    ConfigError,
    ImportSettings,
    load_config,
    load_rules,
    load_settings,
)
from statement_importer.models.rule import MatchField, MatchType

REPO_CONFIG = Path(__file__).parent.parent / "config"


class TestImportSettings:
    """Tests for ImportSettings.from_dict."""

    def test_defaults(self) -> None:
        """Test the default limits."""
        settings = ImportSettings.from_dict({})
        assert settings.max_file_size == 10 * 1024 * 1024
        assert settings.sample_size == 4096
        assert settings.max_non_printable_ratio == 0.1
        assert settings.amount_locale == "US"
        assert settings.csv_delimiter is None

    def test_locale_uppercased(self) -> None:
        """Test that the locale is case-insensitive."""
        assert ImportSettings.from_dict({"amount_locale": "eu"}).amount_locale == "EU"

    @pytest.mark.parametrize(
        "data",
        [
            {"max_file_size": 0},
            {"sample_size": -1},
            {"max_non_printable_ratio": 1.5},
            {"preview_limit": -1},
            {"amount_locale": "JP"},
            {"max_file_size": "big"},
        ],
    )
    def test_invalid_values(self, data: dict[str, object]) -> None:
        """Test that out-of-range values raise ConfigError."""
        with pytest.raises(ConfigError):
            ImportSettings.from_dict(data)


class TestLoadSettings:
    """Tests for load_settings."""

    def test_repo_settings(self) -> None:
        """Test that the shipped settings file loads."""
        config = load_settings(REPO_CONFIG / "settings.yaml")
        assert config.import_settings.preview_limit == 50
        assert config.csv_mappings["chase"].date == "Posting Date"
        assert config.csv_mappings["chase"].reference == "Check or Slip #"
        assert config.csv_mappings["split_columns"].debit == "Money Out"
        assert config.account_mappings["123456789"] == "checking"

    def test_empty_file(self, tmp_path: Path) -> None:
        """Test that an empty file gives defaults."""
        path = tmp_path / "settings.yaml"
        path.write_text("", encoding="utf-8")
        config = load_settings(path)
        assert config.import_settings == ImportSettings()
        assert config.csv_mappings == {}

    def test_numeric_account_keys(self, tmp_path: Path) -> None:
        """Test that unquoted numeric account ids become strings."""
        path = tmp_path / "settings.yaml"
        path.write_text("account_mappings:\n  123456789: checking\n", encoding="utf-8")
        assert load_settings(path).account_mappings == {"123456789": "checking"}

    def test_bad_mapping(self, tmp_path: Path) -> None:
        """Test that a mapping without an amount column is rejected."""
        path = tmp_path / "settings.yaml"
        path.write_text("csv_mappings:\n  bank:\n    date: Date\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="CSV mapping 'bank'"):
            load_settings(path)

    def test_section_must_be_mapping(self, tmp_path: Path) -> None:
        """Test that a list where a mapping is expected is rejected."""
        path = tmp_path / "settings.yaml"
        path.write_text("import:\n  - a\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="'import' must be a mapping"):
            load_settings(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test that a YAML syntax error becomes ConfigError."""
        path = tmp_path / "settings.yaml"
        path.write_text("import: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path)

    def test_get_csv_mapping(self) -> None:
        """Test named mapping lookup."""
        config = load_settings(REPO_CONFIG / "settings.yaml")
        assert config.get_csv_mapping("chase").amount == "Amount"
        with pytest.raises(ConfigError, match="Unknown CSV mapping 'nope'"):
            config.get_csv_mapping("nope")


class TestLoadRules:
    """Tests for load_rules."""

    def test_repo_rules(self) -> None:
        """Test that the shipped rules file loads."""
        rules = load_rules(REPO_CONFIG / "rules.yaml")
        assert [r.id for r in rules] == ["1", "2", "3"]
        assert rules[1].match_type == MatchType.REGEX
        assert rules[2].match_field == MatchField.DESCRIPTION

    def test_no_rules_key(self, tmp_path: Path) -> None:
        """Test a file without a rules list."""
        path = tmp_path / "rules.yaml"
        path.write_text("other: 1\n", encoding="utf-8")
        assert load_rules(path) == []

    def test_missing_pattern(self, tmp_path: Path) -> None:
        """Test that a rule without a pattern is reported by position."""
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - id: 1\n    name: Broken\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Rule #1 is missing required field"):
            load_rules(path)

    def test_duplicate_ids(self, tmp_path: Path) -> None:
        """Test that rule ids must be unique."""
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n  - id: 1\n    pattern: a\n  - id: 1\n    pattern: b\n", encoding="utf-8"
        )
        with pytest.raises(ConfigError, match="Duplicate rule id '1'"):
            load_rules(path)

    def test_unknown_field(self, tmp_path: Path) -> None:
        """Test that an unknown match field is rejected."""
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - id: 1\n    pattern: a\n    field: amount\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Rule #1 is invalid"):
            load_rules(path)


class TestLoadConfig:
    """Tests for load_config."""

    def test_repo_config(self) -> None:
        """Test loading both shipped files from the config directory."""
        config = load_config(config_dir=REPO_CONFIG)
        assert len(config.rules) == 3
        assert "chase" in config.csv_mappings

    def test_missing_files_use_defaults(self, tmp_path: Path) -> None:
        """Test that missing files fall back to defaults."""
        config = load_config(config_dir=tmp_path)
        assert config == Config()

    def test_explicit_paths(self, tmp_path: Path) -> None:
        """Test overriding individual file paths."""
        rules_path = tmp_path / "my_rules.yaml"
        rules_path.write_text("rules:\n  - id: 7\n    pattern: x\n", encoding="utf-8")
        config = load_config(rules_path=rules_path, config_dir=tmp_path)
        assert [r.id for r in config.rules] == ["7"]
