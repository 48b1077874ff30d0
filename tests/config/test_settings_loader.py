"""
Tests for factor_config: YAML loading, environment overrides and bridges.
"""

from decimal import Decimal

import pytest
import yaml

from factor_config import (
    build_factor_config,
    build_packager,
    compute_checksum,
    load_settings,
    parse_settings,
)
from factor_config.loader import (
    ENV_DATABASE_URL,
    ENV_LOG_LEVEL,
    apply_env_overrides,
    load_yaml_file,
)
from factor_modules.receivables.models import InstallmentStatus


def _write(tmp_path, data, name="settings.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadDefaults:
    """The packaged defaults.yaml."""

    def test_defaults_load(self):
        settings = load_settings(environ={})
        assert settings.database.url == "sqlite:///:memory:"
        assert settings.logging.level == "INFO"
        assert settings.packaging.csv_filename == "remessa.csv"
        assert settings.factor["cost_document_prefix"] == "FACTOR"
        assert len(settings.checksum) == 64

    def test_defaults_build_factor_config(self):
        config = build_factor_config(load_settings(environ={}))
        assert config.installment_list_limit == 300
        assert config.operation_list_limit == 100
        assert config.cancel_reason_min_length == 3
        assert config.cancel_reason_max_length == 500


class TestParse:

    def test_missing_sections_use_defaults(self, tmp_path):
        settings = load_settings(_write(tmp_path, {"logging": {"level": "DEBUG"}}), environ={})
        assert settings.logging.level == "DEBUG"
        assert settings.database.pool_size == 20
        assert settings.factor == {}

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown settings sections"):
            parse_settings({"reporting": {}})

    def test_unknown_key_in_section(self):
        with pytest.raises(ValueError, match="pool_sise"):
            parse_settings({"database": {"pool_sise": 5}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_settings({"packaging": ["a", "b"]})

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})


class TestChecksum:

    def test_deterministic(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})

    def test_content_change_changes_checksum(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_env_overrides_do_not_change_checksum(self, tmp_path):
        path = _write(tmp_path, {"database": {"url": "sqlite:///a.db"}})
        plain = load_settings(path, environ={})
        overridden = load_settings(path, environ={ENV_DATABASE_URL: "sqlite:///b.db"})
        assert overridden.database.url == "sqlite:///b.db"
        assert plain.checksum == overridden.checksum


class TestEnvOverrides:

    def test_database_url(self):
        settings = apply_env_overrides(
            parse_settings({}), {ENV_DATABASE_URL: "postgresql://x@localhost/db"},
        )
        assert settings.database.url == "postgresql://x@localhost/db"

    def test_log_level_upper_cased(self):
        settings = apply_env_overrides(parse_settings({}), {ENV_LOG_LEVEL: "debug"})
        assert settings.logging.level == "DEBUG"

    def test_empty_values_ignored(self):
        settings = apply_env_overrides(
            parse_settings({}), {ENV_DATABASE_URL: "", ENV_LOG_LEVEL: ""},
        )
        assert settings.database.url == "sqlite:///:memory:"
        assert settings.logging.level == "INFO"


class TestBridges:

    def test_factor_overrides(self):
        settings = parse_settings({
            "factor": {
                "cost_document_prefix": "FCT",
                "max_rate_percent": 50,
                "eligible_installment_statuses": ["open", "overdue"],
            },
        })
        config = build_factor_config(settings)
        assert config.cost_document_number(7) == "FCT-7"
        assert config.max_rate_percent == Decimal("50")
        assert config.eligible_installment_statuses == (
            InstallmentStatus.OPEN, InstallmentStatus.OVERDUE,
        )

    def test_unknown_factor_key(self):
        with pytest.raises(ValueError, match="factor"):
            build_factor_config(parse_settings({"factor": {"discount_limit": 1}}))

    def test_rounding_places_not_configurable(self):
        with pytest.raises(ValueError, match="money_decimal_places"):
            build_factor_config(parse_settings({"factor": {"money_decimal_places": 4}}))

    def test_invalid_factor_value(self):
        with pytest.raises(ValueError):
            build_factor_config(parse_settings({"factor": {"installment_list_limit": 0}}))

    def test_packager_from_settings(self):
        packager = build_packager(parse_settings({
            "packaging": {"base_path": "/srv/factor/", "csv_filename": "batch.csv"},
        }))
        assert packager._base_path == "/srv/factor"
        assert packager._csv_filename == "batch.csv"
        assert packager._zip_filename == "pacote.zip"
