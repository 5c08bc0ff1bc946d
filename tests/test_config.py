"""
Tests for the configuration loader.
"""
import pytest
import tempfile
from pathlib import Path

from kpi_recon.config import ReconConfig, get_config, reload_config, ConfigurationError


class TestReconConfig:
    """Tests for ReconConfig class."""

    def test_load_default_config(self):
        """Test loading the default configuration file."""
        config = get_config()
        assert config.version == "1.4"
        assert config.database_url.startswith("sqlite+aiosqlite://")

    def test_table_names(self):
        """Test configured table names."""
        config = get_config()
        assert config.live_kpi_table == "Planning Database - KPI"
        assert config.rejected_kpi_table == "kpi_rejected"
        assert config.boq_table == "Planning Database - BOQ Rates"
        assert config.users_table == "users"

    def test_reload_returns_fresh_instance(self):
        """Test reload_config clears the cached instance."""
        first = get_config()
        second = reload_config()
        assert first is not second
        assert get_config() is second


class TestPaging:
    """Tests for paging configuration."""

    def test_paging_values(self):
        config = get_config()
        assert config.fetch_page_size == 1000
        assert config.update_batch_size == 50
        assert config.inter_batch_delay_seconds == 0.1


class TestApprovalConfig:
    """Tests for approval configuration."""

    def test_defaults(self):
        config = get_config()
        assert config.default_actor == "admin"
        assert config.placeholder_actor == "System"
        assert config.default_rejection_reason == "No reason provided"
        assert config.record_original_kpi_id is False
        assert config.recompute_aggregates is True

    def test_schema_error_keywords(self):
        config = get_config()
        assert "schema cache" in config.schema_error_keywords
        assert "Approval Status" in config.schema_error_keywords


class TestRestoreConfig:
    """Tests for the restore deny list."""

    def test_deny_list(self):
        config = get_config()
        columns = config.invalid_live_columns
        assert config.deny_list_version == "2024-11"
        assert "Rejection Reason" in columns
        assert "Activity Progress %" in columns
        assert "Zone Number" in columns
        assert "Quantity" not in columns

    def test_critical_fields_are_not_denied(self):
        config = get_config()
        assert set(config.critical_fields).isdisjoint(config.invalid_live_columns)
        assert "Target Date" in config.critical_fields


class TestFromDict:
    """Tests for in-memory configuration."""

    def test_missing_sections_use_defaults(self):
        config = ReconConfig.from_dict({})
        assert config.version == "unknown"
        assert config.fetch_page_size == 1000
        assert config.write_naming == "legacy"
        assert config.invalid_live_columns == frozenset()
        assert config.user_cache_ttl_seconds == 300

    def test_write_naming_validation(self):
        config = ReconConfig.from_dict({"columns": {"write_naming": "camel"}})
        with pytest.raises(ConfigurationError) as exc_info:
            config.write_naming
        assert "write_naming" in str(exc_info.value)

    def test_non_mapping(self):
        with pytest.raises(ConfigurationError):
            ReconConfig.from_dict(["not", "a", "mapping"])


class TestRawAccess:
    """Tests for raw configuration access."""

    def test_get_method(self):
        """Test get method with default."""
        config = get_config()
        assert config.get("version") == "1.4"
        assert config.get("nonexistent", "default") == "default"

    def test_getitem(self):
        """Test dictionary-style access."""
        config = get_config()
        assert config["tables"]["rejected_kpi"] == "kpi_rejected"

    def test_contains(self):
        """Test key existence check."""
        config = get_config()
        assert "restore" in config
        assert "nonexistent" not in config


class TestConfigurationError:
    """Tests for configuration error handling."""

    def test_missing_file(self):
        """Test error on missing config file."""
        with pytest.raises(ConfigurationError) as exc_info:
            ReconConfig(Path("/nonexistent/path.yaml"))
        assert "not found" in str(exc_info.value)

    def test_invalid_yaml(self):
        """Test error on invalid YAML."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("invalid: yaml: content: [")
            temp_path = Path(f.name)

        try:
            with pytest.raises(ConfigurationError) as exc_info:
                ReconConfig(temp_path)
            assert "Invalid YAML" in str(exc_info.value)
        finally:
            temp_path.unlink()
