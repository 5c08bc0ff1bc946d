"""
Configuration loader for KPI Reconciliation.

Loads settings from kpi_recon_config.yaml and provides typed access
to all configuration sections.
"""
from pathlib import Path
from typing import Any, FrozenSet, List, Optional
from functools import lru_cache

import yaml


# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "kpi_recon_config.yaml"

DEFAULT_SCHEMA_ERROR_KEYWORDS = [
    "Approval Status", "column", "does not exist", "not found", "schema cache",
]

DEFAULT_CRITICAL_FIELDS = [
    "Target Date", "Actual Date", "Activity Date",
    "created_by", "updated_by", "Recorded By",
]


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class ReconConfig:
    """
    Configuration manager for KPI Reconciliation.

    Loads YAML configuration and provides typed access to all sections.
    Use get_config() to obtain the shared instance, or construct one
    directly (optionally from a dict) and inject it into services.
    """

    def __init__(self, config_path: Optional[Path] = None, data: Optional[dict] = None):
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        if data is not None:
            if not isinstance(data, dict):
                raise ConfigurationError("Config data must be a mapping")
            self._config = data
        else:
            self._load()

    @classmethod
    def from_dict(cls, data: dict) -> "ReconConfig":
        """Build a configuration from an in-memory mapping."""
        return cls(data=data)

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            raise ConfigurationError(f"Config file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        get_config.cache_clear()

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Database
    # =========================================================================

    @property
    def database_url(self) -> str:
        """SQLAlchemy async database URL."""
        return self._config.get("database", {}).get("url", "sqlite+aiosqlite:///./kpi_recon.db")

    @property
    def tables(self) -> dict:
        return self._config.get("tables", {})

    @property
    def live_kpi_table(self) -> str:
        return self.tables.get("live_kpi", "Planning Database - KPI")

    @property
    def rejected_kpi_table(self) -> str:
        return self.tables.get("rejected_kpi", "kpi_rejected")

    @property
    def boq_table(self) -> str:
        return self.tables.get("boq", "Planning Database - BOQ Rates")

    @property
    def users_table(self) -> str:
        return self.tables.get("users", "users")

    # =========================================================================
    # Paging
    # =========================================================================

    @property
    def paging(self) -> dict:
        return self._config.get("paging", {})

    @property
    def fetch_page_size(self) -> int:
        """Rows fetched per select when scanning a whole table."""
        return int(self.paging.get("fetch_page_size", 1000))

    @property
    def update_batch_size(self) -> int:
        """Transitions applied per sub-batch during bulk operations."""
        return int(self.paging.get("update_batch_size", 50))

    @property
    def inter_batch_delay_seconds(self) -> float:
        return float(self.paging.get("inter_batch_delay_seconds", 0.1))

    # =========================================================================
    # Approval
    # =========================================================================

    @property
    def approval(self) -> dict:
        return self._config.get("approval", {})

    @property
    def default_actor(self) -> str:
        """Actor recorded when no session identity is available."""
        return self.approval.get("default_actor", "admin")

    @property
    def placeholder_actor(self) -> str:
        """Placeholder creator value that must not be re-asserted."""
        return self.approval.get("placeholder_actor", "System")

    @property
    def default_rejection_reason(self) -> str:
        return self.approval.get("default_rejection_reason", "No reason provided")

    @property
    def schema_error_keywords(self) -> List[str]:
        return list(self.approval.get("schema_error_keywords", DEFAULT_SCHEMA_ERROR_KEYWORDS))

    @property
    def record_original_kpi_id(self) -> bool:
        """Whether reject stores the live id in 'Original KPI ID'."""
        return bool(self.approval.get("record_original_kpi_id", False))

    @property
    def recompute_aggregates(self) -> bool:
        """Whether transitions recompute the BOQ aggregate afterwards."""
        return bool(self.approval.get("recompute_aggregates", True))

    # =========================================================================
    # Restore
    # =========================================================================

    @property
    def restore(self) -> dict:
        return self._config.get("restore", {})

    @property
    def deny_list_version(self) -> str:
        return str(self.restore.get("deny_list_version", "unversioned"))

    @property
    def invalid_live_columns(self) -> FrozenSet[str]:
        """Columns stripped from rejected rows before re-inserting into the live table."""
        return frozenset(self.restore.get("invalid_live_columns", []))

    @property
    def critical_fields(self) -> List[str]:
        """Columns copied back after deny-list stripping."""
        return list(self.restore.get("critical_fields", DEFAULT_CRITICAL_FIELDS))

    # =========================================================================
    # Columns / caches
    # =========================================================================

    @property
    def write_naming(self) -> str:
        """'legacy' or 'canonical' column naming for fields a row lacks."""
        naming = self._config.get("columns", {}).get("write_naming", "legacy")
        if naming not in ("legacy", "canonical"):
            raise ConfigurationError(
                f"columns.write_naming must be 'legacy' or 'canonical', got '{naming}'"
            )
        return naming

    @property
    def user_cache_ttl_seconds(self) -> float:
        return float(self._config.get("user_cache", {}).get("ttl_seconds", 300))

    # =========================================================================
    # Raw Access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value by key."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access to config."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        return key in self._config


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> ReconConfig:
    """
    Get the shared configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.

    Returns:
        ReconConfig instance
    """
    path = Path(config_path) if config_path else None
    return ReconConfig(path)


def reload_config() -> ReconConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()
