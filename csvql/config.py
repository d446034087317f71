"""
Configuration management for csvql.

Provides a hierarchical configuration system with sensible defaults.
Supports both global (~/.config/csvql/config.toml) and local (csvql.toml) configurations.
"""
import os
import tomli
import tomli_w
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict

from csvql.errors import ConfigError
from csvql.models import DEFAULT_LIMIT, MAX_LIMIT

MEMORY_DATABASE = ":memory:"


@dataclass
class CsvqlConfig:
    """
    csvql configuration with sensible defaults.

    Configuration hierarchy (highest to lowest priority):
    1. Command-line arguments
    2. Environment variables (CSVQL_*)
    3. Local config file (./csvql.toml, ./.csvqlrc or ./.csvql/config.toml)
    4. User config file (~/.config/csvql/config.toml)
    5. System defaults
    """

    # Row store
    database: str = field(default=MEMORY_DATABASE)
    database_url: Optional[str] = field(default=None)  # Full connection string (overrides database)
    database_echo: bool = field(default=False)  # SQLAlchemy echo for debugging

    # Data sources
    data_dir: str = field(default="data/csv")
    metadata_dir: str = field(default="data/metadata")
    metadata_file: str = field(default="metadata.yaml")

    # Pagination
    default_limit: int = field(default=DEFAULT_LIMIT)
    max_limit: int = field(default=MAX_LIMIT)

    # Display settings
    output_format: str = field(default="table")  # table, json
    log_level: str = field(default="INFO")

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "CsvqlConfig":
        """
        Load configuration from files and environment.

        Args:
            config_file: Specific config file to load (overrides search)

        Returns:
            Merged configuration object
        """
        config = cls()

        user_config_path = Path.home() / ".config" / "csvql" / "config.toml"
        if user_config_path.exists():
            config._merge(cls._load_toml(user_config_path))

        local_paths = [
            Path.cwd() / "csvql.toml",
            Path.cwd() / ".csvqlrc",
            Path.cwd() / ".csvql" / "config.toml"
        ]

        for path in local_paths:
            if path.exists():
                config._merge(cls._load_toml(path))
                break

        if config_file and config_file.exists():
            config._merge(cls._load_toml(config_file))

        config._apply_env_vars()
        config._expand_paths()

        return config

    @staticmethod
    def _load_toml(path: Path) -> Dict[str, Any]:
        """Load TOML configuration file."""
        with open(path, "rb") as f:
            return tomli.load(f)

    def _merge(self, data: Dict[str, Any]):
        """Merge configuration data into this instance."""
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def _apply_env_vars(self):
        """Apply environment variables with CSVQL_ prefix."""
        prefix = "CSVQL_"
        for key, value in os.environ.items():
            if key.startswith(prefix):
                config_key = key[len(prefix):].lower()
                if hasattr(self, config_key):
                    current_value = getattr(self, config_key)
                    if isinstance(current_value, bool):
                        setattr(self, config_key, value.lower() in ("true", "1", "yes"))
                    elif isinstance(current_value, int):
                        try:
                            setattr(self, config_key, int(value))
                        except ValueError as e:
                            raise ConfigError(f"Invalid integer for {key}: {value!r}") from e
                    else:
                        setattr(self, config_key, value)

    def _expand_paths(self):
        """Expand ~ and environment variables in paths."""
        path_fields = ["database", "data_dir", "metadata_dir"]
        for field_name in path_fields:
            value = getattr(self, field_name)
            if isinstance(value, str) and value != MEMORY_DATABASE:
                expanded = os.path.expanduser(os.path.expandvars(value))
                setattr(self, field_name, expanded)

    def save(self, path: Optional[Path] = None):
        """
        Save current configuration to TOML file.

        Args:
            path: Path to save to (defaults to user config)
        """
        if path is None:
            path = Path.home() / ".config" / "csvql" / "config.toml"

        path.parent.mkdir(parents=True, exist_ok=True)

        # TOML has no null
        data = {k: v for k, v in asdict(self).items() if v is not None}
        with open(path, "wb") as f:
            tomli_w.dump(data, f)

    def is_memory(self) -> bool:
        """Check if the row store lives in process memory."""
        return not self.database_url and self.database == MEMORY_DATABASE

    def get_database_path(self) -> Optional[Path]:
        """Get the resolved database path (None for an in-memory store)."""
        if self.is_memory():
            return None
        path = Path(self.database)
        if not path.is_absolute():
            path = Path.cwd() / path
        return path

    def get_database_url(self) -> str:
        """
        Get SQLAlchemy database URL.

        Examples:
            sqlite://
            sqlite:///csvql.db
        """
        if self.database_url:
            return self.database_url
        db_path = self.get_database_path()
        if db_path is None:
            return "sqlite://"
        return f"sqlite:///{db_path}"


# Global configuration instance
_config: Optional[CsvqlConfig] = None


def get_config(reload: bool = False, config_file: Optional[Path] = None) -> CsvqlConfig:
    """
    Get the global configuration instance.

    Args:
        reload: Force reload configuration from files
        config_file: Specific config file to load

    Returns:
        Global configuration instance
    """
    global _config
    if _config is None or reload:
        _config = CsvqlConfig.load(config_file)
    return _config


def init_config(database: Optional[str] = None, **kwargs) -> CsvqlConfig:
    """
    Initialize configuration with command-line overrides.

    Args:
        database: Database path override
        **kwargs: Other configuration overrides

    Returns:
        Configured instance
    """
    config = get_config()

    if database:
        config.database = database

    for key, value in kwargs.items():
        if hasattr(config, key) and value is not None:
            setattr(config, key, value)

    return config
