"""
Configuration management for chunkrun jobs.

Loads and validates a job YAML file:

    job:
      name: import_people
      incrementer: run_id
      restartable: true
    steps:
      - name: load_people
        chunk_size: 10
        source: {type: csv, path: sample-data.csv, fields: [first_name, last_name]}
        transform: {type: uppercase, fields: [first_name]}
        sink: {type: sqlite, database: people.db, sql: "INSERT ..."}
        skip_policy: {skip_malformed: true}
    logging: {level: INFO, format: pretty}
    store: {path: .chunkrun/runs}

Relative paths are resolved against the directory holding the config file.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from chunkrun.errors import ConfigError
from chunkrun.schemas import SkipPolicy

PATH_KEYS = ("path", "database", "init_sql_file")


class StepConfig:
    """Configuration for a single step."""

    def __init__(self, data: Dict[str, Any], base_dir: Path):
        if not isinstance(data, dict):
            raise ConfigError(f"Step entry must be a mapping, got {type(data).__name__}")
        self.name = data.get("name")
        self.chunk_size = data.get("chunk_size", 10)
        self.chunk_timeout_s = data.get("chunk_timeout_s")
        self.source = _resolve_paths(data.get("source") or {}, base_dir)
        self.transform = data.get("transform") or {"type": "identity"}
        self.sink = _resolve_paths(data.get("sink") or {}, base_dir)
        self.skip_policy = data.get("skip_policy") or {}

    def validate(self) -> None:
        """Validate step configuration."""
        if not self.name:
            raise ConfigError("Step is missing 'name'")

        if not isinstance(self.chunk_size, int) or isinstance(self.chunk_size, bool) or self.chunk_size < 1:
            raise ConfigError(f"Step {self.name}: chunk_size must be a positive integer")

        timeout = self.chunk_timeout_s
        if timeout is not None and (
            not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0
        ):
            raise ConfigError(f"Step {self.name}: chunk_timeout_s must be a positive number")

        if not isinstance(self.skip_policy, dict):
            raise ConfigError(f"Step {self.name}: skip_policy must be a mapping")
        try:
            SkipPolicy.from_dict(self.skip_policy)
        except ConfigError as e:
            raise ConfigError(f"Step {self.name}: skip_policy: {e}") from e

        for section in ("source", "sink"):
            value = getattr(self, section)
            if not value:
                raise ConfigError(f"Step {self.name}: missing '{section}'")
            if not value.get("type"):
                raise ConfigError(f"Step {self.name}: {section} is missing 'type'")

        if not self.transform.get("type"):
            raise ConfigError(f"Step {self.name}: transform is missing 'type'")

    def __repr__(self) -> str:
        return f"StepConfig(name={self.name}, chunk_size={self.chunk_size})"


class JobConfig:
    """Complete job configuration."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.base_dir = self.config_path.resolve().parent
        self.raw_config = self._load_yaml()

        # Job metadata
        job = self.raw_config.get("job") or {}
        self.name = job.get("name", "")
        self.description = job.get("description", "")
        self.incrementer = job.get("incrementer")
        self.restartable = job.get("restartable", True)

        # Steps
        steps_data = self.raw_config.get("steps") or []
        if not isinstance(steps_data, list):
            raise ConfigError("'steps' must be a list")
        self.steps: List[StepConfig] = [StepConfig(s, self.base_dir) for s in steps_data]

        # Logging
        self.logging = self.raw_config.get("logging") or {}

        # Run store
        self.store = self.raw_config.get("store") or {}

    def _load_yaml(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {e}")

        if not config:
            raise ConfigError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ConfigError("Configuration root must be a mapping")
        return config

    def get_step(self, name: str) -> Optional[StepConfig]:
        """Get step configuration by name."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def get_store_path(self) -> Path:
        """Get run store directory (relative to the config file)."""
        path = Path(self.store.get("path", ".chunkrun/runs"))
        return path if path.is_absolute() else self.base_dir / path

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation, or None if file logging is off."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        path = Path(log_output)
        return path if path.is_absolute() else self.base_dir / path

    def get_log_level(self) -> str:
        """Get logging level."""
        return self.logging.get("level", "INFO").upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return self.logging.get("console", True)

    def validate(self) -> None:
        """Validate entire configuration."""
        if not self.name:
            raise ConfigError("Job name is required (job.name)")

        if self.incrementer not in (None, "run_id"):
            raise ConfigError(f"Unknown incrementer: {self.incrementer}")

        if not self.steps:
            raise ConfigError(f"Job {self.name} has no steps")

        names = [s.name for s in self.steps]
        if len(names) != len(set(names)):
            raise ConfigError(f"Job {self.name} has duplicate step names: {names}")

        for step in self.steps:
            try:
                step.validate()
            except ConfigError as e:
                raise ConfigError(f"Step '{step.name}' validation failed: {e}")

        if self.get_log_format() not in ("structured", "pretty"):
            raise ConfigError(f"Unknown log format: {self.get_log_format()}")

    def __repr__(self) -> str:
        return f"JobConfig(name={self.name}, steps={len(self.steps)})"


def _resolve_paths(section: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    """Resolve relative file paths in a source/sink section against base_dir."""
    resolved = dict(section)
    for key in PATH_KEYS:
        value = resolved.get(key)
        if value and value != ":memory:" and not Path(value).is_absolute():
            resolved[key] = str(base_dir / value)
    return resolved


def load_config(config_path: Path | str) -> JobConfig:
    """
    Load and validate a job configuration from a YAML file.

    Args:
        config_path: Path to the job config file

    Returns:
        JobConfig instance

    Raises:
        ConfigError: If config is invalid or missing
    """
    config = JobConfig(Path(config_path))
    config.validate()
    return config
