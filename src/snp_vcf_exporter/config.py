"""Configuration file support for snp-vcf-exporter."""

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .batch import EXECUTORS
from .vcf_builder import DEFAULT_SAMPLE_NAME

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

CONFIG_TABLE = "snp_vcf_exporter"


@dataclass
class ExportConfig:
    """Settings for exports, from a TOML file and/or CLI options."""

    workers: int | None = None
    executor: str = "process"
    compress: bool = False
    sample_name: str = DEFAULT_SAMPLE_NAME
    panel_path: Path | None = None
    output_dir: Path = Path(".")
    drop_strand_ambiguous: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        if isinstance(self.panel_path, str):
            self.panel_path = Path(self.panel_path)
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        self.log_level = self.log_level.upper()


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


def _require_type(config_dict: dict[str, Any], key: str, expected: type | tuple) -> None:
    if key in config_dict and not isinstance(config_dict[key], expected):
        names = (
            "/".join(t.__name__ for t in expected)
            if isinstance(expected, tuple)
            else expected.__name__
        )
        raise ConfigValidationError(
            f"{key} must be {names}, got {type(config_dict[key]).__name__}"
        )


def validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values.

    Raises:
        ConfigValidationError: If any configuration value is invalid.
    """
    if "workers" in config_dict and config_dict["workers"] is not None:
        workers = config_dict["workers"]
        if not isinstance(workers, int) or isinstance(workers, bool):
            raise ConfigValidationError(f"workers must be an integer, got {type(workers).__name__}")
        if workers <= 0:
            raise ConfigValidationError(f"workers must be positive, got {workers}")

    if "executor" in config_dict:
        executor = config_dict["executor"]
        if executor not in EXECUTORS:
            raise ConfigValidationError(f"executor must be one of {EXECUTORS}, got '{executor}'")

    for key in ("compress", "drop_strand_ambiguous"):
        _require_type(config_dict, key, bool)

    for key in ("panel_path", "output_dir"):
        if config_dict.get(key) is not None:
            _require_type(config_dict, key, (str, Path))

    if "sample_name" in config_dict:
        _require_type(config_dict, "sample_name", str)
        if not config_dict["sample_name"].strip():
            raise ConfigValidationError("sample_name must not be empty")

    if "log_level" in config_dict:
        log_level = config_dict["log_level"]
        if not isinstance(log_level, str):
            raise ConfigValidationError(
                f"log_level must be a string, got {type(log_level).__name__}"
            )
        if log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigValidationError(
                f"log_level must be one of {VALID_LOG_LEVELS}, got '{log_level}'"
            )


def load_config(config_path: Path | None, overrides: dict[str, Any] | None = None) -> ExportConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML configuration file, or None for defaults.
        overrides: Values that win over the file (None values are ignored).

    Returns:
        ExportConfig instance with loaded values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ConfigValidationError: If any configuration value is invalid.
    """
    config_dict: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as f:
            try:
                toml_data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigValidationError(f"Invalid TOML in {config_path}: {e}") from e

        config_dict = dict(toml_data.get(CONFIG_TABLE, {}))
        logger.debug("Loaded configuration from %s", config_path)

    if overrides:
        config_dict.update({k: v for k, v in overrides.items() if v is not None})

    validate_config(config_dict)

    valid_fields = {
        "workers",
        "executor",
        "compress",
        "sample_name",
        "panel_path",
        "output_dir",
        "drop_strand_ambiguous",
        "log_level",
    }

    ignored = sorted(set(config_dict) - valid_fields)
    if ignored:
        logger.debug("Ignoring unknown configuration keys: %s", ", ".join(ignored))

    filtered_config = {k: v for k, v in config_dict.items() if k in valid_fields}

    return ExportConfig(**filtered_config)
