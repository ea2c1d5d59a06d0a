"""Compiler configuration.

Configuration is loaded from a YAML file (``tickfsm.yaml`` by default),
overlaid with environment variables, and validated before any compilation
starts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from tickfsm.utils.result import ConfigError, Err, Ok, Result

DEFAULT_CONFIG_FILE = "tickfsm.yaml"
ENV_OUTPUT_DIR = "TICKFSM_OUTPUT_DIR"
ENV_LOG_LEVEL = "TICKFSM_LOG_LEVEL"

LOG_LEVELS = ("debug", "info", "warn", "warning", "error")
LOG_FORMATS = ("json", "text")


@dataclass
class OutputConfig:
    """Where and how generated modules are written."""

    directory: Path = Path("generated")
    class_suffix: str = "StateMachine"
    module_suffix: str = "_state_machine"


@dataclass
class ValidationConfig:
    """Validator behavior."""

    warnings_as_errors: bool = False
    warn_dead_ends: bool = True
    warn_shadowed: bool = True


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "warning"
    format: str = "text"


@dataclass
class CompilerConfig:
    """
    Complete compiler configuration.

    Every setting has a default, so an empty or missing config file is valid.
    """

    output: OutputConfig = field(default_factory=OutputConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Set at runtime
    config_file: Optional[Path] = None

    @classmethod
    def from_yaml(cls, path: Path) -> Result["CompilerConfig", ConfigError]:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Result with loaded config or error
        """
        path = Path(path)

        if not path.exists():
            return Err(ConfigError(
                field="path",
                message=f"Configuration file not found: {path}",
            ))

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            return Err(ConfigError(
                field="yaml",
                message=f"Failed to parse YAML: {e}",
            ))
        except OSError as e:
            return Err(ConfigError(
                field="file",
                message=f"Failed to read config file: {e}",
            ))

        result = cls.from_dict(data)
        if result.is_ok():
            config = result.unwrap()
            config.config_file = path
            # Relative output directories are relative to the config file
            if not config.output.directory.is_absolute():
                config.output.directory = path.parent / config.output.directory
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Result["CompilerConfig", ConfigError]:
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Result with loaded config or error
        """
        if not isinstance(data, dict):
            return Err(ConfigError(field="root", message="Configuration must be a mapping"))

        for section in ("output", "validation", "logging"):
            if not isinstance(data.get(section, {}), dict):
                return Err(ConfigError(field=section, message="Must be a mapping"))

        output_data = data.get("output", {})
        for name in ("directory", "class_suffix", "module_suffix"):
            value = output_data.get(name, "")
            if not isinstance(value, str):
                return Err(ConfigError(
                    field=f"output.{name}",
                    message=f"Must be a string, got {value!r}",
                ))
        if output_data.get("directory") == "":
            return Err(ConfigError(field="output.directory", message="Must not be empty"))

        output = OutputConfig(
            directory=Path(output_data.get("directory", "generated")),
            class_suffix=output_data.get("class_suffix", "StateMachine"),
            module_suffix=output_data.get("module_suffix", "_state_machine"),
        )

        validation_data = data.get("validation", {})
        validation = ValidationConfig(
            warnings_as_errors=validation_data.get("warnings_as_errors", False),
            warn_dead_ends=validation_data.get("warn_dead_ends", True),
            warn_shadowed=validation_data.get("warn_shadowed", True),
        )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=str(logging_data.get("level", "warning")),
            format=str(logging_data.get("format", "text")),
        )

        config = cls(output=output, validation=validation, logging=logging_config)
        validation_result = config.validate()
        if validation_result.is_err():
            return Err(validation_result.unwrap_err())
        return Ok(config)

    def validate(self) -> Result[None, ConfigError]:
        """
        Validate configuration values.

        Returns:
            Result indicating success or validation error
        """
        if not f"C{self.output.class_suffix}".isidentifier():
            return Err(ConfigError(
                field="output.class_suffix",
                message=f"Must be usable in a class name, got {self.output.class_suffix!r}",
            ))
        if self.output.module_suffix and not f"m{self.output.module_suffix}".isidentifier():
            return Err(ConfigError(
                field="output.module_suffix",
                message=f"Must be usable in a module name, got {self.output.module_suffix!r}",
            ))

        for name in ("warnings_as_errors", "warn_dead_ends", "warn_shadowed"):
            value = getattr(self.validation, name)
            if not isinstance(value, bool):
                return Err(ConfigError(
                    field=f"validation.{name}",
                    message=f"Must be a boolean, got {value!r}",
                ))

        if self.logging.level.lower() not in LOG_LEVELS:
            return Err(ConfigError(
                field="logging.level",
                message=f"Must be one of {', '.join(LOG_LEVELS)}, got {self.logging.level!r}",
            ))
        if self.logging.format.lower() not in LOG_FORMATS:
            return Err(ConfigError(
                field="logging.format",
                message=f"Must be one of {', '.join(LOG_FORMATS)}, got {self.logging.format!r}",
            ))

        return Ok(None)

    def with_output_dir(self, directory: Path) -> "CompilerConfig":
        """Return a new config writing to another directory."""
        return replace(self, output=replace(self.output, directory=Path(directory)))

    def apply_env(self, environ: Optional[dict[str, str]] = None) -> "CompilerConfig":
        """Return a new config with environment overrides applied."""
        environ = os.environ if environ is None else environ
        config = self

        output_dir = environ.get(ENV_OUTPUT_DIR)
        if output_dir:
            config = config.with_output_dir(Path(output_dir))

        log_level = environ.get(ENV_LOG_LEVEL)
        if log_level:
            config = replace(config, logging=replace(config.logging, level=log_level))

        return config


def load_config(
    path: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
) -> Result[CompilerConfig, ConfigError]:
    """
    Load configuration from the standard location.

    Uses ``path`` when given (it must exist), otherwise ``./tickfsm.yaml``
    if present, otherwise defaults. Environment overrides are applied last.

    Args:
        path: Explicit configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Result with loaded config or error
    """
    if path is not None:
        result = CompilerConfig.from_yaml(Path(path))
        if result.is_err():
            return result
        config = result.unwrap()
    elif Path(DEFAULT_CONFIG_FILE).exists():
        result = CompilerConfig.from_yaml(Path(DEFAULT_CONFIG_FILE))
        if result.is_err():
            return result
        config = result.unwrap()
    else:
        config = CompilerConfig()

    config = config.apply_env(environ)

    validation_result = config.validate()
    if validation_result.is_err():
        return Err(validation_result.unwrap_err())

    return Ok(config)
