"""
Configuration management for dll-depends.

Settings come from defaults, an optional JSON/YAML config file, environment
variables, and finally command-line options (applied by the CLI).
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

from .error_handling import ConfigurationError

console = Console(stderr=True)

EXTRACTOR_BACKENDS = ("dumpbin", "pefile")
OUTPUT_FORMATS = ("console", "json")


@dataclass
class ResolveConfig:
    """Module search and graph limits."""

    search_paths: List[str] = field(default_factory=list)
    use_system_path: bool = True
    skip_system: bool = False
    max_modules: int = 5000


@dataclass
class ExtractorConfig:
    """Import extractor configuration."""

    backend: str = "dumpbin"
    dumpbin_path: Optional[str] = None
    timeout_seconds: float = 30.0
    max_concurrent: int = 8
    visual_studio_roots: List[str] = field(
        default_factory=lambda: [
            "C:/Program Files/Microsoft Visual Studio",
            "C:/Program Files (x86)/Microsoft Visual Studio",
        ]
    )


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    structured: bool = True


@dataclass
class OutputConfig:
    """Rendering configuration."""

    tree_print: bool = False
    output_format: str = "console"


@dataclass
class DependsConfig:
    """Main configuration containing all subsections."""

    resolve: ResolveConfig = field(default_factory=ResolveConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config_values(config: DependsConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Values loaded from files are untyped, so types are checked before ranges.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if not _is_integer(config.resolve.max_modules):
        errors.append("resolve.max_modules must be an integer")
    elif config.resolve.max_modules <= 0:
        errors.append("resolve.max_modules must be positive")
    if not isinstance(config.resolve.search_paths, list) or not all(
        isinstance(p, str) for p in config.resolve.search_paths
    ):
        errors.append("resolve.search_paths must be a list of directories")
    for key in ("use_system_path", "skip_system"):
        if not isinstance(getattr(config.resolve, key), bool):
            errors.append(f"resolve.{key} must be true or false")

    if config.extractor.backend not in EXTRACTOR_BACKENDS:
        errors.append(
            f"extractor.backend must be one of {', '.join(EXTRACTOR_BACKENDS)}"
        )
    if config.extractor.dumpbin_path is not None and not isinstance(
        config.extractor.dumpbin_path, str
    ):
        errors.append("extractor.dumpbin_path must be a path")
    if not _is_number(config.extractor.timeout_seconds):
        errors.append("extractor.timeout_seconds must be a number")
    elif config.extractor.timeout_seconds <= 0:
        errors.append("extractor.timeout_seconds must be positive")
    if not _is_integer(config.extractor.max_concurrent):
        errors.append("extractor.max_concurrent must be an integer")
    elif config.extractor.max_concurrent <= 0:
        errors.append("extractor.max_concurrent must be positive")
    if not isinstance(config.extractor.visual_studio_roots, list):
        errors.append("extractor.visual_studio_roots must be a list of directories")

    log_level = config.logging.log_level
    if not isinstance(log_level, str) or log_level.upper() not in (
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    ):
        errors.append(f"logging.log_level is not a valid level: {log_level}")
    if not isinstance(config.logging.log_format, str):
        errors.append("logging.log_format must be a string")
    if not isinstance(config.logging.structured, bool):
        errors.append("logging.structured must be true or false")

    if not isinstance(config.output.tree_print, bool):
        errors.append("output.tree_print must be true or false")
    if config.output.output_format not in OUTPUT_FORMATS:
        errors.append(f"output.output_format must be one of {', '.join(OUTPUT_FORMATS)}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                return yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".dll-depends.json",
        Path.cwd() / ".dll-depends.yaml",
        Path.cwd() / ".dll-depends.yml",
        Path.home() / ".config" / "dll-depends" / "config.json",
        Path.home() / ".config" / "dll-depends" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: DependsConfig) -> None:
    """Load environment variable overrides."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if dumpbin := os.environ.get("DLL_DEPENDS_DUMPBIN"):
        config.extractor.dumpbin_path = dumpbin
    if backend := os.environ.get("DLL_DEPENDS_BACKEND"):
        config.extractor.backend = backend.lower()
    if (timeout := get_env_float("DLL_DEPENDS_TIMEOUT")) is not None:
        config.extractor.timeout_seconds = timeout
    if (max_concurrent := get_env_int("DLL_DEPENDS_MAX_CONCURRENT")) is not None:
        config.extractor.max_concurrent = max_concurrent

    if (max_modules := get_env_int("DLL_DEPENDS_MAX_MODULES")) is not None:
        config.resolve.max_modules = max_modules
    search_path = os.environ.get("DLL_DEPENDS_SEARCH_PATH")
    if search_path and isinstance(config.resolve.search_paths, list):
        config.resolve.search_paths.extend(
            entry for entry in search_path.split(os.pathsep) if entry
        )
    config.resolve.skip_system = get_env_bool(
        "DLL_DEPENDS_SKIP_SYSTEM", config.resolve.skip_system
    )

    if log_level := os.environ.get("DLL_DEPENDS_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """
    Apply configuration from dictionary to config section.

    Raises:
        ConfigurationError: If the section is not a mapping
    """
    if not isinstance(section_data, dict):
        raise ConfigurationError(
            f"Config section '{section_name}' must be a mapping, "
            f"got {type(section_data).__name__}"
        )
    for key, value in section_data.items():
        if isinstance(key, str) and hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def load_config(config_file: Optional[Path] = None) -> DependsConfig:
    """
    Load configuration from file and environment.

    Args:
        config_file: Explicit config file; standard locations are searched if None

    Returns:
        DependsConfig: Loaded configuration (values not validated)

    Raises:
        ConfigurationError: If the file does not have the expected layout
    """
    config = DependsConfig()

    if config_file is None:
        config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config is not None and not isinstance(file_config, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")
        if file_config:
            for section_name in ("resolve", "extractor", "logging", "output"):
                if file_config.get(section_name) is not None:
                    apply_config_section(
                        getattr(config, section_name),
                        file_config[section_name],
                        section_name,
                    )

    load_environment_overrides(config)
    return config


def create_sample_config() -> str:
    """Generate sample configuration."""
    sample_config = {
        "resolve": {
            "search_paths": [],
            "use_system_path": True,
            "skip_system": False,
            "max_modules": 5000,
        },
        "extractor": {
            "backend": "dumpbin",
            "dumpbin_path": None,
            "timeout_seconds": 30.0,
            "max_concurrent": 8,
        },
        "logging": {"log_level": "WARNING", "structured": True},
        "output": {"tree_print": False, "output_format": "console"},
    }

    return json.dumps(sample_config, indent=2)
