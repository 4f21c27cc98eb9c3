"""
Configuration for bolter.

Settings are layered: built-in defaults, then an optional YAML file, then
environment variables, then explicit overrides (command-line flags). The
result is a plain BolterConfig passed into every operation; nothing is kept
at module level between invocations.

Example ``~/.config/bolter/config.yaml``::

    registry: registry.example.com:5000
    insecure: false
    auth_backend: token
    cache_dir: ~/.cache/bolter
    logging:
      level: INFO
      format: text
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .cache import default_cache_dir
from .errors import ConfigurationError

CONFIG_ENV = "BOLTER_CONFIG"

_TRUE_VALUES = ("1", "true", "yes", "on")

AUTH_BACKENDS = ("token", "basic")


@dataclass
class BolterConfig:
    """Settings shared by all bolter operations."""
    registry: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    insecure: bool = False
    verbose: bool = False
    cache_dir: Optional[Path] = None
    docker_config: Optional[Path] = None
    auth_backend: str = "token"
    log_level: str = "WARNING"
    log_format: str = "text"

    def __post_init__(self):
        if self.auth_backend not in AUTH_BACKENDS:
            raise ConfigurationError(
                f"Unknown auth backend: {self.auth_backend} (expected one of {', '.join(AUTH_BACKENDS)})"
            )
        if self.cache_dir is None:
            self.cache_dir = default_cache_dir()
        self.cache_dir = Path(self.cache_dir).expanduser()
        if self.docker_config is not None:
            self.docker_config = Path(self.docker_config).expanduser()

    @property
    def effective_log_level(self) -> int:
        if self.verbose:
            return logging.DEBUG
        return getattr(logging, str(self.log_level).upper(), logging.WARNING)


def default_config_path() -> Path:
    if os.environ.get(CONFIG_ENV):
        return Path(os.environ[CONFIG_ENV]).expanduser()
    return Path.home() / ".config" / "bolter" / "config.yaml"


def _load_file(path: Path, required: bool) -> Dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Configuration file not found: {path}")
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML configuration: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration in {path} must be a mapping")

    settings: Dict[str, Any] = {}
    for key in ("registry", "insecure", "cache_dir", "docker_config", "auth_backend"):
        if data.get(key) is not None:
            settings[key] = data[key]

    log_config = data.get("logging") or {}
    if log_config.get("level"):
        settings["log_level"] = log_config["level"]
    if log_config.get("format"):
        settings["log_format"] = log_config["format"]
    return settings


def _load_env() -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    if os.environ.get("BOLTER_REGISTRY"):
        settings["registry"] = os.environ["BOLTER_REGISTRY"]
    if os.environ.get("BOLTER_CACHE_DIR"):
        settings["cache_dir"] = os.environ["BOLTER_CACHE_DIR"]
    if os.environ.get("BOLTER_INSECURE"):
        settings["insecure"] = os.environ["BOLTER_INSECURE"].lower() in _TRUE_VALUES
    return settings


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> BolterConfig:
    """
    Build the effective configuration.

    Args:
        path: YAML config file; an explicit path must exist, the default
            location is optional
        **overrides: Field values that take precedence over file and
            environment; None values are ignored

    Returns:
        Effective configuration

    Raises:
        ConfigurationError: If the file is missing (explicit path only),
            unreadable, or not valid YAML
    """
    config_path = Path(path).expanduser() if path else default_config_path()
    settings = _load_file(config_path, required=path is not None)
    settings.update(_load_env())

    known = {f.name for f in fields(BolterConfig)}
    for key, value in overrides.items():
        if key not in known:
            raise ConfigurationError(f"Unknown configuration option: {key}")
        if value is not None:
            settings[key] = value

    if isinstance(settings.get("insecure"), str):
        settings["insecure"] = settings["insecure"].lower() in _TRUE_VALUES

    return BolterConfig(**settings)


def setup_logging(config: BolterConfig) -> logging.Logger:
    """Attach a stderr handler to the ``bolter`` logger."""
    logger = logging.getLogger("bolter")
    logger.setLevel(config.effective_log_level)

    if not logger.handlers:
        handler = logging.StreamHandler()

        if config.log_format == "json":
            formatter = logging.Formatter(
                '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
                '"component": "%(name)s", "message": "%(message)s"}'
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s [%(levelname)s] bolter: %(message)s'
            )

        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
