"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DATA_ROOT_ENV_VAR = "CHAT_STRATA_DATA_ROOT"


@dataclass
class LoggingConfig:
    dir: Path = field(default_factory=lambda: Path.home() / "chat-strata" / "logs")
    level: str = "INFO"


@dataclass
class ImporterConfig:
    retain_package: bool = False
    lock_timeout_seconds: float = 0.0
    hash_workers: int = 4


@dataclass
class Config:
    data_root: Path = field(default_factory=lambda: Path.home() / "chat-strata" / "data")
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    importer: ImporterConfig = field(default_factory=ImporterConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file.

    The CHAT_STRATA_DATA_ROOT environment variable, when set, overrides the
    data root from the file.
    """
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "chat-strata" / "config.yaml",
            Path("/etc/chat-strata/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        config = Config()
    else:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        config = _config_from_dict(data)

    env_root = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_root:
        config.data_root = expand_path(env_root)

    return config


def _config_from_dict(data: dict) -> Config:
    defaults = Config()

    data_root = expand_env_var(str(data.get("data_root", defaults.data_root)))

    logging_data = data.get("logging", {}) or {}
    logging_config = LoggingConfig(
        dir=expand_path(str(logging_data.get("dir", defaults.logging.dir))),
        level=str(logging_data.get("level", defaults.logging.level)).upper(),
    )

    importer_data = data.get("importer", {}) or {}
    importer = ImporterConfig(
        retain_package=bool(importer_data.get("retain_package", False)),
        lock_timeout_seconds=float(importer_data.get("lock_timeout_seconds", 0)),
        hash_workers=max(1, int(importer_data.get("hash_workers", 4))),
    )

    return Config(
        data_root=expand_path(data_root),
        logging=logging_config,
        importer=importer,
    )
