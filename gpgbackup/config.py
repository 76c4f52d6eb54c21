"""
Configuration for gpg-cloud-backup.

Settings are read once from a JSON file, overlaid with ``GPGBACKUP_*``
environment variables, and frozen into a Config instance that is passed to
every component.
"""

import json
import logging
import os
import socket
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ConfigError
from .models import RetentionPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = 'GPGBACKUP_'
CONFIG_ENV_VAR = 'GPGBACKUP_CONFIG'
DEFAULT_CONFIG_FILE = 'gpgbackup.json'

SUPPORTED_CODECS = ('zstd', 'gz')
REMOTE_BACKENDS = ('rclone', 's3')

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off', '')


def _short_hostname() -> str:
    return socket.gethostname().split('.')[0] or 'localhost'


@dataclass(frozen=True)
class Config:
    """Immutable run configuration."""

    backup_items: Tuple[str, ...] = ()
    backup_root: str = '~/cloud-backup'
    label: str = 'project'
    host_tag: str = ''
    compression: str = 'zstd'

    # GPG
    gpg_recipient_fpr: str = ''
    gpg_import_key_file: str = ''
    gpg_homedir: str = ''

    # Remote storage
    remote_backend: str = 'rclone'
    remote_name: str = 'onedrive'
    remote_dir: str = 'Backups'
    s3_region: str = ''
    s3_endpoint_url: str = ''

    # Retention (0 disables)
    local_retention_days: int = 7
    remote_retention_days: int = 14

    # Behavior
    keep_plaintext_archive: bool = False
    delete_encrypted_after_upload: bool = True

    def __post_init__(self):
        if not self.host_tag:
            object.__setattr__(self, 'host_tag', _short_hostname())

    @property
    def backup_root_path(self) -> Path:
        return Path(os.path.expanduser(self.backup_root)).absolute()

    def local_retention(self, enabled: bool = True) -> RetentionPolicy:
        return RetentionPolicy(enabled=enabled, max_age_days=self.local_retention_days)

    def remote_retention(self, enabled: bool = True) -> RetentionPolicy:
        return RetentionPolicy(enabled=enabled, max_age_days=self.remote_retention_days)


_FIELD_TYPES = {f.name: f.type for f in fields(Config)}


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_VALUES:
        return True
    if isinstance(value, str) and value.strip().lower() in _FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r} (use yes/no or true/false)")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid number of days for {key}: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid number of days for {key}: {value!r}")


def _coerce(key: str, value: Any) -> Any:
    """Convert a raw file or environment value to the type of field ``key``."""
    field_type = _FIELD_TYPES[key]

    if field_type in (bool, 'bool'):
        return _coerce_bool(key, value)
    if field_type in (int, 'int'):
        return _coerce_int(key, value)
    if key == 'backup_items':
        if isinstance(value, str):
            raise ConfigError("backup_items must be a list of paths, not a string")
        if not isinstance(value, (list, tuple)) or not all(isinstance(p, str) for p in value):
            raise ConfigError(f"backup_items must be a list of paths: {value!r}")
        return tuple(value)

    if value is None:
        return ''
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ConfigError(f"Invalid value for {key}: {value!r}")
    return str(value)


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigError(
            f"Config file not found: {path}",
            hint=f"Run with --init-config to create a starter config, then edit {path}"
        )

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file is not valid JSON: {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a JSON object: {path}")

    return data


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    overrides = {}
    for key in _FIELD_TYPES:
        if key == 'backup_items':
            continue
        env_key = ENV_PREFIX + key.upper()
        if env_key in environ:
            overrides[key] = environ[env_key]
    return overrides


def load_config(path: Path, environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Load configuration from a JSON file and the environment.

    Precedence is defaults < file < ``GPGBACKUP_<KEY>`` environment variables.

    Args:
        path: Path to the JSON config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Frozen Config

    Raises:
        ConfigError: If the file is missing or any value is invalid
    """
    if environ is None:
        environ = os.environ

    raw = _read_file(Path(path))

    values = {}
    for key, value in raw.items():
        if key not in _FIELD_TYPES:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        values[key] = _coerce(key, value)

    for key, value in _env_overrides(environ).items():
        logger.debug(f"Config override from environment: {key}")
        values[key] = _coerce(key, value)

    config = Config(**values)

    if config.remote_backend not in REMOTE_BACKENDS:
        raise ConfigError(
            f"Unsupported remote_backend={config.remote_backend} "
            f"(use {'|'.join(REMOTE_BACKENDS)})"
        )

    return config


def default_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    if environ is None:
        environ = os.environ
    return Path(environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)


STARTER_CONFIG = {
    "backup_items": ["/root/testfile.txt"],
    "backup_root": "~/cloud-backup",
    "label": "short-label",
    "host_tag": "",
    "compression": "zstd",
    "gpg_recipient_fpr": "",
    "gpg_import_key_file": "",
    "remote_backend": "rclone",
    "remote_name": "onedrive",
    "remote_dir": "Backups",
    "local_retention_days": 7,
    "remote_retention_days": 14,
    "keep_plaintext_archive": False,
    "delete_encrypted_after_upload": True,
}


def write_starter_config(path: Path) -> bool:
    """
    Create a starter config file.

    Returns:
        True if the file was written, False if it already existed
    """
    path = Path(path)
    if path.exists():
        logger.warning(f"Config exists: {path} (not overwriting)")
        return False

    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w', encoding='utf-8') as f:
        json.dump(STARTER_CONFIG, f, indent=2)
        f.write('\n')

    logger.info(f"Starter config created at: {path}")
    return True
