"""YAML configuration with credentials from the environment or a local .env file"""

import logging
import os
from typing import Any, Dict, Tuple

import yaml

from .settings import Settings

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("app_id", "app_secret", "serial_number", "charge_rate_kw")
# config key -> environment variable
CREDENTIAL_ENV = {"app_id": "APP_ID", "app_secret": "APP_SECRET", "serial_number": "SERIAL_NUMBER"}


def load_env(env_path: str = '.env') -> None:
    """Export KEY=value lines from env_path; variables already set are kept"""
    if not os.path.exists(env_path):
        return
    with open(env_path) as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            os.environ.setdefault(key.strip(), value.strip().strip('"\''))


def load_config(config_path: str) -> Tuple[Dict[str, Any], int, Settings]:
    """Read the YAML file and split it into device/price options, settings version and Settings"""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must hold a mapping")

    for key, env_key in CREDENTIAL_ENV.items():
        if os.environ.get(env_key):
            data[key] = os.environ[env_key]

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ValueError(f"Missing config keys in {config_path}: {', '.join(missing)}")

    block = data.pop('settings', None) or {}
    if not isinstance(block, dict):
        raise ValueError("settings must be a mapping")
    block = dict(block)
    version = int(block.pop('settings_version', 0))
    settings = Settings.from_dict(block)

    logger.debug(f"config.loaded path={config_path} settings_version={version} keys={sorted(data)}")
    return data, version, settings


class Config:
    def __init__(self, config_path: str):
        self.config_path = config_path
        load_env()
        self.data, self.settings_version, self._settings = load_config(config_path)

    def settings(self) -> Settings:
        """Dispatch policy from the settings block, before migration"""
        return self._settings

    def __getitem__(self, key):
        return self.data[key]

    def get(self, key, default=None):
        return self.data.get(key, default)
