# apm_agent/utils/config.py - Configuration management
"""
Configuration management for the agent.
Loads settings from YAML files and APM_* environment variables.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Mapping, Optional
import logging


class Config:
    """
    Configuration manager for the agent.

    Values are read live, so options changed while an execution runs are
    honoured when it is reported.
    """

    DEFAULT_CONFIG = {
        'apm': {
            'enable': False,
            'host': 'http://localhost:8200',
            'secret_token': '',
            'service_name': '',
            'log': '',
            'timeout': 0.5,
            'max_batch_bytes': 102400,
        },
        'metrics': {
            'port': None,
        },
        'logging': {
            'level': 'WARNING',
        },
    }

    # Environment variable -> (key, type)
    ENV_OPTIONS = {
        'APM_ENABLE': ('apm.enable', bool),
        'APM_HOST': ('apm.host', str),
        'APM_SECRET_TOKEN': ('apm.secret_token', str),
        'APM_SERVICE_NAME': ('apm.service_name', str),
        'APM_LOG': ('apm.log', str),
        'APM_TIMEOUT': ('apm.timeout', float),
        'APM_MAX_BATCH_BYTES': ('apm.max_batch_bytes', int),
        'APM_METRICS_PORT': ('metrics.port', int),
        'APM_LOG_LEVEL': ('logging.level', str),
    }

    TRUE_VALUES = ('1', 'true', 'yes', 'on')

    def __init__(self, config_file: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
            environ: Environment to read APM_* overrides from (default: none)
        """
        self.logger = logging.getLogger(__name__)
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)

        if config_file:
            self.load_from_file(config_file)

        if environ is not None:
            self.load_from_env(environ)

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "Config":
        """Configuration from an optional file plus the process environment"""
        return cls(config_file or os.environ.get('APM_CONFIG_FILE'), environ=os.environ)

    def load_from_file(self, config_file: str):
        """
        Load configuration from YAML file.

        Args:
            config_file: Path to YAML file
        """
        config_path = Path(config_file)

        if not config_path.exists():
            self.logger.warning(f"Config file not found: {config_file}, using defaults")
            return

        try:
            with open(config_path, 'r') as f:
                loaded_config = yaml.safe_load(f) or {}

            self._merge_config(self.config, loaded_config)
            self.logger.info(f"Loaded configuration from {config_file}")

        except (OSError, yaml.YAMLError) as e:
            self.logger.error(f"Failed to load config: {e}")
            raise

    def load_from_env(self, environ: Mapping[str, str]):
        """
        Apply APM_* environment overrides.

        Args:
            environ: Environment mapping
        """
        for name, (key, kind) in self.ENV_OPTIONS.items():
            if name not in environ:
                continue

            raw = environ[name]
            try:
                if kind is bool:
                    value = raw.strip().lower() in self.TRUE_VALUES
                else:
                    value = kind(raw)
            except ValueError:
                self.logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
                continue

            self.set(key, value)

    def _merge_config(self, base: Dict, override: Dict):
        """
        Recursively merge configuration dictionaries.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'apm.service_name')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """
        Set configuration value by dot-notation key.

        Args:
            key: Configuration key (e.g., 'apm.enable')
            value: Value to set
        """
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def to_dict(self) -> Dict:
        """
        Get full configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self.config)

    def to_yaml(self, redact: bool = True) -> str:
        """
        Render the configuration as YAML.

        Args:
            redact: Mask the secret token
        """
        data = self.to_dict()
        if redact and data.get('apm', {}).get('secret_token'):
            data['apm']['secret_token'] = '********'
        return yaml.safe_dump(data, default_flow_style=False)
