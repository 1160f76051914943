"""
docqueue Configuration Management

This module loads the YAML configuration used by the job processing core.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from docqueue.exceptions import ConfigurationError

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'default_config.yaml'
USER_CONFIG_PATH = Path.home() / '.docqueue' / 'config.yaml'

REQUIRED_SECTIONS = ['database', 'redis', 'processor', 'health', 'providers', 'logging']


class QueueConfig:
    """
    Configuration for the docqueue processing core

    Defaults come from the packaged default_config.yaml and are deep-merged
    with an optional user file and then with explicit overrides.
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        config_file: Optional[Union[str, Path]] = None
    ):
        """
        Initialize configuration

        Args:
            overrides: Values merged on top of defaults and the config file
            config_file: Optional YAML file. Falls back to ~/.docqueue/config.yaml
                when that file exists.
        """
        with open(DEFAULT_CONFIG_PATH, 'r') as f:
            self.config: Dict[str, Any] = yaml.safe_load(f)

        if config_file is not None:
            self.config_file = Path(config_file).expanduser()
            self._load_config()
        elif USER_CONFIG_PATH.exists():
            self.config_file = USER_CONFIG_PATH
            self._load_config()
        else:
            self.config_file = None

        if overrides:
            self._update_config_recursive(self.config, overrides)

        self._validate_config()

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'QueueConfig':
        """Load configuration from file

        Args:
            config_path: Path to configuration file

        Returns:
            QueueConfig instance
        """
        return cls(config_file=config_path)

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> 'QueueConfig':
        """Create configuration from a dictionary of overrides"""
        return cls(overrides=config)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value

        Args:
            key: Configuration key (dot notation, e.g. 'processor.batch_size')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        try:
            value = self.config
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value

        Args:
            key: Configuration key (dot notation)
            value: Configuration value
        """
        keys = key.split('.')
        config = self.config
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
        logger.debug(f"Set configuration {key}={value}")

    def update(self, config: Dict[str, Any]) -> None:
        """Deep-update configuration with new values and re-validate"""
        self._update_config_recursive(self.config, config)
        self._validate_config()

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get a copy of a top-level configuration section"""
        return copy.deepcopy(self.config.get(section, {}))

    def to_dict(self) -> Dict[str, Any]:
        """Get all configuration"""
        return copy.deepcopy(self.config)

    def validate(self) -> bool:
        """Validate configuration"""
        try:
            self._validate_config()
            return True
        except ConfigurationError as e:
            logger.error(f"Configuration validation failed: {str(e)}")
            return False

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Save configuration to file

        Args:
            path: Target file, defaults to the file the configuration was loaded from
                or ~/.docqueue/config.yaml

        Returns:
            Path written
        """
        target = Path(path) if path else (self.config_file or USER_CONFIG_PATH)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w') as f:
            yaml.safe_dump(self.config, f, default_flow_style=False)
        logger.info(f"Configuration saved to {target}")
        return target

    def _load_config(self) -> None:
        """Load configuration from self.config_file"""
        if not self.config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_file}")

        try:
            with open(self.config_file, 'r') as f:
                file_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {str(e)}") from e

        if file_config is None:
            raise ConfigurationError(f"Configuration file is empty: {self.config_file}")
        if not isinstance(file_config, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        self._update_config_recursive(self.config, file_config)
        logger.info(f"Configuration loaded from {self.config_file}")

    def _validate_config(self) -> None:
        """Validate configuration structure and values"""
        if not isinstance(self.config, dict):
            raise ConfigurationError("Configuration must be a dictionary")

        for section in REQUIRED_SECTIONS:
            if not isinstance(self.config.get(section), dict):
                raise ConfigurationError(f"Missing required configuration section: {section}")

        db_type = self.config['database'].get('type')
        if db_type not in ('sqlite', 'postgresql', 'postgres'):
            raise ConfigurationError(f"Unsupported database type: {db_type}")

        if not self.config['redis'].get('url'):
            raise ConfigurationError("Redis url not specified")

        level = str(self.config['logging'].get('level', 'INFO')).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigurationError(f"Invalid logging level: {level}")

    def _update_config_recursive(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Update configuration recursively"""
        for key, value in update.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                self._update_config_recursive(base[key], value)
            else:
                base[key] = value


def setup_logging(config: QueueConfig) -> logging.Logger:
    """
    Configure the docqueue logger from the `logging` section

    Args:
        config: Loaded configuration

    Returns:
        The package root logger
    """
    logging_config = config.get_section('logging')
    level = getattr(logging, str(logging_config.get('level', 'INFO')).upper())
    fmt = logging_config.get('format') or '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    root = logging.getLogger('docqueue')
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(stream_handler)

    log_file = logging_config.get('file')
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(file_handler)

    return root
