"""
Configuration loader for USBRelay.
Loads driver settings and serial number aliases from a YAML file.

Expected YAML structure:
usbrelay:
  settings:
    max_relays: 8              # Largest relay count accepted, 1-8, default: 8
    report_id_prefix: auto     # auto, true or false, default: auto
    skip_unchanged: false      # Skip commands when the verified state already matches
    log_level: INFO            # DEBUG, INFO, WARNING or ERROR, default: INFO
  aliases:
    bench: "ABCDE"             # name -> serial number
"""
import logging
import os

import yaml

from .errors import InvalidSerialNumberError
from .protocol import RelayProtocol, default_protocol, validate_serial

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']
STATUS_BITMAP_WIDTH = 8


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""


class ConfigLoader:
    """Load and validate USBRelay configuration from YAML file."""

    def __init__(self, config_path):
        """
        Initialize the configuration loader.

        :param config_path: Path to the YAML configuration file
        """
        self.config_path = config_path
        self.config = None
        self.max_relays = STATUS_BITMAP_WIDTH
        self.report_id_prefix = None  # None = decide from the platform
        self.skip_unchanged = False
        self.log_level = 'INFO'
        self.aliases = {}  # name -> serial number
        self.logger = logging.getLogger(__name__)

    def load(self):
        """
        Load and parse the YAML configuration file.

        :raises ConfigValidationError: If configuration is invalid
        :raises FileNotFoundError: If config file doesn't exist
        """
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            try:
                self.config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not self.config:
            raise ConfigValidationError("Configuration file is empty")

        if not isinstance(self.config, dict) or 'usbrelay' not in self.config:
            raise ConfigValidationError("Configuration must contain 'usbrelay' root element")

        self.config = self.config['usbrelay'] or {}
        if not isinstance(self.config, dict):
            raise ConfigValidationError("'usbrelay' must be a dictionary")

        self._validate_config()
        self.logger.debug(f"Loaded configuration from {self.config_path}")

    def _validate_config(self):
        """
        Validate the configuration structure and content.

        :raises ConfigValidationError: If validation fails
        """
        if 'settings' in self.config:
            self._validate_settings()

        if 'aliases' in self.config:
            self._validate_aliases()

    def _validate_settings(self):
        """Validate settings section."""
        settings = self.config['settings'] or {}

        if not isinstance(settings, dict):
            raise ConfigValidationError("'settings' must be a dictionary")

        if 'max_relays' in settings:
            max_relays = settings['max_relays']
            if (not isinstance(max_relays, int) or isinstance(max_relays, bool)
                    or max_relays < 1 or max_relays > STATUS_BITMAP_WIDTH):
                raise ConfigValidationError(
                    f"max_relays must be a whole number between 1 and {STATUS_BITMAP_WIDTH}"
                )
            self.max_relays = max_relays

        if 'report_id_prefix' in settings:
            prefix = settings['report_id_prefix']
            if prefix == 'auto':
                self.report_id_prefix = None
            elif isinstance(prefix, bool):
                self.report_id_prefix = prefix
            else:
                raise ConfigValidationError("report_id_prefix must be auto, true or false")

        if 'skip_unchanged' in settings:
            skip_unchanged = settings['skip_unchanged']
            if not isinstance(skip_unchanged, bool):
                raise ConfigValidationError("skip_unchanged must be true or false")
            self.skip_unchanged = skip_unchanged

        if 'log_level' in settings:
            log_level = str(settings['log_level']).upper()
            if log_level not in VALID_LOG_LEVELS:
                raise ConfigValidationError(
                    f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}"
                )
            self.log_level = log_level

    def _validate_aliases(self):
        """Validate aliases section."""
        aliases = self.config['aliases'] or {}

        if not isinstance(aliases, dict):
            raise ConfigValidationError("'aliases' must be a dictionary")

        protocol = RelayProtocol()
        for name, serial in aliases.items():
            if not isinstance(serial, str):
                raise ConfigValidationError(f"Alias '{name}' must map to a serial number string")
            try:
                validate_serial(serial, protocol)
            except InvalidSerialNumberError as e:
                raise ConfigValidationError(f"Alias '{name}': {e}") from e
            self.aliases[str(name)] = serial

    def protocol(self) -> RelayProtocol:
        """Build the relay protocol from the loaded settings."""
        if self.report_id_prefix is None:
            return default_protocol(max_relays=self.max_relays)
        return default_protocol(max_relays=self.max_relays, report_id_prefix=self.report_id_prefix)

    def resolve_serial(self, name_or_serial):
        """Map an alias to its serial number; anything else is returned as is."""
        return self.aliases.get(name_or_serial, name_or_serial)
