"""
Configuration loader for the local YAML config file with environment overrides.
"""
import yaml
import logging
import os
from typing import Dict

from pipeline.config import Config
from pipeline.errors import ConfigurationInvalid


DEFAULT_CONFIG_PATH = "/etc/ryzenmon/config.yaml"

EXAMPLE_CONFIG = """\
influxdb:
  host: http://localhost:8086
  org: your_org
  token: your_token
  bucket: your_bucket

# backend: msr            # msr | powercap | simulated
# per_core: true
# sampling_interval_seconds: 10
# publish_interval_seconds: 10
# buffer_capacity: 10000
# eviction_policy: drop_oldest   # drop_oldest | drop_newest
# tags:
#   host: pvehost
#   service: ryzen-rapl
"""

ENV_OVERRIDES = {
    "INFLUXDB_HOST": "host",
    "INFLUXDB_ORG": "org",
    "INFLUXDB_TOKEN": "token",
    "INFLUXDB_BUCKET": "bucket",
}


class ConfigLoader:
    """
    Load configuration from the local config.yaml.

    Priority:
    1. INFLUXDB_* environment variables (connection settings only)
    2. Local config.yaml

    If the file does not exist an example is written in its place and
    loading fails, so the operator fills in real credentials first.

    Environment variables:
    - RYZENMON_CONFIG_PATH: Path to config file (default: /etc/ryzenmon/config.yaml)
    - INFLUXDB_HOST, INFLUXDB_ORG, INFLUXDB_TOKEN, INFLUXDB_BUCKET
    """

    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv(
            "RYZENMON_CONFIG_PATH",
            DEFAULT_CONFIG_PATH
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def load(self) -> Config:
        """
        Load and validate configuration.

        Returns:
            Validated Config

        Raises:
            ConfigurationInvalid: If the file is missing, unparsable or invalid
        """
        if not os.path.exists(self.config_path):
            self._write_example()
            raise ConfigurationInvalid(
                f"No config found; an example was written to {self.config_path}, "
                f"fill in the InfluxDB settings and restart"
            )

        raw = self._load_local_config()
        self._apply_env_overrides(raw)
        config = Config.from_dict(raw)
        self.logger.info(
            f"✅ Loaded config from {self.config_path} "
            f"(influxdb={config.influxdb_host}, bucket={config.bucket}, backend={config.backend})"
        )
        return config

    def _load_local_config(self) -> Dict:
        """
        Load configuration from the local YAML file.

        Returns:
            Configuration dictionary from local file

        Raises:
            ConfigurationInvalid: If the file can't be read or parsed
        """
        self.logger.info(f"Loading config from {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationInvalid(f"Cannot parse {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationInvalid(f"Cannot read {self.config_path}: {e}") from e

        if not config:
            raise ConfigurationInvalid(f"Config file {self.config_path} is empty")
        if not isinstance(config, dict):
            raise ConfigurationInvalid(f"Config file {self.config_path} must hold a mapping")

        return config

    def _apply_env_overrides(self, config: Dict) -> None:
        influx = config.setdefault("influxdb", {})
        if not isinstance(influx, dict):
            return
        for env_name, key in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                influx[key] = value
                self.logger.debug(f"influxdb.{key} taken from {env_name}")

    def _write_example(self) -> None:
        """
        Write the example config using atomic write.
        Failure to write is logged; the caller raises anyway.
        """
        tmp_path = self.config_path + ".tmp"

        try:
            directory = os.path.dirname(self.config_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(tmp_path, 'w') as f:
                f.write(EXAMPLE_CONFIG)

            # Atomic rename (crash-safe)
            os.replace(tmp_path, self.config_path)
            self.logger.warning(f"Created example config at {self.config_path}")

        except OSError as e:
            self.logger.error(f"Failed to write example config to {self.config_path}: {e}")

            # Clean up temporary file if it exists
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError as cleanup_error:
                    self.logger.debug(f"Could not remove {tmp_path}: {cleanup_error}")
