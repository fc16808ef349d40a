"""RC file settings - IPFS connection details per environment.

The RC file is YAML::

    environments:
      live:
        ipfs:
          host: localhost
          port: 5001

Lookup order for the file: explicit path, ``$DAPPLERC``, ``~/.dapplerc``.
A missing file means defaults.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "live"
RC_ENV_VAR = "DAPPLERC"


class IPFSSettings(BaseModel):
    """Where the IPFS HTTP API listens."""

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = 5001

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


class EnvironmentSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    ipfs: IPFSSettings = Field(default_factory=IPFSSettings)


class DappleRC(BaseModel):
    """
    Parsed RC file.

    Implements SettingsProviderProtocol so it can be handed straight to the
    installer.
    """

    model_config = ConfigDict(frozen=True)

    environments: dict[str, EnvironmentSettings] = Field(default_factory=dict)

    @staticmethod
    def default_path() -> Path:
        override = os.environ.get(RC_ENV_VAR)
        if override:
            return Path(override).expanduser()
        return Path.home() / ".dapplerc"

    @classmethod
    def load(cls, path: Path | None = None) -> "DappleRC":
        """
        Load settings from an RC file.

        Args:
            path: RC file location (defaults to $DAPPLERC, then ~/.dapplerc)

        Returns:
            DappleRC instance (defaults when the file doesn't exist)

        Raises:
            ConfigError: If the file can't be read or doesn't match the schema
        """
        rc_path = path if path is not None else cls.default_path()
        if not rc_path.exists():
            logger.debug(f"No RC file at {rc_path}, using defaults")
            return cls()

        try:
            with open(rc_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read {rc_path}: {e}", context={"path": str(rc_path)}) from e

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {rc_path}", context={"path": str(rc_path)})

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {rc_path}: {e}", context={"path": str(rc_path)}) from e

    def ipfs_settings(self, environment: str = DEFAULT_ENVIRONMENT) -> IPFSSettings:
        env = self.environments.get(environment)
        if env is None:
            logger.warning(f"Environment '{environment}' not configured, using default IPFS settings")
            return IPFSSettings()
        return env.ipfs
