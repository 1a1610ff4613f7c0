"""
Managers for layered settings: built-in defaults, settings files, .env files,
environment variables and command-line overrides.
"""
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values
from pydantic import AliasChoices, BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from ..UTILS.validation import describe_pydantic_error

ENV_PREFIX = "PXC_"
CONFIG_FILE_NAMES = (".pxc.yaml", ".pxc.yml")


class Settings(BaseModel):
    """
    Explicit configuration handed to the builder and orchestrator at
    construction time.
    """
    verbose: bool = False
    dry_run: bool = False

    project_name: Optional[str] = None
    node: str = Field(default="localhost", validation_alias=AliasChoices("node", "proxmox_node"))
    storage: str = "local-lvm"
    template_storage: str = "local"
    tool: str = "pct"

    # Ephemeral build containers
    build_hostname_prefix: str = "pxc-build-"
    build_memory: int = Field(default=512, gt=0)
    build_cores: int = Field(default=1, gt=0)
    ready_attempts: int = Field(default=60, ge=1)
    ready_interval: float = Field(default=1.0, ge=0)


class ConfigManager:
    """
    Resolves settings from multiple sources, later sources overriding earlier ones.
    """
    def __init__(self,
                 base_dir: str = ".",
                 home_dir: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """
        Initializes the config manager.

        :param base_dir: The directory searched for .pxc.yaml and .env files.
        :param home_dir: The user's home directory, searched after base_dir.
        :param environ: Process environment; defaults to os.environ.
        """
        self.base_dir = base_dir
        self.home_dir = home_dir if home_dir is not None else os.path.expanduser("~")
        self.environ = environ if environ is not None else os.environ

    def find_config_file(self) -> Optional[str]:
        """
        Looks for a settings file in the base directory, then the home directory.

        :return: The path of the first file found, or None.
        """
        for directory in (self.base_dir, self.home_dir):
            for name in CONFIG_FILE_NAMES:
                path = os.path.join(directory, name)
                if os.path.isfile(path):
                    return path
        return None

    def dotenv(self) -> Dict[str, str]:
        """
        Reads the .env file in the base directory, if any.
        """
        path = os.path.join(self.base_dir, ".env")
        if not os.path.isfile(path):
            return {}
        return {k: v for k, v in dotenv_values(path).items() if v is not None}

    def interpolation_context(self) -> Dict[str, str]:
        """
        Variables available to ``${VAR}`` references in manifests: the .env
        file, overridden by the process environment.
        """
        context = self.dotenv()
        context.update(self.environ)
        return context

    def load(self,
             config_file: Optional[str] = None,
             overrides: Optional[Mapping[str, Any]] = None) -> Settings:
        """
        Merges all settings sources.

        1. Built-in defaults
        2. Settings file (explicit path, ./.pxc.yaml, ~/.pxc.yaml)
        3. PXC_* entries of the .env file
        4. PXC_* environment variables
        5. Explicit overrides; None values are ignored

        :param config_file: Explicit settings file path.
        :param overrides: Values from the command line.
        :return: The merged settings.
        :raises ValidationError: If the settings file is missing or a value is invalid.
        """
        merged: Dict[str, Any] = {}

        if config_file and not os.path.isfile(config_file):
            raise ValidationError(f"config file not found: {config_file}")
        path = config_file or self.find_config_file()
        if path:
            merged.update(self._read_file(path))

        merged.update(self._prefixed(self.dotenv()))
        merged.update(self._prefixed(self.environ))
        merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

        try:
            return Settings.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid settings: {describe_pydantic_error(e)}") from e

    def _read_file(self, path: str) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"failed to parse settings file {path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError(f"settings file {path} must contain a mapping")
        return data

    @staticmethod
    def _prefixed(env: Mapping[str, str]) -> Dict[str, str]:
        return {
            key[len(ENV_PREFIX):].lower(): value
            for key, value in env.items()
            if key.startswith(ENV_PREFIX) and value is not None
        }
