# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Models for stack manifests (lxc-stack.yml): services, their dependencies,
networks, volumes and lifecycle hooks.
"""
import os
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import (
    UndefinedNetworkError,
    UndefinedServiceError,
    UndefinedVolumeError,
    ValidationError,
)
from ..UTILS.validation import describe_pydantic_error
from .build_manifest import Metadata, Resources

DEFAULT_NETWORK = "default"
DEFAULT_BUILD_MANIFEST = "LXCfile.yml"


class RestartPolicy(str, Enum):
    """
    Conditions under which a service container should come back up.
    """
    NO = "no"
    ALWAYS = "always"
    ON_FAILURE = "on-failure"
    UNLESS_STOPPED = "unless-stopped"


class BuildSource(BaseModel):
    """
    Where a service's build manifest lives and the arguments passed to it.
    """
    context: str
    dockerfile: Optional[str] = None
    args: Dict[str, str] = {}
    target: Optional[str] = None

    @field_validator("context")
    @classmethod
    def _require_context(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("build context is required")
        return value

    @field_validator("args", mode="before")
    @classmethod
    def _args_to_str(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items() if v is not None}
        return value

    def manifest_path(self) -> str:
        """
        Path of the build manifest: ``<context>/<dockerfile>``, defaulting to
        ``LXCfile.yml`` inside the context.
        """
        return os.path.join(self.context, self.dockerfile or DEFAULT_BUILD_MANIFEST)


class ServiceSpec(BaseModel):
    """
    One service within a stack. Exactly one of ``build`` or ``template``.
    """
    build: Optional[BuildSource] = None
    template: Optional[str] = None

    hostname: Optional[str] = None
    resources: Optional[Resources] = None
    environment: Dict[str, str] = {}

    ports: List[str] = []
    expose: List[str] = []
    volumes: List[str] = []
    networks: List[str] = []

    depends_on: List[str] = []
    restart: RestartPolicy = RestartPolicy.NO
    scale: int = Field(default=1, ge=0)

    labels: Dict[str, str] = {}

    @field_validator("build", mode="before")
    @classmethod
    def _build_shorthand(cls, value: Any) -> Any:
        # build: ./web
        if isinstance(value, str):
            return {"context": value}
        return value

    @field_validator("restart", mode="before")
    @classmethod
    def _restart_synonyms(cls, value: Any) -> Any:
        if value is None or value == "none" or value is False:
            return RestartPolicy.NO
        return value

    @field_validator("depends_on", mode="before")
    @classmethod
    def _depends_on_names(cls, value: Any) -> Any:
        if value is None:
            return []
        # Compose long form: depends_on: {db: {condition: ...}}
        if isinstance(value, dict):
            value = list(value.keys())
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return list(dict.fromkeys(value))
        return value

    @field_validator("environment", mode="before")
    @classmethod
    def _environment_mapping(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, list):
            environment = {}
            for item in value:
                key, _, val = str(item).partition("=")
                environment[key] = val
            return environment
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @field_validator("ports", "expose", "volumes", "networks", mode="before")
    @classmethod
    def _string_lists(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value]
        return value

    @model_validator(mode="after")
    def _build_or_template(self) -> "ServiceSpec":
        if self.build is not None and self.template:
            raise ValueError("cannot specify both 'build' and 'template'")
        if self.build is None and not self.template:
            raise ValueError("must specify either 'build' or 'template'")
        return self

    @property
    def needs_build(self) -> bool:
        return self.build is not None


class NetworkDefinition(BaseModel):
    """
    A named network declared by the stack.
    """
    driver: Optional[str] = None
    name: Optional[str] = None
    subnet: Optional[str] = None
    gateway: Optional[str] = None
    internal: bool = False
    options: Dict[str, str] = {}


class VolumeDefinition(BaseModel):
    """
    A named volume declared by the stack.
    """
    driver: Optional[str] = None
    options: Dict[str, str] = {}


class Hooks(BaseModel):
    """
    Host shell commands run around stack lifecycle events.
    """
    pre_start: List[str] = []
    post_start: List[str] = []
    pre_stop: List[str] = []
    post_stop: List[str] = []


class ProxmoxSettings(BaseModel):
    node: Optional[str] = None
    storage: Optional[str] = None
    template_storage: Optional[str] = None


class StackSettings(BaseModel):
    """
    Stack-wide defaults.
    """
    default_resources: Optional[Resources] = None
    default_network: Optional[str] = None
    proxmox: Optional[ProxmoxSettings] = None


def parse_volume_name(volume: str) -> Optional[str]:
    """
    Extracts the source part of a ``source:/path[:ro]`` volume string,
    keeping Windows drive letters (``C:\\data:/data``) intact.

    :param volume: The volume string from a service definition.
    :return: The source, or None for anonymous volumes.
    """
    parts = volume.split(":")
    if len(parts) >= 3 and len(parts[0]) == 1 and parts[0].isalpha():
        parts = [parts[0] + ":" + parts[1]] + parts[2:]
    if len(parts) >= 2:
        return parts[0]
    return None


def _is_host_path(source: str) -> bool:
    return source.startswith(("/", ".", "~")) or (len(source) > 1 and source[1] == ":")


class StackManifest(BaseModel):
    """
    Complete configuration for a multi-service stack.
    Equivalent to a parsed lxc-stack.yml file.
    """
    version: str
    metadata: Optional[Metadata] = None
    services: Dict[str, ServiceSpec]
    networks: Dict[str, NetworkDefinition] = {}
    volumes: Dict[str, VolumeDefinition] = {}
    hooks: Hooks = Field(default_factory=Hooks)
    settings: StackSettings = Field(default_factory=StackSettings)

    @field_validator("version", mode="before")
    @classmethod
    def _version_to_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("version")
    @classmethod
    def _require_version(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("'version' field is required")
        return value

    @field_validator("services")
    @classmethod
    def _require_services(cls, value: Dict[str, ServiceSpec]) -> Dict[str, ServiceSpec]:
        if not value:
            raise ValueError("'services' must contain at least one service")
        return value

    @field_validator("networks", "volumes", mode="before")
    @classmethod
    def _empty_definitions(cls, value: Any) -> Any:
        # networks: {backend: } declares a network with default settings
        if value is None:
            return {}
        if isinstance(value, dict):
            return {name: spec if spec is not None else {} for name, spec in value.items()}
        return value

    @field_validator("hooks", "settings", mode="before")
    @classmethod
    def _empty_sections(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def from_mapping(cls, data: Any) -> "StackManifest":
        """
        Validates raw stack data. Cross-references are not checked here;
        see :meth:`validate_stack`.

        :param data: The mapping read from a stack file.
        :return: The parsed stack.
        :raises ValidationError: If the data is structurally invalid.
        """
        if not isinstance(data, dict):
            raise ValidationError("stack manifest must be a mapping")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid stack configuration: {describe_pydantic_error(e)}") from e

    def validate_stack(self) -> List[str]:
        """
        Checks every reference between services, networks and volumes, then
        resolves the dependency order, which rejects cycles.

        :return: Service names in startup order.
        :raises ValidationError: On the first invalid reference or a cycle.
        """
        from ..RUNNERS.dependency_resolver import DependencyResolver

        for name, service in self.services.items():
            for dep in service.depends_on:
                if dep not in self.services:
                    raise UndefinedServiceError(name, dep)

        for name, service in self.services.items():
            for network in service.networks:
                if network not in self.networks and network != DEFAULT_NETWORK:
                    raise UndefinedNetworkError(name, network)

        for name, service in self.services.items():
            for volume in service.volumes:
                source = parse_volume_name(volume)
                if source and not _is_host_path(source) and source not in self.volumes:
                    raise UndefinedVolumeError(name, source)

        return DependencyResolver().resolve_order(self.services)

    def stack_name(self, default: str) -> str:
        if self.metadata and self.metadata.name:
            return self.metadata.name
        return default
