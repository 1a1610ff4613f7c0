"""
Models for build manifests (LXCfile.yml): the base template, build steps and
the resource/feature settings applied to the resulting template.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from ..UTILS.validation import describe_pydantic_error

STEP_ACTIONS = ("run", "copy", "env", "workdir")


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


class Resources(BaseModel):
    """
    Resource allocation for a container. Memory and swap are in MB.
    Zero means "not set".
    """
    cores: int = Field(default=0, ge=0)
    memory: int = Field(default=0, ge=0)
    swap: int = Field(default=0, ge=0)

    def is_empty(self) -> bool:
        return not (self.cores or self.memory or self.swap)


class Features(BaseModel):
    """
    LXC feature flags.
    """
    unprivileged: bool = False
    nesting: bool = False
    keyctl: bool = False
    fuse: bool = False

    def flags(self) -> List[str]:
        """
        Returns the enabled feature flags in the tool's ``name=1`` form.
        ``unprivileged`` is fixed at creation time and is not a feature flag.
        """
        enabled = []
        if self.nesting:
            enabled.append("nesting=1")
        if self.keyctl:
            enabled.append("keyctl=1")
        if self.fuse:
            enabled.append("fuse=1")
        return enabled


class Metadata(BaseModel):
    """
    Descriptive metadata shared by build and stack manifests.
    """
    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    author: Optional[str] = None

    @field_validator("version", mode="before")
    @classmethod
    def _version_to_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value


class RunStep(BaseModel):
    """Runs a shell command inside the build container."""
    kind: Literal["run"] = "run"
    command: str = Field(min_length=1)

    def describe(self) -> str:
        return f"Execute: {_truncate(self.command, 60)}"


class CopyStep(BaseModel):
    """Copies a host file into the build container."""
    kind: Literal["copy"] = "copy"
    source: str = Field(min_length=1)
    dest: str = Field(min_length=1)
    owner: Optional[str] = None
    mode: Optional[str] = None

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_to_str(cls, value: Any) -> Any:
        # YAML reads an unquoted 0755 as an integer
        if isinstance(value, int):
            return format(value, "o")
        return value

    def describe(self) -> str:
        return f"Copy: {self.source} -> {self.dest}"


class EnvStep(BaseModel):
    """Appends variables to the container's persistent environment."""
    kind: Literal["env"] = "env"
    vars: Dict[str, str] = Field(min_length=1)

    @field_validator("vars", mode="before")
    @classmethod
    def _values_to_str(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    def describe(self) -> str:
        return f"Set environment variables ({len(self.vars)} vars)"


class WorkDirStep(BaseModel):
    """Sets the working directory for later run steps."""
    kind: Literal["workdir"] = "workdir"
    path: str = Field(min_length=1)

    def describe(self) -> str:
        return f"Working directory: {self.path}"


Step = Union[RunStep, CopyStep, EnvStep, WorkDirStep]


def _is_populated(value: Any) -> bool:
    return value is not None and value != "" and value != {} and value != []


def parse_step(raw: Any) -> Any:
    """
    Converts a raw manifest step (a mapping with exactly one of ``run``,
    ``copy``, ``env`` or ``workdir``) into its step model.

    :param raw: The step as read from the manifest, or an existing step model.
    :return: A RunStep, CopyStep, EnvStep or WorkDirStep.
    :raises ValueError: If the step has no action, several actions or unknown keys.
    """
    if isinstance(raw, (RunStep, CopyStep, EnvStep, WorkDirStep)):
        return raw
    if not isinstance(raw, dict):
        raise ValueError("step must be a mapping")

    unknown = [key for key in raw if key not in STEP_ACTIONS]
    if unknown:
        raise ValueError(f"unknown step key(s): {', '.join(map(str, unknown))}")

    actions = [key for key in STEP_ACTIONS if _is_populated(raw.get(key))]
    if not actions:
        raise ValueError("must have at least one action (run, copy, env, or workdir)")
    if len(actions) > 1:
        raise ValueError(f"must have exactly one action, got: {', '.join(actions)}")

    action = actions[0]
    value = raw[action]
    if action == "run":
        return RunStep(command=str(value))
    if action == "copy":
        if not isinstance(value, dict):
            raise ValueError("copy must be a mapping with 'source' and 'dest'")
        if not value.get("source"):
            raise ValueError("copy source is required")
        if not value.get("dest"):
            raise ValueError("copy dest is required")
        return CopyStep(**value)
    if action == "env":
        if not isinstance(value, dict):
            raise ValueError("env must be a mapping of variable names to values")
        return EnvStep(vars=value)
    return WorkDirStep(path=str(value))


class BuildManifest(BaseModel):
    """
    One buildable template definition, equivalent to a parsed LXCfile.yml.
    """
    model_config = ConfigDict(populate_by_name=True)

    base_image: str = Field(alias="from")
    setup_steps: List[Step] = Field(alias="setup")
    cleanup_steps: List[Step] = Field(default_factory=list, alias="cleanup")

    resources: Optional[Resources] = None
    features: Optional[Features] = None

    metadata: Optional[Metadata] = None
    labels: Dict[str, str] = {}

    @field_validator("base_image")
    @classmethod
    def _require_base_image(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("'from' field is required")
        return value

    @field_validator("setup_steps", "cleanup_steps", mode="before")
    @classmethod
    def _parse_steps(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            value = []
        if not isinstance(value, list):
            raise ValueError("steps must be a list")
        if info.field_name == "setup_steps" and not value:
            raise ValueError("'setup' must contain at least one step")

        prefix = "setup" if info.field_name == "setup_steps" else "cleanup"
        parsed = []
        for position, raw in enumerate(value, start=1):
            try:
                parsed.append(parse_step(raw))
            except PydanticValidationError as e:
                raise ValueError(
                    f"{prefix} step {position}: {describe_pydantic_error(e)}"
                ) from e
            except ValueError as e:
                raise ValueError(f"{prefix} step {position}: {e}") from e
        return parsed

    @classmethod
    def from_mapping(cls, data: Any) -> "BuildManifest":
        """
        Validates raw manifest data.

        :param data: The mapping read from an LXCfile.
        :return: The validated manifest.
        :raises ValidationError: If the data does not describe a valid build.
        """
        if not isinstance(data, dict):
            raise ValidationError("build manifest must be a mapping")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid build manifest: {describe_pydantic_error(e)}") from e

    def template_name(self) -> str:
        """
        Default template name derived from the metadata.
        """
        if self.metadata and self.metadata.name:
            name = self.metadata.name
            if self.metadata.version:
                name += ":" + self.metadata.version
            return name
        return "custom-template"

    def has_configuration(self) -> bool:
        return self.resources is not None or self.features is not None
