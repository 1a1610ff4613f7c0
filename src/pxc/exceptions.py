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
Error taxonomy shared by the manifest model, build pipeline and orchestrator.
"""
from enum import Enum
from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .MODELS.results import DeploymentResult


class BuildPhase(str, Enum):
    """Phases of the template build pipeline, in execution order."""

    ALLOCATE = "allocate"
    CREATE = "create"
    START = "start"
    AWAIT_READY = "await-ready"
    SETUP = "setup"
    APPLY_CONFIG = "apply-config"
    CLEANUP = "cleanup"
    STOP = "stop"
    EXPORT = "export"
    FINALIZE = "finalize"


class PxcError(Exception):
    """Base class for every error raised by pxc."""


class ValidationError(PxcError):
    """A manifest is structurally invalid. Raised before any command runs."""


class UndefinedServiceError(ValidationError):
    """A service depends on a service the stack does not define."""

    def __init__(self, service: str, reference: str):
        self.service = service
        self.reference = reference
        super().__init__(
            f"service '{service}': depends_on references undefined service '{reference}'"
        )


class UndefinedNetworkError(ValidationError):
    """A service joins a network the stack does not declare."""

    def __init__(self, service: str, reference: str):
        self.service = service
        self.reference = reference
        super().__init__(
            f"service '{service}' references undefined network '{reference}'"
        )


class UndefinedVolumeError(ValidationError):
    """A service mounts a named volume the stack does not declare."""

    def __init__(self, service: str, reference: str):
        self.service = service
        self.reference = reference
        super().__init__(
            f"service '{service}' references undefined volume '{reference}'"
        )


class CycleError(ValidationError):
    """
    The depends_on graph contains a cycle.

    ``service`` is the node that was being visited when the cycle was found,
    ``path`` the chain of services from the start of the cycle back to it.
    """

    def __init__(self, service: str, path: Optional[Sequence[str]] = None):
        self.service = service
        self.path: List[str] = list(path or [service, service])
        super().__init__(
            f"circular dependency detected involving service '{service}' "
            f"({' -> '.join(self.path)})"
        )


class ManifestNotFoundError(ValidationError):
    """A manifest file does not exist."""

    def __init__(self, path: str, suggestions: Optional[Sequence[str]] = None):
        self.path = path
        self.suggestions = list(suggestions or [])
        message = f"configuration file not found: {path}"
        if self.suggestions:
            message += "\n\nDid you mean one of these files?\n"
            message += "".join(f"  {s}\n" for s in self.suggestions)
        super().__init__(message)


class CommandError(PxcError):
    """An external tool invocation exited with a non-zero status."""

    def __init__(self, command: str, args: Sequence[str], returncode: int, stderr: str = ""):
        self.command = command
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(
            f"'{command} {' '.join(self.args_list)}' exited with status {returncode}{detail}"
        )


class BuildError(PxcError):
    """
    A template build failed.

    ``cleanup_error`` holds the error raised while releasing the ephemeral
    container, if any. It never replaces the original cause.
    """

    def __init__(self, message: str, phase: BuildPhase, container_id: Optional[int] = None):
        super().__init__(message)
        self.phase = phase
        self.container_id = container_id
        self.cleanup_error: Optional[Exception] = None

    def __str__(self) -> str:
        message = super().__str__()
        if self.cleanup_error is not None:
            message += f" (cleanup also failed: {self.cleanup_error})"
        return message


class ReadinessTimeoutError(BuildError):
    """The ephemeral container never accepted a command within the poll budget."""

    def __init__(self, container_id: int, attempts: int):
        super().__init__(
            f"container {container_id} did not become ready after {attempts} attempts",
            BuildPhase.AWAIT_READY,
            container_id,
        )
        self.attempts = attempts


NotReadyError = ReadinessTimeoutError


class StepExecutionError(BuildError):
    """A setup step failed. ``position`` is 1-based."""

    def __init__(self, container_id: int, position: int, label: str, reason: str):
        super().__init__(
            f"failed to execute {label}: {reason}", BuildPhase.SETUP, container_id
        )
        self.position = position
        self.label = label


class ExportError(BuildError):
    """Stopping or exporting the configured container failed."""


class ServiceDeployError(PxcError):
    """
    Building, creating or starting one service failed during ``up``.

    ``result`` is the partially populated deployment result; its last entry
    is the failed service.
    """

    def __init__(self, service: str, cause: Exception, result: "DeploymentResult"):
        self.service = service
        self.cause = cause
        self.result = result
        super().__init__(f"failed to deploy service {service}: {cause}")


class CleanupStepWarning(UserWarning):
    """A cleanup step failed; the build continues."""

    def __init__(self, position: int, label: str, reason: str):
        self.position = position
        self.label = label
        self.reason = reason
        super().__init__(f"{label} failed (continuing): {reason}")


class TeardownWarning(UserWarning):
    """Removing one service failed during ``down``; teardown continues."""

    def __init__(self, service: str, reason: str):
        self.service = service
        self.reason = reason
        super().__init__(f"failed to remove service {service}: {reason}")
