"""
Execution of individual build steps inside an ephemeral build container.
"""
import logging
import os
import posixpath
import shlex
from typing import Mapping, Optional

from ..exceptions import CommandError
from ..MODELS.build_manifest import CopyStep, EnvStep, RunStep, WorkDirStep
from ..RUNNERS.container_client import ContainerClient
from ..UTILS.string_interpolation import expand_build_args

logger = logging.getLogger(__name__)

ENVIRONMENT_FILE = "/etc/environment"


class StepExecutor:
    """
    Runs the steps of one build in order. Holds the working directory set by
    workdir steps, so use one instance per build.
    """
    def __init__(self, client: ContainerClient):
        """
        :param client: Client for the container tool.
        """
        self.client = client
        self.working_dir: Optional[str] = None

    def execute(self, vmid: int, step, label: str, build_args: Mapping[str, str]) -> None:
        """
        Executes a single step.

        :param vmid: The build container.
        :param step: A RunStep, CopyStep, EnvStep or WorkDirStep.
        :param label: Human-readable step label, e.g. ``Step 2``.
        :param build_args: Values substituted into run commands.
        :raises CommandError: If a required command fails.
        :raises FileNotFoundError: If a copy source does not exist on the host.
        """
        if isinstance(step, RunStep):
            self._run(vmid, step, label, build_args)
        elif isinstance(step, CopyStep):
            self._copy(vmid, step, label)
        elif isinstance(step, EnvStep):
            self._env(vmid, step, label)
        elif isinstance(step, WorkDirStep):
            self._workdir(vmid, step, label)
        else:
            raise TypeError(f"{label}: unsupported step type {type(step).__name__}")

    def _run(self, vmid: int, step: RunStep, label: str, build_args: Mapping[str, str]):
        logger.info("%s: Running command", label)
        logger.debug("Command: %s", step.command)

        command = expand_build_args(step.command, build_args)
        if self.working_dir:
            command = f"cd {shlex.quote(self.working_dir)} && {command}"
        self.client.exec(vmid, ["sh", "-c", command])

    def _copy(self, vmid: int, step: CopyStep, label: str):
        logger.info("%s: Copying %s -> %s", label, step.source, step.dest)

        if not os.path.exists(step.source):
            raise FileNotFoundError(f"source file/directory does not exist: {step.source}")

        dest = step.dest
        if self.working_dir and not posixpath.isabs(dest):
            dest = posixpath.join(self.working_dir, dest)

        dest_dir = posixpath.dirname(dest)
        if dest_dir not in ("", "/", "."):
            self.client.exec(vmid, ["mkdir", "-p", dest_dir])

        self.client.push(vmid, step.source, dest)

        # Ownership and permissions are best-effort
        if step.owner:
            try:
                self.client.exec(vmid, ["chown", "-R", step.owner, dest])
            except CommandError as e:
                logger.warning("Failed to set ownership: %s", e)
        if step.mode:
            try:
                self.client.exec(vmid, ["chmod", "-R", step.mode, dest])
            except CommandError as e:
                logger.warning("Failed to set permissions: %s", e)

    def _env(self, vmid: int, step: EnvStep, label: str):
        logger.info("%s: Setting %d environment variables", label, len(step.vars))

        for key, value in step.vars.items():
            line = shlex.quote(f"{key}={value}")
            self.client.exec(vmid, ["sh", "-c", f"echo {line} >> {ENVIRONMENT_FILE}"])

    def _workdir(self, vmid: int, step: WorkDirStep, label: str):
        logger.info("%s: Working directory %s", label, step.path)

        self.client.exec(vmid, ["mkdir", "-p", step.path])
        self.working_dir = step.path
