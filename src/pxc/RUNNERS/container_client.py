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
Container operations expressed in the argument grammar of the host's
container management tool (``pct`` on Proxmox VE).
"""
import logging
from typing import Any, List, Optional, Sequence, Tuple

from ..exceptions import CommandError
from ..MODELS.container_config import ContainerConfig, ContainerInfo
from .command_executor import CommandExecutor, CommandResult

logger = logging.getLogger(__name__)


class ContainerClient:
    """
    Thin client over the container tool. Every method is one invocation
    through the command executor and raises CommandError on a non-zero exit.
    """

    def __init__(self, executor: CommandExecutor, tool: str = "pct"):
        """
        Initialize the client.

        Args:
            executor: Executor used for every invocation.
            tool: Name of the container management executable.
        """
        self.executor = executor
        self.tool = tool

    def _run(self, args: Sequence[Any], capture_output: bool = False) -> CommandResult:
        result = self.executor.run(self.tool, [str(a) for a in args], capture_output=capture_output)
        if not result.ok:
            raise CommandError(self.tool, result.args, result.returncode, result.stderr)
        return result

    def create(
        self,
        vmid: int,
        source: str,
        hostname: Optional[str] = None,
        memory: int = 0,
        cores: int = 0,
        swap: int = 0,
        unprivileged: Optional[bool] = None,
        storage: Optional[str] = None,
        net0: Optional[str] = None,
    ) -> None:
        """
        Create a container from a template archive.

        Args:
            vmid: Identifier for the new container.
            source: Template the container is created from.
            hostname: Container hostname.
            memory: Memory in MB, 0 for the tool default.
            cores: CPU cores, 0 for the tool default.
            swap: Swap in MB, 0 for the tool default.
            unprivileged: Run as an unprivileged container.
            storage: Storage pool for the root filesystem.
            net0: First network interface definition.
        """
        args: List[Any] = ["create", vmid, source]
        if hostname:
            args += ["--hostname", hostname]
        if memory > 0:
            args += ["--memory", memory]
        if cores > 0:
            args += ["--cores", cores]
        if swap > 0:
            args += ["--swap", swap]
        if unprivileged is not None:
            args += ["--unprivileged", "1" if unprivileged else "0"]
        if storage:
            args += ["--storage", storage]
        if net0:
            args += ["--net0", net0]
        self._run(args)

    def clone(self, source_id: str, vmid: int, hostname: Optional[str] = None) -> None:
        """Clone a template container into a new container."""
        args: List[Any] = ["clone", source_id, vmid]
        if hostname:
            args += ["--hostname", hostname]
        self._run(args)

    def set(self, vmid: int, options: Sequence[Tuple[str, Any]]) -> None:
        """
        Apply configuration options in a single invocation.

        Args:
            vmid: Container to configure.
            options: ``(key, value)`` pairs, rendered as ``-key value``.
        """
        if not options:
            return
        args: List[Any] = ["set", vmid]
        for key, value in options:
            args += [f"-{key}", value]
        self._run(args)

    def start(self, vmid: int) -> None:
        self._run(["start", vmid])

    def stop(self, vmid: int) -> None:
        self._run(["stop", vmid])

    def destroy(self, vmid: int) -> None:
        self._run(["destroy", vmid])

    def template(self, vmid: int) -> None:
        """Convert a stopped container into a template, in place."""
        self._run(["template", vmid])

    def exec(self, vmid: int, argv: Sequence[str]) -> CommandResult:
        """Run a command inside a running container."""
        return self._run(["exec", vmid, "--"] + list(argv))

    def push(self, vmid: int, host_path: str, container_path: str) -> None:
        """Copy a host file into a container."""
        self._run(["push", vmid, host_path, container_path])

    def is_ready(self, vmid: int) -> bool:
        """
        Check whether a container accepts commands.

        Returns:
            True if a trivial command succeeded inside the container.
        """
        result = self.executor.run(
            self.tool, ["exec", str(vmid), "--", "echo", "ready"], capture_output=True
        )
        return result.ok

    def create_container(self, vmid: int, source: str, config: ContainerConfig) -> None:
        """
        Create a service container. A numeric source is a template container
        and is cloned, then resized; anything else is a template archive.

        Args:
            vmid: Identifier for the new container.
            source: Template container id or template archive.
            config: Settings for the new container.
        """
        if source.isdigit():
            self.clone(source, vmid, hostname=config.hostname)
            options: List[Tuple[str, Any]] = []
            if config.memory > 0:
                options.append(("memory", config.memory))
            if config.cores > 0:
                options.append(("cores", config.cores))
            if config.swap > 0:
                options.append(("swap", config.swap))
            if config.net0:
                options.append(("net0", config.net0))
            self.set(vmid, options)
            return

        self.create(
            vmid,
            source,
            hostname=config.hostname,
            memory=config.memory,
            cores=config.cores,
            swap=config.swap,
            unprivileged=config.unprivileged,
            storage=config.storage,
            net0=config.net0,
        )

    def list_containers(self) -> List[ContainerInfo]:
        """
        List every container the tool knows about.

        Returns:
            Parsed rows of the tool's listing.
        """
        result = self._run(["list"], capture_output=True)
        return self.parse_container_list(result.stdout)

    def list_ids(self) -> List[int]:
        return [c.vmid for c in self.list_containers()]

    @staticmethod
    def parse_container_list(output: str) -> List[ContainerInfo]:
        """
        Parse the tool's listing::

            VMID       Status     Lock         Name
            100        running                 web-server
            101        stopped    backup       database

        The lock column is usually blank, so rows with three fields have no lock.
        """
        lines = output.strip().splitlines()
        if len(lines) < 2:
            return []

        containers = []
        for line in lines[1:]:
            fields = line.split()
            if len(fields) < 3 or not fields[0].isdigit():
                continue
            if len(fields) >= 4:
                info = ContainerInfo(
                    vmid=int(fields[0]), status=fields[1], lock=fields[2], name=fields[3]
                )
            else:
                info = ContainerInfo(vmid=int(fields[0]), status=fields[1], name=fields[2])
            containers.append(info)
        return containers
