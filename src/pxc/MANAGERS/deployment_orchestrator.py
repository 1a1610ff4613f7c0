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
Orchestration for multi-service stacks: deploys services in dependency order
and tears them down in reverse.
"""
import logging
import shlex
import time
from typing import Dict, List, Optional

from ..BUILDERS.template_builder import TemplateBuilder
from ..exceptions import CommandError, PxcError, ServiceDeployError, TeardownWarning
from ..MODELS.container_config import ContainerConfig, ContainerInfo
from ..MODELS.results import DeploymentResult, ServiceResult, ServiceStatus
from ..MODELS.stack_manifest import RestartPolicy, ServiceSpec, StackManifest
from ..PARSERS.manifest_loader import ManifestLoader
from ..RUNNERS.container_client import ContainerClient
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.hook_runner import HookRunner
from .config_manager import Settings

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "pxc-project"
SERVICE_ID_BASE = 200
SERVICE_ID_SPAN = 1000
PROJECT_TAG = "pxc"
ENVIRONMENT_FILE = "/etc/environment"


class DeploymentOrchestrator:
    """
    Deploys the services of a stack based on their dependencies.
    """
    def __init__(self,
                 settings: Settings,
                 client: ContainerClient,
                 builder: TemplateBuilder,
                 loader: Optional[ManifestLoader] = None,
                 hooks: Optional[HookRunner] = None):
        """
        Initializes the orchestrator.

        :param settings: Resolved settings; ``project_name`` scopes container names and ids.
        :param client: Client for the container tool.
        :param builder: Builds templates for services with a build source.
        :param loader: Loads build manifests referenced by services.
        :param hooks: Runs lifecycle hooks on the host; hooks are skipped when None.
        """
        self.settings = settings
        self.client = client
        self.builder = builder
        self.loader = loader or ManifestLoader()
        self.hooks = hooks
        self.resolver = DependencyResolver()

    def project_name(self, stack: Optional[StackManifest] = None) -> str:
        if self.settings.project_name:
            return self.settings.project_name
        if stack is not None:
            return stack.stack_name(DEFAULT_PROJECT_NAME)
        return DEFAULT_PROJECT_NAME

    def container_id(self, project: str, service_name: str) -> int:
        """
        Derives a stable container id from the project and service names.
        Different stacks can collide; nothing coordinates ids across projects.
        """
        h = 0
        for char in project + service_name:
            h = (h * 31 + ord(char)) % SERVICE_ID_SPAN
        return SERVICE_ID_BASE + h

    def hostname(self, project: str, service_name: str, service: ServiceSpec) -> str:
        return service.hostname or f"{project}-{service_name}"

    def up(self, stack: StackManifest) -> DeploymentResult:
        """
        Deploys every service in dependency order.

        The first service that fails to build, create or start aborts the
        run. Services deployed before it are left running.

        :param stack: The parsed stack.
        :return: Per-service outcomes in deployment order.
        :raises ValidationError: Before any command runs, if the stack is invalid.
        :raises ServiceDeployError: Carrying the partial result.
        """
        started = time.monotonic()
        order = stack.validate_stack()
        project = self.project_name(stack)

        result = DeploymentResult()
        logger.info("Deploying stack: %s", stack.stack_name(project))

        self._run_hooks("pre-start", stack.hooks.pre_start)
        self._declare_networks(stack)
        self._declare_volumes(stack)

        logger.info("Service startup order: %s", " -> ".join(order))
        for name in order:
            service_result = ServiceResult(name=name)
            try:
                self._deploy_service(project, name, stack.services[name], stack, service_result)
            except (PxcError, OSError) as e:
                service_result.status = ServiceStatus.FAILED
                service_result.error = e
                result.services.append(service_result)
                result.duration = time.monotonic() - started
                raise ServiceDeployError(name, e, result) from e
            result.services.append(service_result)

        self._run_hooks("post-start", stack.hooks.post_start)

        result.duration = time.monotonic() - started
        logger.info("Stack deployed successfully in %.1fs", result.duration)
        return result

    def _deploy_service(self, project: str, name: str, service: ServiceSpec,
                        stack: StackManifest, result: ServiceResult) -> None:
        logger.info("Deploying service: %s", name)

        result.template = self._ensure_template(project, name, service, result)

        vmid = self.container_id(project, name)
        result.container_id = vmid

        config = self.build_container_config(project, name, service, stack)
        self.client.create_container(vmid, result.template, config)
        self._configure(vmid, config)

        start = time.monotonic()
        self.client.start(vmid)
        result.start_duration = time.monotonic() - start
        self._apply_environment(vmid, config)

        result.status = ServiceStatus.RUNNING
        logger.info("Service %s deployed successfully (container %d)", name, vmid)

    def _ensure_template(self, project: str, name: str, service: ServiceSpec,
                         result: ServiceResult) -> str:
        if not service.needs_build:
            return service.template

        manifest = self.loader.load_build_manifest(service.build.manifest_path())
        template_name = f"{project}-{name}:latest"

        logger.info("Building template for service %s", name)
        start = time.monotonic()
        try:
            build = self.builder.build(manifest, template_name, service.build.args)
        finally:
            result.build_duration = time.monotonic() - start
        return build.template_reference

    def build_container_config(self, project: str, name: str, service: ServiceSpec,
                               stack: StackManifest) -> ContainerConfig:
        """
        Merges resources per field: the service's own value, then the stack
        default, then zero (the tool's default).
        """
        defaults = stack.settings.default_resources
        own = service.resources

        def pick(field: str) -> int:
            for source in (own, defaults):
                value = getattr(source, field, 0) if source is not None else 0
                if value:
                    return value
            return 0

        storage = self.settings.storage
        if stack.settings.proxmox is not None and stack.settings.proxmox.storage:
            storage = stack.settings.proxmox.storage

        return ContainerConfig(
            hostname=self.hostname(project, name, service),
            memory=pick("memory"),
            cores=pick("cores"),
            swap=pick("swap"),
            storage=storage,
            unprivileged=True,
            onboot=service.restart in (RestartPolicy.ALWAYS, RestartPolicy.UNLESS_STOPPED),
            tags=f"{PROJECT_TAG};{project}",
            environment=dict(service.environment),
        )

    def _configure(self, vmid: int, config: ContainerConfig) -> None:
        options = []
        if config.onboot:
            options.append(("onboot", 1))
        if config.tags:
            options.append(("tags", config.tags))
        self.client.set(vmid, options)

    def _apply_environment(self, vmid: int, config: ContainerConfig) -> None:
        # pct has no create option for this; append to the running container's file
        for key, value in config.environment.items():
            line = shlex.quote(f"{key}={value}")
            self.client.exec(vmid, ["sh", "-c", f"echo {line} >> {ENVIRONMENT_FILE}"])

    def down(self, stack: StackManifest, remove_volumes: bool = False) -> List[TeardownWarning]:
        """
        Stops and removes every service in reverse dependency order.
        A failure for one service is reported and the rest are still removed.

        :param stack: The parsed stack.
        :param remove_volumes: Also remove the stack's named volumes.
        :return: One warning per service that could not be removed.
        :raises ValidationError: Before any command runs, if the stack is invalid.
        """
        stack.validate_stack()
        order = self.resolver.resolve_shutdown_order(stack.services)
        project = self.project_name(stack)
        logger.info("Stopping stack: %s", stack.stack_name(project))

        self._run_hooks("pre-stop", stack.hooks.pre_stop)

        logger.info("Service shutdown order: %s", " -> ".join(order))
        warnings = []
        for name in order:
            warning = self._remove_service(project, name)
            if warning is not None:
                logger.warning("%s", warning)
                warnings.append(warning)

        if remove_volumes:
            for volume in stack.volumes:
                # Volume storage is owned by the host; only the request is recorded
                logger.info("Removing volume: %s", volume)

        self._run_hooks("post-stop", stack.hooks.post_stop)

        logger.info("Stack stopped")
        return warnings

    def _remove_service(self, project: str, name: str) -> Optional[TeardownWarning]:
        vmid = self.container_id(project, name)
        logger.info("Removing service: %s (container %d)", name, vmid)
        try:
            self.client.stop(vmid)
        except CommandError as e:
            # Already stopped containers refuse to stop
            logger.debug("Stop failed for container %d (ignored): %s", vmid, e)
        try:
            self.client.destroy(vmid)
        except CommandError as e:
            return TeardownWarning(name, str(e))
        return None

    def ps(self, stack: StackManifest) -> Dict[str, Optional[ContainerInfo]]:
        """
        Looks up each service's container in the tool's listing.

        :return: Service name to its listed container, or None if absent.
        """
        project = self.project_name(stack)
        listed = {c.vmid: c for c in self.client.list_containers()}
        return {
            name: listed.get(self.container_id(project, name))
            for name in stack.services
        }

    def plan(self, stack: StackManifest) -> List[str]:
        """
        Describes what ``up`` would do, without running any command.
        """
        order = stack.validate_stack()
        project = self.project_name(stack)
        lines = []
        for name in order:
            service = stack.services[name]
            vmid = self.container_id(project, name)
            if service.needs_build:
                source = f"build {service.build.manifest_path()} as {project}-{name}:latest"
            else:
                source = f"template {service.template}"
            lines.append(f"{name}: container {vmid} from {source}")
        return lines

    def _declare_networks(self, stack: StackManifest) -> None:
        for name in stack.networks:
            logger.debug("Network %s is managed by the host bridge configuration", name)

    def _declare_volumes(self, stack: StackManifest) -> None:
        for name in stack.volumes:
            logger.debug("Volume %s is managed by host storage", name)

    def _run_hooks(self, stage: str, hooks: List[str]) -> None:
        if self.hooks is None or not hooks:
            return
        for hook, reason in self.hooks.run(stage, hooks):
            logger.warning("%s hook failed (%s): %s", stage, hook, reason)
