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
Builds reusable container templates from build manifests.

A build drives one ephemeral container through a fixed sequence of phases:

    allocate -> create -> start -> await-ready -> setup steps -> apply config
    -> cleanup steps -> stop -> export -> finalize

Export converts the container into a template in place, so a successful
build keeps the container. Any failure after create destroys it instead.
"""
import logging
import time
from typing import Any, Callable, Collection, List, Mapping, Optional, Tuple

from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from ..exceptions import (
    BuildError,
    BuildPhase,
    CleanupStepWarning,
    CommandError,
    ExportError,
    ReadinessTimeoutError,
    StepExecutionError,
)
from ..MANAGERS.config_manager import Settings
from ..MODELS.build_manifest import BuildManifest
from ..MODELS.results import BuildResult
from ..RUNNERS.container_client import ContainerClient
from .step_executor import StepExecutor

logger = logging.getLogger(__name__)


class EphemeralIdAllocator:
    """
    Picks identifiers for build containers from a time-based value.

    Allocation is best-effort: identifiers the tool already lists are
    skipped, but nothing is reserved, so two builds running at the same time
    can still pick the same identifier.
    """

    BASE = 10000
    SPAN = 100000

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def allocate(self, in_use: Collection[int] = ()) -> int:
        """
        Returns an identifier not present in ``in_use``.

        Args:
            in_use: Identifiers known to be taken.

        Raises:
            BuildError: If every identifier in the range is taken.
        """
        taken = set(in_use)
        offset = int(self.clock()) % self.SPAN
        for step in range(self.SPAN):
            candidate = self.BASE + (offset + step) % self.SPAN
            if candidate not in taken:
                return candidate
        raise BuildError("no free container identifier for the build", BuildPhase.ALLOCATE)


class TemplateBuilder:
    """
    Turns a build manifest into a template via an ephemeral container.
    """

    def __init__(
        self,
        client: ContainerClient,
        settings: Optional[Settings] = None,
        allocator: Optional[EphemeralIdAllocator] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the builder.

        Args:
            client: Client for the container tool.
            settings: Build defaults and readiness poll budget.
            allocator: Source of ephemeral container identifiers.
            sleep: Used between readiness attempts.
        """
        self.client = client
        self.settings = settings or Settings()
        self.allocator = allocator or EphemeralIdAllocator()
        self._sleep = sleep

    def build(
        self,
        manifest: BuildManifest,
        template_name: str,
        build_args: Optional[Mapping[str, str]] = None,
    ) -> BuildResult:
        """
        Build a template.

        Args:
            manifest: Validated build manifest.
            template_name: Name reported for the resulting template.
            build_args: Values substituted into run steps.

        Returns:
            BuildResult whose ``template_reference`` is the exported container id.

        Raises:
            BuildError: ReadinessTimeoutError, StepExecutionError, ExportError
                or a plain BuildError for the other phases. The ephemeral
                container has already been released when this is raised.
        """
        build_args = dict(build_args or {})
        started = time.monotonic()

        vmid = self._allocate()
        result = BuildResult(
            template_name=template_name, template_reference="", ephemeral_id=vmid
        )
        logger.info("Building template %s from %s", template_name, manifest.base_image)
        logger.debug("Using temporary container ID: %d", vmid)

        # Nothing to release if creation fails
        self._create(vmid, manifest.base_image)

        try:
            self._start(vmid)
            self._await_ready(vmid)

            steps = StepExecutor(self.client)
            self._run_setup_steps(vmid, steps, manifest, build_args, result)
            self._apply_config(vmid, manifest)
            self._run_cleanup_steps(vmid, steps, manifest, build_args, result)

            self._stop(vmid)
            result.template_reference = self._export(vmid, template_name)
        except Exception as e:
            self._finalize(vmid, e)
            raise

        result.duration = time.monotonic() - started
        logger.info(
            "Template %s built in %.1fs (container %s)",
            template_name, result.duration, result.template_reference,
        )
        return result

    def _allocate(self) -> int:
        try:
            in_use = self.client.list_ids()
        except CommandError as e:
            logger.debug("Could not list existing containers: %s", e)
            in_use = []
        return self.allocator.allocate(in_use)

    def _create(self, vmid: int, base_image: str) -> None:
        logger.info("Creating temporary container %d from template: %s", vmid, base_image)
        # Small build-time footprint; final resources are applied after setup
        try:
            self.client.create(
                vmid,
                base_image,
                hostname=f"{self.settings.build_hostname_prefix}{vmid}",
                memory=self.settings.build_memory,
                cores=self.settings.build_cores,
                unprivileged=True,
                storage=self.settings.storage,
            )
        except CommandError as e:
            raise BuildError(
                f"failed to create temporary container: {e}", BuildPhase.CREATE, vmid
            ) from e

    def _start(self, vmid: int) -> None:
        logger.info("Starting container %d", vmid)
        try:
            self.client.start(vmid)
        except CommandError as e:
            raise BuildError(
                f"failed to start temporary container: {e}", BuildPhase.START, vmid
            ) from e

    def _await_ready(self, vmid: int) -> None:
        logger.info("Waiting for container %d to be ready...", vmid)
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.ready_attempts),
            wait=wait_fixed(self.settings.ready_interval),
            retry=retry_if_result(lambda ready: not ready),
            sleep=self._sleep,
        )
        try:
            retrying(self.client.is_ready, vmid)
        except RetryError as e:
            raise ReadinessTimeoutError(vmid, e.last_attempt.attempt_number) from None

    def _run_setup_steps(self, vmid, steps, manifest, build_args, result) -> None:
        for position, step in enumerate(manifest.setup_steps, start=1):
            label = f"Step {position}"
            try:
                steps.execute(vmid, step, label, build_args)
            except (CommandError, OSError) as e:
                raise StepExecutionError(vmid, position, label, str(e)) from e
            result.executed_step_labels.append(label)

    def _run_cleanup_steps(self, vmid, steps, manifest, build_args, result) -> None:
        for position, step in enumerate(manifest.cleanup_steps, start=1):
            label = f"Cleanup {position}"
            try:
                steps.execute(vmid, step, label, build_args)
            except (CommandError, OSError) as e:
                warning = CleanupStepWarning(position, label, str(e))
                logger.warning("%s", warning)
                result.warnings.append(warning)
            else:
                result.executed_step_labels.append(label)

    @staticmethod
    def config_options(manifest: BuildManifest) -> List[Tuple[str, Any]]:
        """
        Translate manifest resources and features into tool options.
        """
        options: List[Tuple[str, Any]] = []
        if manifest.resources is not None:
            if manifest.resources.cores > 0:
                options.append(("cores", manifest.resources.cores))
            if manifest.resources.memory > 0:
                options.append(("memory", manifest.resources.memory))
            if manifest.resources.swap > 0:
                options.append(("swap", manifest.resources.swap))
        if manifest.features is not None:
            flags = manifest.features.flags()
            if flags:
                options.append(("features", ",".join(flags)))
        return options

    def _apply_config(self, vmid: int, manifest: BuildManifest) -> None:
        if not manifest.has_configuration():
            return
        options = self.config_options(manifest)
        if not options:
            return
        logger.info("Applying container configuration")
        try:
            self.client.set(vmid, options)
        except CommandError as e:
            raise BuildError(
                f"failed to apply container configuration: {e}", BuildPhase.APPLY_CONFIG, vmid
            ) from e

    def _stop(self, vmid: int) -> None:
        logger.info("Stopping container %d", vmid)
        try:
            self.client.stop(vmid)
        except CommandError as e:
            raise ExportError(f"failed to stop container: {e}", BuildPhase.STOP, vmid) from e

    def _export(self, vmid: int, template_name: str) -> str:
        logger.info("Converting container to template: %s", template_name)
        try:
            self.client.template(vmid)
        except CommandError as e:
            raise ExportError(f"failed to export template: {e}", BuildPhase.EXPORT, vmid) from e
        # Templates are referenced by container id
        return str(vmid)

    def _finalize(self, vmid: int, error: Exception) -> None:
        """
        Release the ephemeral container after a failure. Never raises; a
        destroy failure is attached to ``error`` instead.
        """
        logger.info("Cleaning up temporary container %d", vmid)
        try:
            self.client.stop(vmid)
        except CommandError as e:
            logger.debug("Stop before destroy failed (ignored): %s", e)

        try:
            self.client.destroy(vmid)
        except CommandError as e:
            logger.error("Failed to cleanup temporary container %d: %s", vmid, e)
            if isinstance(error, BuildError):
                error.cleanup_error = e
