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
Loaders for build manifests (LXCfile.yml) and stack manifests (lxc-stack.yml).
"""
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from ..exceptions import ManifestNotFoundError, ValidationError
from ..MODELS.build_manifest import BuildManifest, CopyStep
from ..MODELS.stack_manifest import StackManifest
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

BUILD_MANIFEST_NAMES = ("LXCfile.yml", "LXCfile.yaml", "lxcfile.yml", "lxcfile.yaml")
STACK_MANIFEST_NAMES = (
    "lxc-stack.yml",
    "lxc-stack.yaml",
    "stack.yml",
    "stack.yaml",
    "docker-compose.yml",
    "docker-compose.yaml",
)


def _find_first(names: Sequence[str], directory: str) -> str:
    for name in names:
        path = os.path.join(directory, name)
        if os.path.isfile(path):
            return path
    return os.path.join(directory, names[0])


def find_build_manifest(directory: str = ".") -> str:
    """
    Returns the first default build manifest name present in ``directory``,
    falling back to ``LXCfile.yml``.
    """
    return _find_first(BUILD_MANIFEST_NAMES, directory)


def find_stack_manifest(directory: str = ".") -> str:
    """
    Returns the first default stack manifest name present in ``directory``,
    falling back to ``lxc-stack.yml``.
    """
    return _find_first(STACK_MANIFEST_NAMES, directory)


class ManifestLoader:
    """
    Reads manifest files, interpolates ``${VAR}`` references in stack
    manifests and validates the result into manifest models.
    """
    def __init__(self, context: Optional[Mapping[str, str]] = None):
        """
        Initializes the loader with an optional environment context for interpolation.

        :param context: Variables for interpolation; defaults to the process environment.
        """
        self.context = dict(context) if context is not None else dict(os.environ)

    def load_build_manifest(self, path: str) -> BuildManifest:
        """
        Loads a build manifest. Relative copy sources are resolved against
        the manifest's directory. The text is not interpolated: ${KEY} in run
        steps belongs to build arguments and the container's shell.

        :param path: Path to the LXCfile.
        :return: The validated manifest.
        :raises ValidationError: If the file is missing, unreadable or invalid.
        """
        data = self._read(path, interpolate=False)
        manifest = self.parse_build_manifest(data)
        base_dir = os.path.dirname(os.path.abspath(path))
        for step in manifest.setup_steps + manifest.cleanup_steps:
            if isinstance(step, CopyStep) and not os.path.isabs(step.source):
                step.source = os.path.join(base_dir, step.source)
        return manifest

    def load_stack_manifest(self, path: str) -> StackManifest:
        """
        Loads a stack manifest. Relative build contexts and relative host
        volume paths are resolved against the stack file's directory.

        :param path: Path to the stack file.
        :return: The parsed stack; call ``validate_stack`` to check references.
        :raises ValidationError: If the file is missing, unreadable or invalid.
        """
        data = self._read(path)
        stack = self.parse_stack_manifest(data)
        base_dir = os.path.dirname(os.path.abspath(path))
        for service in stack.services.values():
            if service.build is not None and not os.path.isabs(service.build.context):
                service.build.context = os.path.normpath(
                    os.path.join(base_dir, service.build.context)
                )
            service.volumes = [self._resolve_volume(v, base_dir) for v in service.volumes]
        return stack

    def parse_build_manifest(self, data: Any) -> BuildManifest:
        return BuildManifest.from_mapping(data)

    def parse_stack_manifest(self, data: Any) -> StackManifest:
        return StackManifest.from_mapping(data)

    def parse_string(self, content: str, source: str = "<string>",
                     interpolate: bool = True) -> Dict[str, Any]:
        """
        Interpolates and parses YAML content.

        :param content: YAML text.
        :param source: Name used in error messages.
        :param interpolate: Substitute ${VAR} references from the context first.
        :return: The parsed mapping.
        :raises ValidationError: If the YAML is malformed or not a mapping.
        """
        if interpolate:
            content = self._interpolate(content, source)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValidationError(f"failed to parse {source}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError(f"{source} must contain a mapping at the top level")
        return data

    def _interpolate(self, content: str, source: str) -> str:
        missing = set()
        content = EnvironmentInterpolator.interpolate(
            content, self.context, strict=False, missing=missing
        )
        for name in sorted(missing):
            # Unset ${VAR} resolves to an empty string, as in Compose
            logger.warning("Variable %s is not set, substituting an empty string (%s)", name, source)
        return content

    def _read(self, path: str, interpolate: bool = True) -> Dict[str, Any]:
        if not os.path.isfile(path):
            raise ManifestNotFoundError(path, self.suggest(path))
        with open(path, 'r') as f:
            content = f.read()
        return self.parse_string(content, source=path, interpolate=interpolate)

    @staticmethod
    def suggest(path: str) -> List[str]:
        """
        Lists YAML files next to a missing manifest that might be what the
        user meant.
        """
        directory = os.path.dirname(path) or "."
        if not os.path.isdir(directory):
            return []
        suggestions = []
        for name in sorted(os.listdir(directory)):
            full = os.path.join(directory, name)
            if not os.path.isfile(full):
                continue
            lowered = name.lower()
            if "lxc" in lowered or lowered.endswith((".yml", ".yaml")):
                suggestions.append(full)
        return suggestions

    @staticmethod
    def _resolve_volume(volume: str, base_dir: str) -> str:
        # Only ./relative and ../relative host paths; named volumes stay as-is
        source, sep, rest = volume.partition(":")
        if sep and source.startswith(("./", "../")):
            return os.path.normpath(os.path.join(base_dir, source)) + sep + rest
        return volume
