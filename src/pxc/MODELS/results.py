"""
Results returned by the build pipeline and the deployment orchestrator.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..exceptions import CleanupStepWarning


class ServiceStatus(str, Enum):
    """Where a service ended up after one orchestration run."""

    RUNNING = "running"
    FAILED = "failed"
    REMOVED = "removed"


@dataclass
class BuildResult:
    """Output of one template build."""

    template_name: str
    template_reference: str
    ephemeral_id: int
    duration: float = 0.0
    executed_step_labels: List[str] = field(default_factory=list)
    warnings: List[CleanupStepWarning] = field(default_factory=list)


@dataclass
class ServiceResult:
    """Outcome for one service during ``up``."""

    name: str
    container_id: Optional[int] = None
    status: ServiceStatus = ServiceStatus.FAILED
    template: Optional[str] = None
    build_duration: float = 0.0
    start_duration: float = 0.0
    error: Optional[Exception] = None


@dataclass
class NetworkResult:
    name: str
    status: str
    error: Optional[Exception] = None


@dataclass
class VolumeResult:
    name: str
    status: str
    error: Optional[Exception] = None


@dataclass
class DeploymentResult:
    """Per-service outcomes of one ``up`` run, in deployment order."""

    services: List[ServiceResult] = field(default_factory=list)
    networks: List[NetworkResult] = field(default_factory=list)
    volumes: List[VolumeResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def succeeded(self) -> List[ServiceResult]:
        return [s for s in self.services if s.error is None]

    @property
    def failed(self) -> List[ServiceResult]:
        return [s for s in self.services if s.error is not None]

    def get(self, name: str) -> Optional[ServiceResult]:
        for service in self.services:
            if service.name == name:
                return service
        return None
