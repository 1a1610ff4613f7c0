"""
Dependency resolution for services to determine startup and shutdown order.
"""
from typing import TYPE_CHECKING, Dict, List, Mapping

from ..exceptions import CycleError, UndefinedServiceError

if TYPE_CHECKING:
    from ..MODELS.stack_manifest import ServiceSpec


class DependencyResolver:
    """
    Resolves the startup and shutdown order of services based on their dependencies.
    """
    def resolve_order(self, services: Mapping[str, "ServiceSpec"]) -> List[str]:
        """
        Determines the correct order to start services using a depth-first
        topological sort. Every dependency precedes its dependents; the
        relative order of independent services follows mapping order.

        :param services: Service definitions keyed by name.
        :return: Service names in the order they should be started.
        :raises UndefinedServiceError: If a service depends on an unknown name.
        :raises CycleError: If a circular dependency is detected.
        """
        dependencies: Dict[str, List[str]] = {
            name: list(svc.depends_on) for name, svc in services.items()
        }

        # Referential integrity is checked before any traversal
        for name, deps in dependencies.items():
            for dep in deps:
                if dep not in dependencies:
                    raise UndefinedServiceError(name, dep)

        ordered: List[str] = []
        visited = set()
        processing: List[str] = []

        def visit(name: str):
            """
            Recursive function for topological sort.
            """
            if name in processing:
                cycle = processing[processing.index(name):] + [name]
                raise CycleError(name, cycle)
            if name not in visited:
                processing.append(name)
                for dep in dependencies[name]:
                    visit(dep)
                processing.pop()
                visited.add(name)
                ordered.append(name)

        for name in dependencies:
            visit(name)

        return ordered

    def resolve_shutdown_order(self, services: Mapping[str, "ServiceSpec"]) -> List[str]:
        """
        Determines the order to stop services: the startup order reversed.

        :param services: Service definitions keyed by name.
        :return: Service names in the order they should be stopped.
        """
        return list(reversed(self.resolve_order(services)))
