"""
Dependency resolution for services to determine startup and teardown order.
"""
from typing import List, Dict, Set
from ..MODELS.stack_description import StackDescription
from ..exceptions import DependencyCycleError


class DependencyResolver:
    """
    Resolves the startup order of services based on their dependencies.
    """
    def resolve_order(self, stack: StackDescription) -> List[str]:
        """
        Determines the order to start services using a depth-first topological sort.
        Services keep their declaration order where the graph allows it.

        :param stack: The stack description.
        :return: Service names in the order they should be started.
        :raises DependencyCycleError: If a circular dependency is detected.
        """
        services = stack.services
        dependencies = {name: list(svc.depends_on) for name, svc in services.items()}

        ordered: List[str] = []
        visited: Set[str] = set()
        path: List[str] = []

        def visit(name: str):
            """
            Recursive function for topological sort.
            """
            if name in path:
                raise DependencyCycleError(path[path.index(name):] + [name])
            if name in visited:
                return
            path.append(name)
            for dep in dependencies.get(name, []):
                if dep in services:
                    visit(dep)
            path.pop()
            visited.add(name)
            ordered.append(name)

        for name in services:
            visit(name)

        return ordered

    def resolve_waves(self, stack: StackDescription) -> List[List[str]]:
        """
        Groups services into waves: every service's dependencies sit in an
        earlier wave, so services within one wave can start concurrently.

        :param stack: The stack description.
        :return: Lists of service names, one per wave.
        :raises DependencyCycleError: If a circular dependency is detected.
        """
        order = self.resolve_order(stack)
        depth: Dict[str, int] = {}
        for name in order:
            deps = [d for d in stack.services[name].depends_on if d in stack.services]
            depth[name] = 1 + max((depth[d] for d in deps), default=-1)

        waves: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for name in order:
            waves[depth[name]].append(name)
        return waves
