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
Orchestration for multiple services, managing dependencies and health.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .health_monitor import HealthMonitor, ServiceHealth
from .service_manager import ServiceManager
from ..MODELS.service_definition import HealthState
from ..MODELS.stack_description import StackDescription
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..exceptions import CommandError, HealthCheckTimeout, KeezerError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class OrchestrationResult:
    """What ``up`` did and how every service ended."""

    waves: List[List[str]] = field(default_factory=list)
    start_order: List[str] = field(default_factory=list)
    health: Dict[str, ServiceHealth] = field(default_factory=dict)
    errors: Dict[str, KeezerError] = field(default_factory=dict)

    @property
    def degraded(self) -> List[str]:
        return [name for name, h in self.health.items() if h.status != HealthState.HEALTHY]

    @property
    def all_healthy(self) -> bool:
        return not self.degraded


class StackOrchestrator:
    """
    Brings a stack up in dependency order through a service manager.

    A service is started once all of its dependencies have been started;
    health is only awaited after every start has been issued.
    """
    def __init__(self,
                 service_manager: ServiceManager,
                 health_monitor: Optional[HealthMonitor] = None,
                 max_concurrency: int = 4,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initializes the orchestrator.

        :param service_manager: Collaborator running the services.
        :param health_monitor: Health poller; one is created if omitted.
        :param max_concurrency: Upper bound on concurrent start commands.
        :param sleep: Sleep function handed to the default health monitor.
        """
        self.service_manager = service_manager
        self.health_monitor = health_monitor or HealthMonitor(service_manager, sleep=sleep)
        self.max_concurrency = max_concurrency
        self.resolver = DependencyResolver()
        self._lock = threading.Lock()

    def up(self, stack: StackDescription) -> OrchestrationResult:
        """
        Starts all services in dependency order and waits for their health.

        Start failures and unhealthy services are reported in the result and
        never raised; re-running converges on the same resources.

        :param stack: The stack description.
        :return: The orchestration result.
        :raises DependencyCycleError: Before anything is started, if the
            dependency graph has a cycle.
        """
        waves = self.resolver.resolve_waves(stack)
        result = OrchestrationResult(waves=waves)
        logger.info("Starting services", waves=[list(w) for w in waves])

        try:
            self.service_manager.prepare(stack)
        except CommandError as e:
            logger.error("Could not prepare stack resources", error=str(e))
            for name in stack.services:
                result.health[name] = ServiceHealth(status=HealthState.UNHEALTHY, last_output=str(e))
                result.errors[name] = e
            return result

        failed: Dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=self.max_concurrency,
                                thread_name_prefix="start") as pool:
            for wave in waves:
                runnable = []
                for name in wave:
                    blocked = [d for d in stack.services[name].depends_on if d in failed]
                    if blocked:
                        failed[name] = f"dependency {', '.join(blocked)} failed to start"
                    else:
                        runnable.append(name)
                futures = {name: pool.submit(self._start, name, result) for name in runnable}
                # Barrier: the next wave only begins once this one has been started.
                for name, future in futures.items():
                    error = future.result()
                    if error is not None:
                        failed[name] = str(error)
                        result.errors[name] = error

        for name, reason in failed.items():
            result.health[name] = ServiceHealth(status=HealthState.UNHEALTHY, last_output=reason)
            result.errors.setdefault(name, HealthCheckTimeout(name, 0, reason))

        started = [name for name in result.start_order if name not in failed]
        if started:
            with ThreadPoolExecutor(max_workers=len(started),
                                    thread_name_prefix="health") as pool:
                futures = {
                    name: pool.submit(self.health_monitor.wait_until_healthy, stack.services[name])
                    for name in started
                }
                for name, future in futures.items():
                    health = future.result()
                    result.health[name] = health
                    if health.status != HealthState.HEALTHY:
                        result.errors[name] = HealthCheckTimeout(name, health.probes, health.last_output)

        # Report in declaration order.
        result.health = {name: result.health[name] for name in stack.services if name in result.health}
        logger.info("Stack up", healthy=[n for n in result.health if n not in result.degraded],
                    degraded=result.degraded)
        return result

    def _start(self, name: str, result: OrchestrationResult) -> Optional[CommandError]:
        logger.info("Starting service", service=name)
        try:
            self.service_manager.start_service(name)
        except CommandError as e:
            logger.error("Service failed to start", service=name, error=str(e))
            return e
        with self._lock:
            result.start_order.append(name)
        return None

    def ps(self, stack: StackDescription) -> Dict[str, str]:
        """
        Returns the runtime status of all services.

        :return: Service names and their statuses.
        """
        return {name: self.service_manager.service_status(name) for name in stack.services}
