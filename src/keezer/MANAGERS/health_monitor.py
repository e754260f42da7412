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
Health polling for started services: runs each service's health check
inside the service at its configured interval until it passes or the
retry budget runs out.
"""
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .service_manager import ServiceManager
from ..MODELS.service_definition import HealthState, ServiceSpec
from ..exceptions import CommandError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceHealth:
    """Health information for a service."""

    status: HealthState = HealthState.UNKNOWN
    failing_streak: int = 0
    probes: int = 0
    last_check: Optional[str] = None
    last_output: str = ""


class HealthMonitor:
    """
    Waits for services to become healthy. Safe to call from several threads,
    one per service.
    """

    def __init__(
        self,
        service_manager: ServiceManager,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initializes the health monitor.

        :param service_manager: Collaborator that runs the probes.
        :param sleep: Sleep function, replaceable in tests.
        """
        self.service_manager = service_manager
        self.sleep = sleep
        self._health: Dict[str, ServiceHealth] = {}
        self._lock = threading.Lock()

    def get_health(self, service_name: str) -> ServiceHealth:
        """
        Get the health status of a service.

        Args:
            service_name: Name of the service.

        Returns:
            ServiceHealth object.
        """
        with self._lock:
            return self._health.get(service_name, ServiceHealth())

    def get_all_health(self) -> Dict[str, ServiceHealth]:
        """Get health status of all services."""
        with self._lock:
            return self._health.copy()

    def reset_health(self, name: str) -> None:
        with self._lock:
            self._health[name] = ServiceHealth()

    def wait_until_healthy(self, spec: ServiceSpec) -> ServiceHealth:
        """
        Polls a service's health check until it passes or the retry budget is spent.

        Args:
            spec: The service to wait for.

        Returns:
            ServiceHealth with status HEALTHY or UNHEALTHY. Services without a
            health check count as healthy once started.
        """
        health = ServiceHealth(status=HealthState.STARTING)
        with self._lock:
            self._health[spec.name] = health

        hc = spec.health_check
        if not hc or hc.disabled:
            health.status = HealthState.HEALTHY
            return health

        if hc.start_period > 0:
            self.sleep(hc.start_period)

        logger.info("Waiting for service to become healthy", service=spec.name,
                    retries=hc.retries, interval=hc.interval)
        for probe_number in range(1, hc.retries + 1):
            try:
                result = self.service_manager.probe(spec.name, hc, timeout=hc.timeout)
                state, output = result.state, result.output
            except CommandError as e:
                state, output = HealthState.UNHEALTHY, str(e)

            health.probes = probe_number
            health.last_output = output
            health.last_check = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

            if state == HealthState.HEALTHY:
                health.status = HealthState.HEALTHY
                health.failing_streak = 0
                logger.info("Service healthy", service=spec.name, probes=probe_number)
                return health

            health.failing_streak += 1
            logger.debug("Health probe failed", service=spec.name, probe=probe_number, output=output)
            if probe_number < hc.retries:
                self.sleep(hc.interval)

        health.status = HealthState.UNHEALTHY
        logger.warning("Service did not become healthy", service=spec.name,
                       probes=health.probes, last_output=health.last_output)
        return health
