"""
Shared fakes for the provisioning tests: a recording command runner and an
in-memory service manager whose failures can be scripted per image/service.
"""
import threading
from typing import Dict, List, Optional, Sequence

import pytest

from keezer.CONFIG.settings import ProvisionSettings
from keezer.MANAGERS.service_manager import ProbeResult, ServiceManager
from keezer.MODELS.service_definition import HealthCheck, HealthState, ServiceSpec
from keezer.MODELS.stack_description import StackDescription
from keezer.RUNNERS.command_runner import CommandResult
from keezer.exceptions import CommandError


class FakeRunner:
    """Records every command and replies with results scripted by command prefix."""

    def __init__(self, responses: Optional[Dict[str, CommandResult]] = None):
        self.calls: List[List[str]] = []
        self.timeouts: List[Optional[float]] = []
        self.responses = responses or {}

    def run(self, command, timeout=None, input=None, cwd=None, env=None, secrets=()):
        argv = list(command)
        self.calls.append(argv)
        self.timeouts.append(timeout)
        joined = " ".join(argv)
        for prefix, result in self.responses.items():
            if joined.startswith(prefix):
                return CommandResult(command=argv, returncode=result.returncode,
                                     stdout=result.stdout, stderr=result.stderr,
                                     secrets=tuple(secrets))
        return CommandResult(command=argv, returncode=0, secrets=tuple(secrets))

    def run_shell(self, script, timeout=None):
        return self.run(["sh", "-c", script], timeout=timeout)


class FakeServiceManager(ServiceManager):
    """
    In-memory container runtime.

    pull_failures: image -> number of failing pulls before it succeeds
        (use a large number for an image that never pulls).
    start_failures: services whose start command fails.
    probes: service -> health states returned by successive probes; the
        last one repeats. Services not listed are healthy.
    exec_failures: service -> number of failing exec calls before success.
    """

    def __init__(self,
                 project_name: str = "keezer",
                 pull_failures: Optional[Dict[str, int]] = None,
                 start_failures: Sequence[str] = (),
                 probes: Optional[Dict[str, List[HealthState]]] = None,
                 exec_failures: Optional[Dict[str, int]] = None):
        self.project_name = project_name
        self.pull_failures = dict(pull_failures or {})
        self.start_failures = set(start_failures)
        self.probes = {k: list(v) for k, v in (probes or {}).items()}
        self.exec_failures = dict(exec_failures or {})

        self.pulls: List[str] = []
        self.pulled: List[str] = []
        self.started: List[str] = []
        self.execs: List[tuple] = []
        self.probe_calls: List[str] = []
        self.prepared = 0
        self.pruned = 0

        self.containers: Dict[str, str] = {}
        self.running: set = set()
        self.volumes: set = set()
        self.networks: set = set()
        self._lock = threading.Lock()

    def pull_image(self, image: str) -> None:
        self.pulls.append(image)
        remaining = self.pull_failures.get(image, 0)
        if remaining > 0:
            self.pull_failures[image] = remaining - 1
            raise CommandError(f"docker pull {image}", 1, "manifest unknown")
        if image not in self.pulled:
            self.pulled.append(image)

    def prepare(self, stack: StackDescription) -> None:
        self.prepared += 1
        for name, spec in stack.services.items():
            self.containers[spec.container_name or name] = name
        self.volumes.update(stack.volumes)
        self.networks.add(f"{stack.project_name}_default")

    def start_service(self, service: str) -> None:
        with self._lock:
            self.started.append(service)
        if service in self.start_failures:
            raise CommandError(f"docker compose start {service}", 1, "port is already allocated")
        with self._lock:
            self.running.add(service)

    def probe(self, service: str, health_check: HealthCheck, timeout: float) -> ProbeResult:
        with self._lock:
            self.probe_calls.append(service)
            states = self.probes.get(service)
            if not states:
                return ProbeResult(HealthState.HEALTHY)
            state = states.pop(0) if len(states) > 1 else states[0]
        return ProbeResult(state, "" if state == HealthState.HEALTHY else "connection refused")

    def exec_in_service(self, service, command, timeout=None, secrets=()) -> CommandResult:
        self.execs.append((service, list(command)))
        remaining = self.exec_failures.get(service, 0)
        if remaining > 0:
            self.exec_failures[service] = remaining - 1
            raise CommandError(" ".join(command), 1, "Error: Connection refused")
        return CommandResult(command=list(command), returncode=0)

    def service_status(self, service: str) -> str:
        return "running" if service in self.running else "absent"

    def list_containers(self) -> List[str]:
        return sorted(self.containers)

    def stop_container(self, container: str) -> bool:
        if container not in self.containers:
            return False
        self.running.discard(self.containers[container])
        return True

    def remove_container(self, container: str) -> bool:
        return self.containers.pop(container, None) is not None

    def list_volumes(self) -> List[str]:
        return sorted(self.volumes)

    def remove_volume(self, volume: str) -> bool:
        if volume not in self.volumes:
            return False
        self.volumes.discard(volume)
        return True

    def list_networks(self) -> List[str]:
        return sorted(self.networks)

    def remove_network(self, network: str) -> bool:
        if network not in self.networks:
            return False
        self.networks.discard(network)
        return True

    def prune(self) -> None:
        self.pruned += 1


def no_sleep(seconds: float) -> None:
    pass


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_stack(services: Dict[str, List[str]], project: str = "demo", **extra) -> StackDescription:
    """Builds a stack from a name -> depends_on mapping."""
    specs = {
        name: ServiceSpec(
            name=name,
            image=f"{name}:1",
            depends_on=deps,
            health_check=HealthCheck(test=["CMD", "true"], interval=1, timeout=1, retries=3),
        )
        for name, deps in services.items()
    }
    return StackDescription(project_name=project, services=specs, **extra)


@pytest.fixture
def settings(tmp_path):
    return ProvisionSettings(
        stack_dir=str(tmp_path / "keezer-base"),
        pull_initial_delay=0,
        post_config_delay=0,
    )
