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
The service manager collaborator: the capability set the provisioning phases
need from a container runtime, and its implementation on the docker CLI.
"""
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..MODELS.service_definition import HealthCheck, HealthState
from ..MODELS.stack_description import StackDescription
from ..RUNNERS.command_runner import CommandResult, CommandRunner
from ..exceptions import CommandError, CommandTimeoutError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)

PROJECT_LABEL = "com.docker.compose.project"
DEFAULT_NETWORKS = ("bridge", "host", "none")
_NOT_FOUND_MARKERS = ("no such", "not found")


@dataclass
class ProbeResult:
    """Outcome of a single health probe."""

    state: HealthState
    output: str = ""


class ServiceManager(ABC):
    """
    Runs, networks and persists the stack's workloads.

    Removal methods return False instead of raising when the target is
    already gone.
    """

    @abstractmethod
    def pull_image(self, image: str) -> None:
        """Fetches an image; raises on failure."""

    @abstractmethod
    def prepare(self, stack: StackDescription) -> None:
        """Creates or updates networks, volumes and containers without starting them."""

    @abstractmethod
    def start_service(self, service: str) -> None:
        """Starts one prepared service; a running service is left as is."""

    @abstractmethod
    def probe(self, service: str, health_check: HealthCheck, timeout: float) -> ProbeResult:
        """Runs one health probe inside a service."""

    @abstractmethod
    def exec_in_service(self, service: str, command: Sequence[str],
                        timeout: Optional[float] = None,
                        secrets: Sequence[str] = ()) -> CommandResult:
        """Runs a one-off command inside a running service."""

    @abstractmethod
    def service_status(self, service: str) -> str:
        """Returns the runtime's view of a service, e.g. ``running (healthy)``."""

    @abstractmethod
    def list_containers(self) -> List[str]: ...

    @abstractmethod
    def stop_container(self, container: str) -> bool: ...

    @abstractmethod
    def remove_container(self, container: str) -> bool: ...

    @abstractmethod
    def list_volumes(self) -> List[str]: ...

    @abstractmethod
    def remove_volume(self, volume: str) -> bool: ...

    @abstractmethod
    def list_networks(self) -> List[str]: ...

    @abstractmethod
    def remove_network(self, network: str) -> bool: ...

    @abstractmethod
    def prune(self) -> None: ...


def _is_not_found(result: CommandResult) -> bool:
    stderr = result.stderr.lower()
    return any(marker in stderr for marker in _NOT_FOUND_MARKERS)


class DockerServiceManager(ServiceManager):
    """
    Service manager backed by the ``docker`` and ``docker compose`` CLIs.
    """
    def __init__(self,
                 project_name: str,
                 project_dir: str,
                 runner: Optional[CommandRunner] = None,
                 docker_binary: str = "docker",
                 pull_timeout: float = 900,
                 command_timeout: float = 120):
        """
        Initializes the docker service manager.

        :param project_name: Compose project name; labels every managed resource.
        :param project_dir: Directory holding docker-compose.yml and .env.
        :param runner: Command runner, replaceable in tests.
        :param docker_binary: Path or name of the docker executable.
        :param pull_timeout: Seconds allowed for a single image pull.
        :param command_timeout: Seconds allowed for other commands.
        """
        self.project_name = project_name
        self.project_dir = project_dir
        self.runner = runner or CommandRunner()
        self.docker = docker_binary
        self.pull_timeout = pull_timeout
        self.command_timeout = command_timeout

    @property
    def compose_file(self) -> str:
        return os.path.join(self.project_dir, "docker-compose.yml")

    def _compose(self, *args: str) -> List[str]:
        return [
            self.docker, "compose",
            "-p", self.project_name,
            "--project-directory", self.project_dir,
            "-f", self.compose_file,
            *args,
        ]

    def _label_filter(self) -> List[str]:
        return ["--filter", f"label={PROJECT_LABEL}={self.project_name}"]

    def pull_image(self, image: str) -> None:
        self.runner.run([self.docker, "pull", image], timeout=self.pull_timeout).check()

    def prepare(self, stack: StackDescription) -> None:
        # Re-running converges: unchanged containers are kept, changed ones recreated.
        self.runner.run(
            self._compose("up", "--no-start", "--remove-orphans"),
            timeout=self.command_timeout,
        ).check()

    def start_service(self, service: str) -> None:
        self.runner.run(self._compose("start", service), timeout=self.command_timeout).check()

    def probe(self, service: str, health_check: HealthCheck, timeout: float) -> ProbeResult:
        command = health_check.command()
        if not command:
            return ProbeResult(HealthState.HEALTHY)
        try:
            result = self.runner.run(self._compose("exec", "-T", service, *command), timeout=timeout)
        except CommandTimeoutError:
            return ProbeResult(HealthState.UNHEALTHY, f"probe timed out after {timeout:g}s")
        if result.ok:
            return ProbeResult(HealthState.HEALTHY, result.stdout.strip()[:500])
        return ProbeResult(
            HealthState.UNHEALTHY,
            (result.stderr or result.stdout).strip()[:500] or f"exit code {result.returncode}",
        )

    def exec_in_service(self, service: str, command: Sequence[str],
                        timeout: Optional[float] = None,
                        secrets: Sequence[str] = ()) -> CommandResult:
        return self.runner.run(
            self._compose("exec", "-T", service, *command),
            timeout=timeout if timeout is not None else self.command_timeout,
            secrets=secrets,
        ).check()

    def service_status(self, service: str) -> str:
        result = self.runner.run(
            self._compose("ps", "--all", "--format", "json", service),
            timeout=self.command_timeout,
        )
        if not result.ok or not result.stdout.strip():
            return "absent"
        entries = _parse_ps_json(result.stdout)
        if not entries:
            return "absent"
        entry = entries[0]
        state = entry.get("State", "unknown")
        health = entry.get("Health")
        return f"{state} ({health})" if health else state

    def list_containers(self) -> List[str]:
        result = self.runner.run(
            [self.docker, "ps", "-a", "-q", *self._label_filter()],
            timeout=self.command_timeout,
        ).check()
        return result.stdout.split()

    def stop_container(self, container: str) -> bool:
        return self._remove([self.docker, "stop", container])

    def remove_container(self, container: str) -> bool:
        return self._remove([self.docker, "rm", "-f", "-v", container])

    def list_volumes(self) -> List[str]:
        result = self.runner.run(
            [self.docker, "volume", "ls", "-q", *self._label_filter()],
            timeout=self.command_timeout,
        ).check()
        return result.stdout.split()

    def remove_volume(self, volume: str) -> bool:
        return self._remove([self.docker, "volume", "rm", "-f", volume])

    def list_networks(self) -> List[str]:
        result = self.runner.run(
            [self.docker, "network", "ls", "--format", "{{.Name}}", *self._label_filter()],
            timeout=self.command_timeout,
        ).check()
        return [n for n in result.stdout.split() if n not in DEFAULT_NETWORKS]

    def remove_network(self, network: str) -> bool:
        if network in DEFAULT_NETWORKS:
            return False
        return self._remove([self.docker, "network", "rm", network])

    def prune(self) -> None:
        self.runner.run(
            [self.docker, "system", "prune", "-f", *self._label_filter()],
            timeout=self.command_timeout,
        ).check()

    def _remove(self, command: List[str]) -> bool:
        """
        Runs a removal command; a missing target counts as nothing removed.
        """
        result = self.runner.run(command, timeout=self.command_timeout)
        if result.ok:
            return True
        if _is_not_found(result):
            return False
        raise CommandError(result.shown, result.returncode, result.stderr)


def _parse_ps_json(output: str) -> List[dict]:
    """
    Parses ``docker compose ps --format json``, which is a JSON array on older
    releases and one object per line on newer ones.
    """
    output = output.strip()
    if output.startswith("["):
        return json.loads(output)
    return [json.loads(line) for line in output.splitlines() if line.strip()]
