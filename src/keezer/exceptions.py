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

"""Exceptions raised by the provisioning phases."""
from typing import Any, List, Optional, Sequence


class KeezerError(Exception):
    """Base exception for provisioning operations."""


class ConfigurationError(KeezerError):
    """A setting or environment override could not be validated."""


class StackValidationError(KeezerError):
    """The stack description is inconsistent."""


class DependencyCycleError(StackValidationError):
    """The services' depends_on graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")


class WriteError(KeezerError):
    """A configuration artifact could not be written."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot write {path}: {cause}")


class PrerequisiteInstallError(KeezerError):
    """Host tooling could not be installed or is still unavailable afterwards."""

    def __init__(self, step: str, detail: str):
        self.step = step
        self.detail = detail
        super().__init__(f"{step}: {detail}")


class PullExhaustedError(KeezerError):
    """Every image candidate for a service ran out of attempts."""

    def __init__(self, service: str, attempts: List[Any]):
        self.service = service
        self.attempts = attempts
        tried = ", ".join(getattr(a, "image", str(a)) for a in attempts)
        super().__init__(f"Could not pull any image for service '{service}' (tried: {tried})")


class HealthCheckTimeout(KeezerError):
    """A service never reported healthy within its retry budget."""

    def __init__(self, service: str, probes: int, last_output: str = ""):
        self.service = service
        self.probes = probes
        self.last_output = last_output
        message = f"Service '{service}' not healthy after {probes} probe(s)"
        if last_output:
            message += f": {last_output}"
        super().__init__(message)


class PostConfigExhaustedError(KeezerError):
    """A post-start configuration step kept failing."""

    def __init__(self, step: str, attempts: int, remediation: str,
                 cause: Optional[Exception] = None, detail: Optional[str] = None):
        self.step = step
        self.attempts = attempts
        self.remediation = remediation
        self.cause = cause
        detail = detail if detail is not None else str(cause)
        super().__init__(f"Step '{step}' failed after {attempts} attempt(s): {detail}")


class CommandError(KeezerError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"`{command}` failed: {detail}")


class CommandTimeoutError(CommandError):
    """An external command exceeded its timeout."""

    def __init__(self, command: str, timeout: float):
        self.timeout = timeout
        super().__init__(command, -1, f"timed out after {timeout:g}s")


class CommandNotFoundError(CommandError):
    """The executable of an external command does not exist."""

    def __init__(self, command: str):
        super().__init__(command, 127, "executable not found")


class InvalidTransitionError(KeezerError):
    """A provisioning run was moved into a state it cannot reach."""
