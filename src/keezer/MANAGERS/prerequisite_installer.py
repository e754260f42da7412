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
Installation of the container runtime on a Debian/Ubuntu host.
"""
import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import psutil
from dotenv import dotenv_values

from ..RUNNERS.command_runner import CommandRunner
from ..exceptions import CommandError, PrerequisiteInstallError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)

DOCKER_GPG_URL = "https://download.docker.com/linux/ubuntu/gpg"
DOCKER_REPO_URL = "https://download.docker.com/linux/ubuntu"
KEYRING_DIR = "/etc/apt/keyrings"
KEYRING_PATH = f"{KEYRING_DIR}/docker.gpg"
SOURCES_LIST = "/etc/apt/sources.list.d/docker.list"
OS_RELEASE = "/etc/os-release"

BASE_PACKAGES = ["ca-certificates", "curl", "gnupg", "lsb-release"]
ENGINE_PACKAGES = [
    "docker-ce", "docker-ce-cli", "containerd.io",
    "docker-buildx-plugin", "docker-compose-plugin",
]

ACTION_NONE = "none"
ACTION_STARTED = "started"
ACTION_INSTALLED = "installed"


@dataclass
class InstallReport:
    """What the installer had to do."""

    action: str
    steps: List[str] = field(default_factory=list)


def daemon_running(process_names: Sequence[str] = ("dockerd",)) -> bool:
    """
    Checks whether a daemon process is alive on this host.
    """
    for proc in psutil.process_iter(["name"]):
        try:
            if proc.info["name"] in process_names:
                return True
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return False


class PrerequisiteInstaller:
    """
    Ensures the docker engine and compose plugin are installed and running.
    A second call on a provisioned host does nothing.
    """
    def __init__(self,
                 runner: Optional[CommandRunner] = None,
                 binary: str = "docker",
                 which: Callable[[str], Optional[str]] = shutil.which,
                 is_daemon_running: Callable[[], bool] = daemon_running,
                 os_release_path: str = OS_RELEASE,
                 sources_list_path: str = SOURCES_LIST,
                 step_timeout: float = 900):
        """
        Initializes the installer.

        :param runner: Command runner used for every install step.
        :param binary: Executable that must be on PATH afterwards.
        :param which: Lookup for executables on PATH.
        :param is_daemon_running: Check for the runtime daemon.
        :param os_release_path: File providing VERSION_CODENAME.
        :param sources_list_path: APT source file to write.
        :param step_timeout: Seconds allowed per install step.
        """
        self.runner = runner or CommandRunner()
        self.binary = binary
        self.which = which
        self.is_daemon_running = is_daemon_running
        self.os_release_path = os_release_path
        self.sources_list_path = sources_list_path
        self.step_timeout = step_timeout

    def is_installed(self) -> bool:
        return self.which(self.binary) is not None

    def ensure(self) -> InstallReport:
        """
        Installs and starts the runtime where needed.

        :return: Report of the action taken.
        :raises PrerequisiteInstallError: If a step fails or the binary is still
            missing once the sequence completes.
        """
        if self.is_installed():
            if self.is_daemon_running():
                logger.info("Container runtime already installed and running", binary=self.binary)
                return InstallReport(action=ACTION_NONE)
            logger.info("Container runtime installed but daemon not running; starting it")
            report = InstallReport(action=ACTION_STARTED)
            self._step(report, "enable docker service", ["systemctl", "enable", "--now", "docker"])
            self._verify_daemon()
            return report

        logger.info("Installing container runtime", packages=ENGINE_PACKAGES)
        report = InstallReport(action=ACTION_INSTALLED)
        self._step(report, "apt-get update", ["apt-get", "update"])
        self._step(report, "install base packages", ["apt-get", "install", "-y", *BASE_PACKAGES])
        self._step(report, "create keyring directory", ["install", "-m", "0755", "-d", KEYRING_DIR])
        self._step(report, "fetch docker signing key",
                   ["sh", "-c", f"curl -fsSL {DOCKER_GPG_URL} | gpg --dearmor --yes -o {KEYRING_PATH}"])
        self._step(report, "make signing key readable", ["chmod", "a+r", KEYRING_PATH])
        self._write_sources_list(report)
        self._step(report, "apt-get update (docker repo)", ["apt-get", "update"])
        self._step(report, "install docker engine", ["apt-get", "install", "-y", *ENGINE_PACKAGES])
        self._step(report, "enable docker service", ["systemctl", "enable", "--now", "docker"])

        if not self.is_installed():
            raise PrerequisiteInstallError(
                "verify installation", f"'{self.binary}' is still not on PATH after installing"
            )
        self._verify_daemon()
        logger.info("Container runtime installed", steps=len(report.steps))
        return report

    def _verify_daemon(self) -> None:
        if not self.is_daemon_running():
            raise PrerequisiteInstallError(
                "start docker daemon", "dockerd is not running after `systemctl enable --now docker`"
            )

    def _step(self, report: InstallReport, name: str, command: List[str]) -> str:
        logger.info("Install step", step=name)
        try:
            result = self.runner.run(command, timeout=self.step_timeout).check()
        except CommandError as e:
            raise PrerequisiteInstallError(name, str(e)) from e
        report.steps.append(name)
        return result.stdout

    def _write_sources_list(self, report: InstallReport) -> None:
        arch = self._step(report, "detect architecture", ["dpkg", "--print-architecture"]).strip()
        codename = dotenv_values(self.os_release_path).get("VERSION_CODENAME") if os.path.exists(
            self.os_release_path) else None
        if not codename:
            raise PrerequisiteInstallError(
                "write docker apt source", f"VERSION_CODENAME missing from {self.os_release_path}"
            )
        line = f"deb [arch={arch} signed-by={KEYRING_PATH}] {DOCKER_REPO_URL} {codename} stable\n"
        try:
            with open(self.sources_list_path, "w") as f:
                f.write(line)
        except OSError as e:
            raise PrerequisiteInstallError("write docker apt source", str(e)) from e
        report.steps.append("write docker apt source")
