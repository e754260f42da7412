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
Execution of external commands with captured output and timeouts.
"""
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Sequence

from ..exceptions import CommandError, CommandNotFoundError, CommandTimeoutError
from ..UTILS.logging_config import get_logger, redact_command, redact_text

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Captured result of a finished command."""

    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    secrets: Sequence[str] = field(default=(), repr=False)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def shown(self) -> str:
        """The command line with secret arguments masked."""
        return shlex.join(redact_command(self.command, self.secrets))

    def check(self) -> "CommandResult":
        """
        Raises CommandError if the command exited non-zero.
        """
        if not self.ok:
            raise CommandError(self.shown, self.returncode, redact_text(self.stderr, self.secrets))
        return self


class CommandRunner:
    """
    Runs commands to completion. Never uses a shell for argv commands.
    """
    def __init__(self, default_timeout: Optional[float] = None):
        """
        Initializes the command runner.

        Args:
            default_timeout (Optional[float]): Timeout applied when a call gives none.
        """
        self.default_timeout = default_timeout

    def run(self,
            command: Sequence[str],
            timeout: Optional[float] = None,
            input: Optional[str] = None,
            cwd: Optional[str] = None,
            env: Optional[Dict[str, str]] = None,
            secrets: Sequence[str] = ()) -> CommandResult:
        """
        Runs a command and waits for it.

        Args:
            command (Sequence[str]): Command and arguments to execute.
            timeout (Optional[float]): Seconds before the command is killed.
            input (Optional[str]): Text fed to stdin.
            cwd (Optional[str]): Directory to run the command in.
            env (Optional[Dict[str, str]]): Full environment for the process.
            secrets (Sequence[str]): Argument values to mask in logs and errors.

        Returns:
            CommandResult: Exit code and captured output. Non-zero exit codes
            are returned, not raised.
        """
        argv = list(command)
        shown = shlex.join(redact_command(argv, secrets))
        timeout = timeout if timeout is not None else self.default_timeout
        logger.debug("Running command", command=shown, timeout=timeout)

        try:
            completed = subprocess.run(
                argv,
                input=input,
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
                shell=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out", command=shown, timeout=timeout)
            raise CommandTimeoutError(shown, timeout or 0)
        except FileNotFoundError:
            raise CommandNotFoundError(shown)

        result = CommandResult(
            command=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            secrets=tuple(secrets),
        )
        if not result.ok:
            logger.debug("Command failed", command=shown, returncode=result.returncode,
                         stderr=redact_text(result.stderr.strip()[:500], secrets))
        return result

    def run_shell(self, script: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Runs a shell pipeline. Only used for fixed installer steps that need a pipe.
        """
        return self.run(["sh", "-c", script], timeout=timeout)
