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
One-time configuration against running services, such as setting a broker
credential. Failures leave the stack up and produce a remediation command.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .service_manager import ServiceManager
from ..RUNNERS.retry import FIXED, retry_call
from ..exceptions import PostConfigExhaustedError
from ..UTILS.logging_config import get_logger, redact_command, redact_text

logger = get_logger(__name__)


@dataclass
class PostUpStep:
    """
    A configuration step executed inside a running service.

    ``commands`` run in order; the whole sequence is retried on failure.
    ``remediation`` is the literal command an operator runs if it never succeeds.
    """

    name: str
    service: str
    commands: List[List[str]]
    remediation: str
    secrets: List[str] = field(default_factory=list)


@dataclass
class StepOutcome:
    step: str
    succeeded: bool
    attempts: int
    error: Optional[PostConfigExhaustedError] = None

    @property
    def remediation(self) -> Optional[str]:
        return self.error.remediation if self.error else None


class PostUpConfigurator:
    """
    Runs post-start steps with a fixed-delay retry, independent of health polling:
    a service can pass its health check and still refuse administrative commands.
    """
    def __init__(self,
                 service_manager: ServiceManager,
                 attempts: int = 5,
                 delay: float = 3.0,
                 command_timeout: float = 30.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initializes the configurator.

        :param service_manager: Collaborator executing commands in services.
        :param attempts: Attempt budget per step.
        :param delay: Fixed delay between attempts.
        :param command_timeout: Seconds allowed per command.
        :param sleep: Sleep function, replaceable in tests.
        """
        self.service_manager = service_manager
        self.attempts = attempts
        self.delay = delay
        self.command_timeout = command_timeout
        self.sleep = sleep

    def _run_step(self, step: PostUpStep) -> None:
        for command in step.commands:
            self.service_manager.exec_in_service(
                step.service, command, timeout=self.command_timeout, secrets=step.secrets
            )

    def run_step(self, step: PostUpStep) -> StepOutcome:
        """
        Runs one step until it succeeds or its attempts are spent.

        :param step: The step to run.
        :return: The outcome; exhaustion is captured, never raised.
        """
        def _on_retry(attempt: int, error: BaseException, next_delay: float) -> None:
            logger.warning("Post-up step failed, retrying", step=step.name, service=step.service,
                           attempt=attempt, delay=next_delay, error=redact_text(str(error), step.secrets))

        logger.info("Running post-up step", step=step.name, service=step.service,
                    commands=[redact_command(c, step.secrets) for c in step.commands])
        outcome = retry_call(
            lambda: self._run_step(step),
            attempts=self.attempts,
            delay=self.delay,
            backoff=FIXED,
            sleep=self.sleep,
            on_retry=_on_retry,
        )
        if outcome.succeeded:
            logger.info("Post-up step done", step=step.name, attempts=outcome.attempts)
            return StepOutcome(step=step.name, succeeded=True, attempts=outcome.attempts)

        detail = redact_text(str(outcome.error), step.secrets)
        error = PostConfigExhaustedError(step.name, outcome.attempts, step.remediation,
                                         cause=outcome.error, detail=detail)
        logger.error("Post-up step exhausted", step=step.name, attempts=outcome.attempts,
                     error=detail)
        return StepOutcome(step=step.name, succeeded=False, attempts=outcome.attempts, error=error)

    def configure(self, steps: List[PostUpStep]) -> List[StepOutcome]:
        """
        Runs every step in order. A failed step does not stop the next one.
        """
        return [self.run_step(step) for step in steps]
