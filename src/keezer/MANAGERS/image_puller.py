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
Image pulls with exponential backoff and a per-service chain of fallback images.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .service_manager import ServiceManager
from ..MODELS.stack_description import StackDescription
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..RUNNERS.retry import EXPONENTIAL, retry_call
from ..exceptions import PullExhaustedError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)


class PullOutcome(str, Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


@dataclass
class PullAttempt:
    """Record of pulling one image reference."""

    image: str
    attempts: int
    delays: List[float] = field(default_factory=list)
    outcome: PullOutcome = PullOutcome.EXHAUSTED
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == PullOutcome.SUCCESS


@dataclass
class PullResult:
    """Record of pulling a service's image, fallbacks included."""

    service: str
    image: str
    tried: List[PullAttempt] = field(default_factory=list)
    used_fallback: bool = False


class RetryingImagePuller:
    """
    Pulls images through a service manager, retrying each candidate with
    exponential backoff before moving on to the next one.
    """
    def __init__(self,
                 service_manager: ServiceManager,
                 max_attempts: int = 4,
                 initial_delay: float = 2.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initializes the puller.

        :param service_manager: Collaborator performing the actual pull.
        :param max_attempts: Attempt budget per image candidate.
        :param initial_delay: First backoff delay; doubles after every failure.
        :param sleep: Sleep function, replaceable in tests.
        """
        self.service_manager = service_manager
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.sleep = sleep

    def pull(self,
             image: str,
             max_attempts: Optional[int] = None,
             initial_delay: Optional[float] = None) -> PullAttempt:
        """
        Pulls a single image reference.

        :param image: Image reference, e.g. ``mysql:8.0``.
        :param max_attempts: Overrides the default attempt budget.
        :param initial_delay: Overrides the default initial delay.
        :return: The attempt record; never raises for pull failures.
        """
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        delay = initial_delay if initial_delay is not None else self.initial_delay

        def _on_retry(attempt: int, error: BaseException, next_delay: float) -> None:
            logger.warning("Image pull failed, retrying", image=image, attempt=attempt,
                           max_attempts=attempts, delay=next_delay, error=str(error))

        outcome = retry_call(
            lambda: self.service_manager.pull_image(image),
            attempts=attempts,
            delay=delay,
            backoff=EXPONENTIAL,
            sleep=self.sleep,
            on_retry=_on_retry,
        )
        if outcome.succeeded:
            logger.info("Pulled image", image=image, attempts=outcome.attempts)
            return PullAttempt(image=image, attempts=outcome.attempts, delays=outcome.delays,
                               outcome=PullOutcome.SUCCESS)

        logger.error("Image pull exhausted", image=image, attempts=outcome.attempts,
                     error=str(outcome.error))
        return PullAttempt(image=image, attempts=outcome.attempts, delays=outcome.delays,
                           outcome=PullOutcome.EXHAUSTED, error=str(outcome.error))

    def pull_service(self, stack: StackDescription, name: str) -> PullResult:
        """
        Pulls the first image candidate of a service that succeeds.

        When a fallback is used, the stack's spec for the service is updated
        so that later phases start what was actually pulled.

        :param stack: The stack description; updated in place on fallback.
        :param name: The service name.
        :return: The pull result.
        :raises PullExhaustedError: If every candidate is exhausted.
        """
        spec = stack.services[name]
        tried: List[PullAttempt] = []
        for image in spec.image_candidates:
            attempt = self.pull(image)
            tried.append(attempt)
            if not attempt.succeeded:
                continue
            used_fallback = image != spec.image
            if used_fallback:
                logger.warning("Using fallback image", service=name,
                               declared=spec.image, image=image)
                stack.with_image(name, image)
            return PullResult(service=name, image=image, tried=tried, used_fallback=used_fallback)

        raise PullExhaustedError(name, tried)

    def pull_all(self, stack: StackDescription) -> Dict[str, PullResult]:
        """
        Pulls every service's image in startup order.

        :param stack: The stack description; updated in place on fallback.
        :return: Pull results by service.
        :raises PullExhaustedError: On the first service with no pullable image.
        """
        order = DependencyResolver().resolve_order(stack)
        return {name: self.pull_service(stack, name) for name in order}
