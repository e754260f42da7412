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
Bounded retry of an action with exponential or fixed backoff.
Shared by image pulls and post-start configuration.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Type

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

EXPONENTIAL = "exponential"
FIXED = "fixed"


@dataclass
class RetryOutcome:
    """Result of a retried action."""

    succeeded: bool
    attempts: int
    delays: List[float] = field(default_factory=list)
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def total_delay(self) -> float:
        return sum(self.delays)


def backoff_delays(attempts: int, delay: float, backoff: str = EXPONENTIAL) -> List[float]:
    """
    The sleeps between ``attempts`` consecutive failures.

    :param attempts: Attempt budget.
    :param delay: First delay.
    :param backoff: ``exponential`` doubles each delay, ``fixed`` keeps it.
    :return: One delay per retry, ``attempts - 1`` in total.
    """
    if backoff == EXPONENTIAL:
        return [delay * 2 ** n for n in range(attempts - 1)]
    return [delay] * (attempts - 1)


def retry_call(
    action: Callable[[], Any],
    attempts: int,
    delay: float,
    backoff: str = EXPONENTIAL,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> RetryOutcome:
    """
    Calls ``action`` until it returns without raising or the budget runs out.

    Failures never propagate; the caller decides how severe exhaustion is.

    :param action: Zero-argument callable.
    :param attempts: Maximum number of calls, at least 1.
    :param delay: Initial delay in seconds.
    :param backoff: ``exponential`` or ``fixed``.
    :param sleep: Sleep function, replaceable in tests.
    :param retry_on: Exception types that count as a retryable failure.
    :param on_retry: Called with (attempt, error, next_delay) before each sleep.
    :return: The outcome with attempt count and delays slept.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    if backoff not in (EXPONENTIAL, FIXED):
        raise ValueError(f"Unknown backoff policy: {backoff}")

    if backoff == EXPONENTIAL:
        wait = wait_exponential(multiplier=delay, exp_base=2)
    else:
        wait = wait_fixed(delay)
    delays: List[float] = []
    calls = [0]

    def _attempt() -> Any:
        calls[0] += 1
        return action()

    def _before_sleep(state: RetryCallState) -> None:
        next_delay = state.next_action.sleep if state.next_action else 0.0
        if on_retry and state.outcome is not None:
            on_retry(state.attempt_number, state.outcome.exception(), next_delay)

    def _sleep(seconds: float) -> None:
        delays.append(seconds)
        sleep(seconds)

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait,
        retry=retry_if_exception_type(retry_on),
        sleep=_sleep,
        before_sleep=_before_sleep,
        reraise=False,
    )

    try:
        value = retrying(_attempt)
    except RetryError as e:
        last = e.last_attempt
        return RetryOutcome(
            succeeded=False,
            attempts=calls[0],
            delays=delays,
            error=last.exception(),
        )

    return RetryOutcome(
        succeeded=True,
        attempts=calls[0],
        delays=delays,
        value=value,
    )
