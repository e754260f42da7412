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
Unit tests for the retrying image puller.
"""
import pytest

from conftest import FakeServiceManager, SleepRecorder
from keezer.MANAGERS.image_puller import PullOutcome, RetryingImagePuller
from keezer.MODELS.service_definition import ServiceSpec
from keezer.MODELS.stack_description import StackDescription
from keezer.RUNNERS.retry import backoff_delays
from keezer.exceptions import PullExhaustedError

NEVER = 10 ** 6


def mysql_stack():
    spec = ServiceSpec(name="mysql", image="mysql:8.0", fallback_images=["mysql:8", "mariadb:11"])
    return StackDescription(project_name="keezer", services={"mysql": spec})


class TestRetryingImagePuller:
    """Tests for RetryingImagePuller."""

    @pytest.mark.parametrize("failures", [0, 1, 2, 3])
    def test_succeeds_after_k_failures(self, failures):
        """k failures then success means k+1 attempts and the first k backoff delays."""
        manager = FakeServiceManager(pull_failures={"mysql:8.0": failures})
        sleep = SleepRecorder()
        puller = RetryingImagePuller(manager, max_attempts=4, initial_delay=2.0, sleep=sleep)

        attempt = puller.pull("mysql:8.0")

        assert attempt.outcome == PullOutcome.SUCCESS
        assert attempt.attempts == failures + 1
        assert manager.pulls == ["mysql:8.0"] * (failures + 1)
        assert sleep.calls == backoff_delays(4, 2.0)[:failures]

    def test_exhausted_image(self):
        manager = FakeServiceManager(pull_failures={"mysql:8.0": NEVER})
        sleep = SleepRecorder()
        puller = RetryingImagePuller(manager, max_attempts=4, initial_delay=2.0, sleep=sleep)

        attempt = puller.pull("mysql:8.0")

        assert attempt.outcome == PullOutcome.EXHAUSTED
        assert attempt.attempts == 4
        assert sleep.calls == [2.0, 4.0, 8.0]
        assert "manifest unknown" in attempt.error

    def test_fallback_updates_stack(self):
        manager = FakeServiceManager(pull_failures={"mysql:8.0": NEVER})
        stack = mysql_stack()
        puller = RetryingImagePuller(manager, max_attempts=2, initial_delay=0, sleep=SleepRecorder())

        result = puller.pull_service(stack, "mysql")

        assert result.image == "mysql:8"
        assert result.used_fallback
        assert [a.image for a in result.tried] == ["mysql:8.0", "mysql:8"]
        assert manager.pulls == ["mysql:8.0", "mysql:8.0", "mysql:8"]
        assert stack.services["mysql"].image == "mysql:8"

    def test_primary_image_keeps_stack(self):
        stack = mysql_stack()
        result = RetryingImagePuller(FakeServiceManager(), sleep=SleepRecorder()).pull_service(stack, "mysql")
        assert not result.used_fallback
        assert stack.services["mysql"].image == "mysql:8.0"

    def test_all_candidates_exhausted(self):
        manager = FakeServiceManager(pull_failures={
            "mysql:8.0": NEVER, "mysql:8": NEVER, "mariadb:11": NEVER,
        })
        stack = mysql_stack()
        puller = RetryingImagePuller(manager, max_attempts=3, initial_delay=0, sleep=SleepRecorder())

        with pytest.raises(PullExhaustedError) as excinfo:
            puller.pull_service(stack, "mysql")

        assert excinfo.value.service == "mysql"
        assert [a.image for a in excinfo.value.attempts] == ["mysql:8.0", "mysql:8", "mariadb:11"]
        assert all(a.attempts == 3 for a in excinfo.value.attempts)
        assert stack.services["mysql"].image == "mysql:8.0"

    def test_pull_all_in_dependency_order(self):
        stack = StackDescription(project_name="p", services={
            "app": ServiceSpec(name="app", image="app:1", depends_on=["db"]),
            "db": ServiceSpec(name="db", image="db:1"),
        })
        manager = FakeServiceManager()
        results = RetryingImagePuller(manager, sleep=SleepRecorder()).pull_all(stack)
        assert list(results) == ["db", "app"]
        assert manager.pulls == ["db:1", "app:1"]
