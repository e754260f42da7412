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
Runs the provisioning phases in order:
install -> materialize -> pull -> start -> post-configure.
"""
from typing import Callable, List, Optional, Sequence

from .dependency_resolver import DependencyResolver
from ..CONFIG.settings import ProvisionSettings
from ..MANAGERS.config_materializer import ConfigMaterializer
from ..MANAGERS.image_puller import RetryingImagePuller
from ..MANAGERS.post_up_configurator import PostUpConfigurator, PostUpStep
from ..MANAGERS.prerequisite_installer import PrerequisiteInstaller
from ..MANAGERS.service_manager import ServiceManager
from ..MANAGERS.stack_orchestrator import StackOrchestrator
from ..MODELS.provisioning_run import ProvisioningRun, RunState
from ..MODELS.stack_description import StackDescription
from ..exceptions import (
    PrerequisiteInstallError,
    PullExhaustedError,
    StackValidationError,
    WriteError,
)
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)

PHASES = [
    (RunState.INSTALLING, "Install Docker & Compose (if needed)"),
    (RunState.MATERIALIZING, "Write project files"),
    (RunState.PULLING, "Pull images"),
    (RunState.STARTING, "Bring services up"),
    (RunState.POST_CONFIGURING, "Configure running services"),
]

ProgressCallback = Callable[[int, int, str], None]


class ProvisioningSequencer:
    """
    Drives one provisioning run through its phases.

    Install, materialize and pull errors are fatal and end the run as
    Failed. Start and post-configure problems end it as SucceededDegraded,
    with a remediation command per affected service or step.
    """
    def __init__(self,
                 settings: ProvisionSettings,
                 service_manager: ServiceManager,
                 installer: Optional[PrerequisiteInstaller] = None,
                 materializer: Optional[ConfigMaterializer] = None,
                 puller: Optional[RetryingImagePuller] = None,
                 orchestrator: Optional[StackOrchestrator] = None,
                 configurator: Optional[PostUpConfigurator] = None,
                 post_up_steps: Sequence[PostUpStep] = (),
                 skip_install: bool = False,
                 progress: Optional[ProgressCallback] = None):
        self.settings = settings
        self.service_manager = service_manager
        self.installer = installer or PrerequisiteInstaller()
        self.materializer = materializer or ConfigMaterializer()
        self.puller = puller or RetryingImagePuller(
            service_manager,
            max_attempts=settings.pull_attempts,
            initial_delay=settings.pull_initial_delay,
        )
        self.orchestrator = orchestrator or StackOrchestrator(
            service_manager, max_concurrency=settings.start_concurrency
        )
        self.configurator = configurator or PostUpConfigurator(
            service_manager,
            attempts=settings.post_config_attempts,
            delay=settings.post_config_delay,
        )
        self.post_up_steps: List[PostUpStep] = list(post_up_steps)
        self.skip_install = skip_install
        self.progress = progress

    def _enter(self, run: ProvisioningRun, state: RunState) -> None:
        run.transition(state)
        index = [s for s, _ in PHASES].index(state)
        label = PHASES[index][1]
        logger.info("Phase started", phase=state.value)
        if self.progress:
            self.progress(index + 1, len(PHASES), label)

    def run(self, stack: StackDescription) -> ProvisioningRun:
        """
        Provisions the stack. Never raises for phase failures; inspect the
        returned run instead.

        :param stack: The stack description; updated in place if a fallback image is used.
        :return: The finished provisioning run.
        """
        run = ProvisioningRun()

        # Installing
        self._enter(run, RunState.INSTALLING)
        if self.skip_install:
            run.record(True, "skipped")
        else:
            try:
                report = self.installer.ensure()
            except PrerequisiteInstallError as e:
                return self._abort(run, e)
            run.record(True, report.action)

        # Materializing
        self._enter(run, RunState.MATERIALIZING)
        try:
            DependencyResolver().resolve_order(stack)
            report = self.materializer.materialize(stack, self.settings.stack_dir)
        except (StackValidationError, WriteError) as e:
            return self._abort(run, e)
        run.record(True, f"{len(report.written)} written, {len(report.unchanged)} unchanged")

        # Pulling
        self._enter(run, RunState.PULLING)
        try:
            results = self.puller.pull_all(stack)
            fallbacks = [r for r in results.values() if r.used_fallback]
            if fallbacks:
                # Keep the topology file in line with the images actually pulled.
                self.materializer.materialize(stack, self.settings.stack_dir)
        except (PullExhaustedError, StackValidationError, WriteError) as e:
            return self._abort(run, e)
        run.record(True, ", ".join(f"{r.service}={r.image}" for r in results.values()))

        # Starting
        self._enter(run, RunState.STARTING)
        result = self.orchestrator.up(stack)
        for name, health in result.health.items():
            run.health[name] = health.status
        for name in result.degraded:
            run.add_remediation(
                target=name,
                reason=str(result.errors.get(name, f"service '{name}' is {result.health[name].status.value}")),
                command=(
                    f"cd {self.settings.stack_dir} && docker compose up -d {name} "
                    f"&& docker compose logs --tail 50 {name}"
                ),
            )
        run.record(result.all_healthy, "degraded: " + ", ".join(result.degraded) if result.degraded else "all healthy")

        # PostConfiguring
        self._enter(run, RunState.POST_CONFIGURING)
        outcomes = self.configurator.configure(self.post_up_steps)
        for outcome in outcomes:
            if not outcome.succeeded:
                run.add_remediation(target=outcome.step, reason=str(outcome.error),
                                    command=outcome.remediation)
        failed_steps = [o.step for o in outcomes if not o.succeeded]
        run.record(not failed_steps, "failed: " + ", ".join(failed_steps) if failed_steps else f"{len(outcomes)} step(s) done")

        state = run.finish()
        logger.info("Provisioning finished", state=state.value, remediations=len(run.remediations))
        return run

    def _abort(self, run: ProvisioningRun, error: Exception) -> ProvisioningRun:
        phase = run.state
        run.fail(error)
        logger.error("Provisioning failed", phase=phase.value, error=str(error))
        return run
