"""
Models recording the outcome of a provisioning run.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .service_definition import HealthState
from ..exceptions import InvalidTransitionError


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    INSTALLING = "installing"
    MATERIALIZING = "materializing"
    PULLING = "pulling"
    STARTING = "starting"
    POST_CONFIGURING = "post_configuring"
    SUCCEEDED = "succeeded"
    SUCCEEDED_DEGRADED = "succeeded_degraded"
    FAILED = "failed"


TERMINAL_STATES = {RunState.SUCCEEDED, RunState.SUCCEEDED_DEGRADED, RunState.FAILED}

# Failed is only reachable from the phases whose errors are fatal.
_TRANSITIONS = {
    RunState.NOT_STARTED: {RunState.INSTALLING},
    RunState.INSTALLING: {RunState.MATERIALIZING, RunState.FAILED},
    RunState.MATERIALIZING: {RunState.PULLING, RunState.FAILED},
    RunState.PULLING: {RunState.STARTING, RunState.FAILED},
    RunState.STARTING: {RunState.POST_CONFIGURING},
    RunState.POST_CONFIGURING: {RunState.SUCCEEDED, RunState.SUCCEEDED_DEGRADED},
}


@dataclass
class PhaseOutcome:
    """Terminal outcome of one phase."""

    phase: RunState
    ok: bool
    detail: str = ""
    finished_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )


@dataclass
class Remediation:
    """A step an operator has to finish by hand."""

    target: str
    reason: str
    command: str


@dataclass
class ProvisioningRun:
    """
    Ordered record of phase outcomes for one run, plus the state machine
    deciding between full success, degraded success and failure.
    """

    state: RunState = RunState.NOT_STARTED
    phases: List[PhaseOutcome] = field(default_factory=list)
    remediations: List[Remediation] = field(default_factory=list)
    health: Dict[str, HealthState] = field(default_factory=dict)
    failed_phase: Optional[RunState] = None
    failure: Optional[str] = None

    def transition(self, new_state: RunState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot move provisioning run from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def record(self, ok: bool, detail: str = "") -> PhaseOutcome:
        """
        Records the outcome of the phase the run is currently in.
        """
        outcome = PhaseOutcome(phase=self.state, ok=ok, detail=detail)
        self.phases.append(outcome)
        return outcome

    def fail(self, error: Exception) -> None:
        self.failed_phase = self.state
        self.failure = str(error)
        self.record(False, self.failure)
        self.transition(RunState.FAILED)

    def add_remediation(self, target: str, reason: str, command: str) -> None:
        self.remediations.append(Remediation(target=target, reason=reason, command=command))

    def finish(self) -> RunState:
        if self.remediations:
            self.transition(RunState.SUCCEEDED_DEGRADED)
        else:
            self.transition(RunState.SUCCEEDED)
        return self.state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state in (RunState.SUCCEEDED, RunState.SUCCEEDED_DEGRADED)

    def summary(self) -> Dict[str, Any]:
        """Structured report of the run."""
        report: Dict[str, Any] = {
            "state": self.state.value,
            "phases": [
                {"phase": p.phase.value, "ok": p.ok, "detail": p.detail} for p in self.phases
            ],
            "health": {name: state.value for name, state in self.health.items()},
        }
        if self.state == RunState.FAILED:
            report["failed_phase"] = self.failed_phase.value if self.failed_phase else None
            report["error"] = self.failure
        if self.remediations:
            report["remediations"] = [
                {"target": r.target, "reason": r.reason, "command": r.command}
                for r in self.remediations
            ]
        return report
