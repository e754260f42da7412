"""
Unit tests for the provisioning run state machine.
"""
import pytest

from keezer.MODELS.provisioning_run import ProvisioningRun, RunState, TERMINAL_STATES
from keezer.MODELS.service_definition import HealthState
from keezer.exceptions import InvalidTransitionError, PullExhaustedError

HAPPY_PATH = [
    RunState.INSTALLING,
    RunState.MATERIALIZING,
    RunState.PULLING,
    RunState.STARTING,
    RunState.POST_CONFIGURING,
]


def advance(run, until):
    for state in HAPPY_PATH:
        run.transition(state)
        if state == until:
            return run
    return run


class TestProvisioningRun:
    """Tests for ProvisioningRun."""

    def test_starts_not_started(self):
        run = ProvisioningRun()
        assert run.state == RunState.NOT_STARTED
        assert not run.is_terminal

    def test_finish_without_remediations_succeeds(self):
        run = advance(ProvisioningRun(), RunState.POST_CONFIGURING)
        assert run.finish() == RunState.SUCCEEDED
        assert run.succeeded and run.is_terminal

    def test_finish_with_remediation_is_degraded(self):
        run = advance(ProvisioningRun(), RunState.POST_CONFIGURING)
        run.add_remediation("mqtt-credential", "exhausted", "docker compose exec ...")
        assert run.finish() == RunState.SUCCEEDED_DEGRADED
        assert run.succeeded

    @pytest.mark.parametrize("phase", [RunState.INSTALLING, RunState.MATERIALIZING, RunState.PULLING])
    def test_fatal_phases_can_fail(self, phase):
        run = advance(ProvisioningRun(), phase)
        run.fail(PullExhaustedError("mysql", []))
        assert run.state == RunState.FAILED
        assert run.failed_phase == phase
        assert not run.succeeded
        assert run.phases[-1].ok is False

    @pytest.mark.parametrize("phase", [RunState.STARTING, RunState.POST_CONFIGURING])
    def test_late_phases_cannot_fail(self, phase):
        run = advance(ProvisioningRun(), phase)
        with pytest.raises(InvalidTransitionError):
            run.transition(RunState.FAILED)

    def test_phases_cannot_be_skipped(self):
        run = ProvisioningRun()
        with pytest.raises(InvalidTransitionError):
            run.transition(RunState.PULLING)

    def test_terminal_states_have_no_exit(self):
        run = advance(ProvisioningRun(), RunState.POST_CONFIGURING)
        run.finish()
        for state in RunState:
            with pytest.raises(InvalidTransitionError):
                run.transition(state)
        assert run.state in TERMINAL_STATES

    def test_summary(self):
        run = advance(ProvisioningRun(), RunState.STARTING)
        run.record(True, "all healthy")
        run.health["mysql"] = HealthState.HEALTHY
        run.transition(RunState.POST_CONFIGURING)
        run.add_remediation("mqtt-credential", "exhausted", "fix it")
        run.finish()
        summary = run.summary()
        assert summary["state"] == "succeeded_degraded"
        assert summary["phases"] == [{"phase": "starting", "ok": True, "detail": "all healthy"}]
        assert summary["health"] == {"mysql": "healthy"}
        assert summary["remediations"][0]["command"] == "fix it"
        assert "error" not in summary

    def test_summary_of_failed_run(self):
        run = advance(ProvisioningRun(), RunState.INSTALLING)
        run.fail(RuntimeError("apt-get update failed"))
        summary = run.summary()
        assert summary["failed_phase"] == "installing"
        assert summary["error"] == "apt-get update failed"
