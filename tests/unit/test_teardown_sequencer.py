"""
Unit tests for teardown.
"""
from conftest import FakeRunner, FakeServiceManager, make_stack
from keezer.MANAGERS.service_manager import DockerServiceManager
from keezer.MANAGERS.teardown_sequencer import TeardownSequencer
from keezer.RUNNERS.command_runner import CommandResult
from keezer.exceptions import CommandNotFoundError

UNREACHABLE = ["container:*", "volume:*", "network:*", "prune"]


def provisioned(tmp_path):
    manager = FakeServiceManager()
    stack = make_stack({"db": [], "app": ["db"]})
    manager.prepare(stack)
    manager.volumes.update({"demo_db-data"})
    project_dir = tmp_path / "stack"
    project_dir.mkdir()
    (project_dir / "docker-compose.yml").write_text("services: {}\n")
    return manager, str(project_dir)


class NoDockerRunner(FakeRunner):
    """Host without a docker binary."""

    def run(self, command, timeout=None, **kwargs):
        self.calls.append(list(command))
        raise CommandNotFoundError(command[0])


class TestTeardownSequencer:
    """Tests for TeardownSequencer."""

    def test_removes_everything(self, tmp_path):
        manager, project_dir = provisioned(tmp_path)

        report = TeardownSequencer(manager, project_dir).down()

        assert manager.containers == {}
        assert manager.volumes == set()
        assert manager.networks == set()
        assert manager.pruned == 1
        assert sorted(report.removed) == sorted([
            "container:app", "container:db", "volume:demo_db-data",
            "network:demo_default", f"directory:{project_dir}",
        ])
        assert report.skipped == []
        assert not (tmp_path / "stack").exists()

    def test_empty_system_is_a_no_op(self, tmp_path):
        manager = FakeServiceManager()
        project_dir = str(tmp_path / "never-created")

        report = TeardownSequencer(manager, project_dir).down()

        assert report.removed == []
        assert report.skipped == [f"directory:{project_dir}"]

    def test_second_teardown_succeeds(self, tmp_path):
        manager, project_dir = provisioned(tmp_path)
        sequencer = TeardownSequencer(manager, project_dir)

        sequencer.down()
        report = sequencer.down()

        assert report.removed == []
        assert manager.pruned == 2

    def test_resource_vanishing_midway_is_skipped(self, tmp_path):
        manager, project_dir = provisioned(tmp_path)

        # A container listed but already removed by the time we get to it.
        manager.list_containers = lambda: ["ghost"]
        report = TeardownSequencer(manager, project_dir).down()

        assert "container:ghost" in report.skipped

    def test_missing_docker_still_removes_directory(self, tmp_path):
        _, project_dir = provisioned(tmp_path)
        runner = NoDockerRunner()
        manager = DockerServiceManager("keezer", project_dir, runner=runner)

        report = TeardownSequencer(manager, project_dir).down()

        assert report.skipped == UNREACHABLE
        assert report.removed == [f"directory:{project_dir}"]
        assert not (tmp_path / "stack").exists()
        assert len(runner.calls) == 4

    def test_stopped_daemon_still_removes_directory(self, tmp_path):
        _, project_dir = provisioned(tmp_path)
        runner = FakeRunner({"docker": CommandResult(
            [], 1, stderr="Cannot connect to the Docker daemon at unix:///var/run/docker.sock")})
        manager = DockerServiceManager("keezer", project_dir, runner=runner)

        report = TeardownSequencer(manager, project_dir).down()

        assert report.skipped == UNREACHABLE
        assert report.removed == [f"directory:{project_dir}"]
        assert not (tmp_path / "stack").exists()
