"""
Command Line Interface for Keezer.
"""
import os

import click

from ..CONFIG.keezer_stack import build_keezer_stack, keezer_post_up_steps
from ..CONFIG.settings import ProvisionSettings
from ..MANAGERS.config_materializer import ConfigMaterializer
from ..MANAGERS.service_manager import DockerServiceManager
from ..MANAGERS.stack_orchestrator import StackOrchestrator
from ..MANAGERS.teardown_sequencer import TeardownSequencer
from ..MODELS.provisioning_run import ProvisioningRun, RunState
from ..MODELS.stack_description import StackDescription
from ..PARSERS.compose_parser import ComposeParser
from ..RUNNERS.provisioning_sequencer import ProvisioningSequencer
from ..UTILS.host_info import get_host_ip
from ..UTILS.logging_config import setup_logging
from ..exceptions import KeezerError

ENDPOINTS = {
    "mysql": "MySQL   : {ip}:{port}",
    "mosquitto": "MQTT    : {ip}:{port}",
    "nodered": "Node-RED: http://{ip}:{port}",
}


@click.group()
@click.option('--env-file', type=click.Path(dir_okay=False), default=None,
              help='Dotenv file with setting overrides')
@click.option('--log-level', default=None, help='Log level (overrides LOG_LEVEL)')
@click.pass_context
def cli(ctx, env_file, log_level):
    """
    Keezer - provisions the Keezer base stack.

    Installs Docker, writes the compose project (MySQL, Mosquitto, Node-RED)
    and brings it up. Every command is safe to re-run.
    """
    ctx.ensure_object(dict)
    try:
        settings = ProvisionSettings.from_env(env_file=env_file)
    except KeezerError as e:
        raise click.ClickException(str(e))
    setup_logging(log_level or settings.log_level)
    ctx.obj['settings'] = settings


def _service_manager(settings: ProvisionSettings) -> DockerServiceManager:
    return DockerServiceManager(settings.project_name, settings.stack_dir)


def _progress(step: int, total: int, label: str) -> None:
    click.echo(f"[{step}/{total}] {label}")


def _print_summary(run: ProvisioningRun, stack: StackDescription, settings: ProvisionSettings) -> None:
    if run.state == RunState.FAILED:
        click.echo(f"\nProvisioning failed during {run.failed_phase.value}: {run.failure}", err=True)
        return

    ip = get_host_ip()
    click.echo()
    if run.state == RunState.SUCCEEDED:
        click.echo("======== Base stack is up ========")
    else:
        click.echo("======== Base stack is up (needs attention) ========")
    for name, spec in stack.services.items():
        template = ENDPOINTS.get(name, name + ": {ip}:{port}")
        for port in spec.published_ports[:1]:
            status = run.health.get(name)
            suffix = f"   [{status.value}]" if status else ""
            click.echo(template.format(ip=ip, port=port) + suffix)
    click.echo()
    click.echo(f"Project dir: {settings.stack_dir}")
    click.echo(f"To stop/start: cd {settings.stack_dir} && docker compose down|up -d")

    if run.remediations:
        click.echo()
        click.echo("Manual steps required:")
        for remediation in run.remediations:
            click.echo(f"  - {remediation.target}: {remediation.reason}")
            click.echo(f"      {remediation.command}")


@cli.command()
@click.option('--skip-install', is_flag=True, help='Do not check or install Docker')
@click.pass_context
def up(ctx, skip_install):
    """Provision and start the stack."""
    settings = ctx.obj['settings']
    stack = build_keezer_stack(settings)
    sequencer = ProvisioningSequencer(
        settings,
        _service_manager(settings),
        post_up_steps=keezer_post_up_steps(settings),
        skip_install=skip_install,
        progress=_progress,
    )
    run = sequencer.run(stack)
    _print_summary(run, stack, settings)
    if run.state == RunState.FAILED:
        ctx.exit(1)


@cli.command()
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def down(ctx, yes):
    """Remove all containers, volumes, networks and the project directory."""
    settings = ctx.obj['settings']
    if not yes:
        click.confirm(
            f"This deletes every '{settings.project_name}' container, volume and network "
            f"and {settings.stack_dir}. Continue?",
            abort=True,
        )
    try:
        report = TeardownSequencer(_service_manager(settings), settings.stack_dir).down()
    except KeezerError as e:
        raise click.ClickException(str(e))
    click.echo(f"Removed {len(report.removed)} resource(s), {len(report.skipped)} already absent.")


@cli.command()
@click.option('--out', '-o', default=None, help='Output directory (defaults to STACK_DIR)')
@click.pass_context
def render(ctx, out):
    """Write the project files without touching Docker."""
    settings = ctx.obj['settings']
    stack = build_keezer_stack(settings)
    target = out or settings.stack_dir
    try:
        report = ConfigMaterializer().materialize(stack, target)
    except KeezerError as e:
        raise click.ClickException(str(e))
    for path in report.written:
        click.echo(f"wrote     {os.path.join(target, path)}")
    for path in report.unchanged:
        click.echo(f"unchanged {os.path.join(target, path)}")


@cli.command()
@click.pass_context
def status(ctx):
    """List service status"""
    settings = ctx.obj['settings']
    if not os.path.exists(settings.compose_file):
        raise click.ClickException(f"{settings.compose_file} not found; run 'keezer up' first.")
    stack = ComposeParser().parse(settings.compose_file, interpolate=True)
    try:
        states = StackOrchestrator(_service_manager(settings)).ps(stack)
    except KeezerError as e:
        raise click.ClickException(str(e))
    click.echo(f"{'SERVICE':15} {'IMAGE':30} {'STATUS':20}")
    click.echo("-" * 65)
    for name, state in states.items():
        click.echo(f"{name:15} {stack.services[name].image:30} {state:20}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
