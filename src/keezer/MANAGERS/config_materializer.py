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
Renders a stack description into the files docker compose consumes:
docker-compose.yml, .env and every templated per-service config file.
"""
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError

from ..MODELS.service_definition import ServiceSpec
from ..MODELS.stack_description import StackDescription
from ..exceptions import WriteError
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)

COMPOSE_FILE = "docker-compose.yml"
ENV_FILE = ".env"


@dataclass
class MaterializeReport:
    """Which artifacts were (re)written and which already matched."""

    target_dir: str
    written: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.written)


def _duration(seconds: float) -> str:
    return f"{seconds:g}s"


def render_service(spec: ServiceSpec) -> Dict[str, Any]:
    """
    Renders one service in compose form. Keys are emitted in a fixed order.
    """
    service: Dict[str, Any] = {"image": spec.image}
    if spec.container_name:
        service["container_name"] = spec.container_name
    if spec.environment:
        service["environment"] = dict(sorted(spec.environment.items()))
    if spec.volumes:
        service["volumes"] = [mount.to_compose() for mount in spec.volumes]
    if spec.ports:
        service["ports"] = list(spec.ports)
    if spec.depends_on:
        service["depends_on"] = list(spec.depends_on)
    if spec.health_check and not spec.health_check.disabled:
        hc = spec.health_check
        healthcheck = {
            "test": list(hc.test),
            "interval": _duration(hc.interval),
            "timeout": _duration(hc.timeout),
            "retries": hc.retries,
        }
        if hc.start_period:
            healthcheck["start_period"] = _duration(hc.start_period)
        service["healthcheck"] = healthcheck
    service["restart"] = spec.restart
    return service


def render_topology(stack: StackDescription) -> Dict[str, Any]:
    """
    The compose document for a stack, as plain data.

    :param stack: The stack description.
    :return: A dictionary ready to be dumped as YAML.
    """
    topology: Dict[str, Any] = {
        "name": stack.project_name,
        "services": {name: render_service(spec) for name, spec in stack.services.items()},
    }
    if stack.volumes:
        topology["volumes"] = {name: {} for name in stack.volumes}
    return topology


def render_env(env: Dict[str, str]) -> str:
    """
    Renders a dotenv file. Values are single-quoted so that python-dotenv and
    docker compose read them back verbatim.
    """
    lines = []
    for key in sorted(env):
        value = str(env[key]).replace("\\", "\\\\").replace("'", "\\'")
        lines.append(f"{key}='{value}'")
    return "\n".join(lines) + "\n" if lines else ""


class ConfigMaterializer:
    """
    Writes the artifacts of a stack into a project directory.

    Re-running with identical input leaves every file untouched.
    """
    def __init__(self, template_context: Optional[Dict[str, Any]] = None):
        """
        Initializes the materializer.

        :param template_context: Values available to config file templates.
        """
        self.template_context = template_context or {}
        self.jinja = Environment(
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, stack: StackDescription) -> Dict[str, Any]:
        """
        Renders every artifact in memory.

        :param stack: The stack description.
        :return: Mapping of relative path to (content, mode, create_only).
        """
        context = dict(self.template_context)
        context.update(stack.template_vars)
        context.update(stack.env)
        artifacts: Dict[str, Any] = {
            COMPOSE_FILE: (
                yaml.safe_dump(render_topology(stack), sort_keys=False, default_flow_style=False),
                0o644,
                False,
            ),
            ENV_FILE: (render_env(stack.env), 0o600, False),
        }
        for config_file in stack.config_files:
            try:
                content = self.jinja.from_string(config_file.template).render(**context)
            except TemplateError as e:
                raise WriteError(config_file.path, e) from e
            artifacts[config_file.path] = (content, config_file.mode, config_file.create_only)
        return artifacts

    def materialize(self, stack: StackDescription, target_dir: str) -> MaterializeReport:
        """
        Writes all artifacts of a stack under ``target_dir``.

        Everything is rendered before the first write, so a template error
        leaves the directory untouched. Each file is replaced atomically.

        :param stack: The stack description.
        :param target_dir: The project directory; created if missing.
        :return: A report of written and unchanged files.
        :raises WriteError: If a directory or file cannot be written.
        """
        artifacts = self.render(stack)
        report = MaterializeReport(target_dir=target_dir)

        directories = [target_dir] + [os.path.join(target_dir, d) for d in stack.directories]
        directories += [os.path.dirname(os.path.join(target_dir, path)) for path in artifacts]
        for directory in directories:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise WriteError(directory, e) from e

        for rel_path, (content, mode, create_only) in artifacts.items():
            path = os.path.join(target_dir, rel_path)
            if (create_only and os.path.exists(path)) or self._matches(path, content, mode):
                report.unchanged.append(rel_path)
                continue
            self._write_atomic(path, content, mode)
            report.written.append(rel_path)

        logger.info("Materialized stack", target_dir=target_dir,
                    written=report.written, unchanged=len(report.unchanged))
        return report

    @staticmethod
    def _matches(path: str, content: str, mode: int) -> bool:
        try:
            with open(path, "rb") as f:
                same = f.read() == content.encode("utf-8")
            return same and (os.stat(path).st_mode & 0o777) == mode
        except OSError:
            return False

    @staticmethod
    def _write_atomic(path: str, content: str, mode: int) -> None:
        directory = os.path.dirname(path)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".keezer-", dir=directory)
            with os.fdopen(fd, "wb") as f:
                f.write(content.encode("utf-8"))
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise WriteError(path, e) from e
