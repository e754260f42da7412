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
Parser reading a materialized docker-compose.yml back into a stack description.
"""
import os
import re
from typing import Dict, Any, List, Optional

import yaml
from dotenv import dotenv_values

from ..MODELS.service_definition import ServiceSpec, HealthCheck, VolumeMount
from ..MODELS.stack_description import StackDescription
from ..exceptions import StackValidationError
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..UTILS.logging_config import get_logger

logger = get_logger(__name__)

_DURATION = re.compile(r'^(?:(\d+(?:\.\d+)?)m)?(?:(\d+(?:\.\d+)?)s)?$')


class ComposeParser:
    """
    Parser for docker-compose.yml files written by the config materializer.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: Variables for interpolation; defaults to the .env file
            next to the parsed compose file.
        """
        self.context = context

    def parse(self, compose_path: str, interpolate: bool = False) -> StackDescription:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :param interpolate: Substitute ${VAR} references before parsing.
        :return: Parsed stack description.
        """
        with open(compose_path, 'r') as f:
            content = f.read()
        context = self.context
        if context is None:
            env_path = os.path.join(os.path.dirname(os.path.abspath(compose_path)), ".env")
            context = {k: v for k, v in dotenv_values(env_path).items() if v is not None} \
                if os.path.exists(env_path) else {}
        project = os.path.basename(os.path.dirname(os.path.abspath(compose_path)))
        return self.parse_from_string(content, context=context, interpolate=interpolate,
                                      default_project=project)

    def parse_from_string(self,
                          content: str,
                          context: Optional[Dict[str, str]] = None,
                          interpolate: bool = False,
                          default_project: str = "default") -> StackDescription:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :param context: Variables for interpolation.
        :param interpolate: Substitute ${VAR} references before parsing.
        :param default_project: Project name when the file has no ``name`` key.
        :return: Parsed stack description.
        """
        if interpolate:
            context = context if context is not None else (self.context or {})
            missing = set(re.findall(r'(?<!\$)\$\{([^}:]+)\}', content)) - set(context)
            if missing:
                logger.warning("Unset variables interpolated as empty", variables=sorted(missing))
            content = EnvironmentInterpolator.interpolate(content, context, strict=False)

        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            raise StackValidationError("Compose file must contain a mapping")

        services = {}
        for name, spec in (data.get('services') or {}).items():
            services[name] = self._parse_service(name, spec or {})

        return StackDescription(
            project_name=data.get('name') or default_project,
            services=services,
            volumes=list((data.get('volumes') or {}).keys()),
        )

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceSpec:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceSpec instance.
        """
        # Volumes
        volumes = []
        for v in spec.get('volumes', []):
            if isinstance(v, str):
                parts = v.split(':')
                if len(parts) == 2:
                    volumes.append(VolumeMount(source=parts[0], target=parts[1]))
                elif len(parts) == 3:
                    volumes.append(VolumeMount(source=parts[0], target=parts[1], read_only=(parts[2] == 'ro')))
            elif isinstance(v, dict):
                volumes.append(VolumeMount(source=v['source'], target=v['target'],
                                           read_only=v.get('read_only', False)))

        # Environment
        environment = {}
        env_spec = spec.get('environment', [])
        if isinstance(env_spec, list):
            for e in env_spec:
                if '=' in e:
                    k, v = e.split('=', 1)
                    environment[k] = v
        elif isinstance(env_spec, dict):
            environment = {k: '' if v is None else str(v) for k, v in env_spec.items()}

        depends_on = spec.get('depends_on', [])
        if isinstance(depends_on, dict):
            depends_on = list(depends_on.keys())

        return ServiceSpec(
            name=name,
            image=spec.get('image', ''),
            container_name=spec.get('container_name'),
            environment=environment,
            volumes=volumes,
            ports=[str(p) for p in spec.get('ports', [])],
            depends_on=depends_on,
            restart=spec.get('restart', 'no'),
            health_check=self._parse_healthcheck(spec.get('healthcheck')),
        )

    def _parse_healthcheck(self, spec: Optional[Dict[str, Any]]) -> Optional[HealthCheck]:
        if not spec or spec.get('disable'):
            return None
        test = spec.get('test', [])
        if isinstance(test, str):
            test = ["CMD-SHELL", test]
        values: Dict[str, Any] = {"test": test}
        for key in ('interval', 'timeout', 'start_period'):
            if key in spec:
                values[key] = _parse_duration(spec[key])
        if 'retries' in spec:
            values['retries'] = int(spec['retries'])
        return HealthCheck(**values)


def _parse_duration(value: Any) -> float:
    """
    Converts a compose duration such as ``10s``, ``1m30s`` or ``1.5s`` to seconds.
    """
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION.match(str(value).strip())
    if not match or not any(match.groups()):
        raise StackValidationError(f"Unsupported duration: {value}")
    minutes, seconds = match.groups()
    return float(minutes or 0) * 60 + float(seconds or 0)
