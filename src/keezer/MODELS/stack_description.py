"""
Models for the complete stack: services, named volumes and generated files.
"""
from typing import Any, List, Dict
from pydantic import BaseModel, model_validator

from .service_definition import ServiceSpec
from ..exceptions import StackValidationError


class ConfigFile(BaseModel):
    """
    A file rendered from a Jinja2 template into the project directory.
    """
    path: str  # relative to the project directory
    template: str
    mode: int = 0o644
    create_only: bool = False  # seeded once, then owned by the running service


class StackDescription(BaseModel):
    """
    Complete desired state for a multi-service stack.
    Equivalent to a materialized docker-compose.yml plus its side files.
    """
    project_name: str
    services: Dict[str, ServiceSpec]
    volumes: List[str] = []
    config_files: List[ConfigFile] = []
    directories: List[str] = []
    env: Dict[str, str] = {}
    template_vars: Dict[str, Any] = {}

    @model_validator(mode="after")
    def _check_references(self) -> "StackDescription":
        for key, spec in self.services.items():
            if key != spec.name:
                raise StackValidationError(f"Service key '{key}' does not match its name '{spec.name}'")
            for dep in spec.depends_on:
                if dep not in self.services:
                    raise StackValidationError(f"Service '{key}' depends on unknown service '{dep}'")
            for mount in spec.volumes:
                if mount.is_named and mount.source not in self.volumes:
                    raise StackValidationError(
                        f"Service '{key}' mounts undeclared volume '{mount.source}'"
                    )
        return self

    def with_image(self, service: str, image: str) -> ServiceSpec:
        """
        Replaces the image of a service in place and returns the new spec.

        :param service: The service to update.
        :param image: The image reference that was actually pulled.
        :return: The updated ServiceSpec.
        """
        if service not in self.services:
            raise StackValidationError(f"Unknown service '{service}'")
        updated = self.services[service].model_copy(update={"image": image})
        self.services[service] = updated
        return updated
