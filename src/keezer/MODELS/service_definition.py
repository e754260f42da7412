"""
Models for defining services, including health checks and volume mounts.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, ConfigDict
from enum import Enum


class HealthState(str, Enum):
    """
    Health of a started service as observed by polling.
    """
    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthCheck(BaseModel):
    """
    Defines a command to run to check the health of a service.

    ``test`` follows the compose form: ``["CMD", "prog", "arg"]``,
    ``["CMD-SHELL", "shell string"]`` or ``["NONE"]``.
    """
    model_config = ConfigDict(frozen=True)

    test: List[str]
    interval: float = 10.0
    timeout: float = 5.0
    retries: int = 3
    start_period: float = 0.0

    @property
    def disabled(self) -> bool:
        return not self.test or self.test[0] == "NONE"

    def command(self) -> List[str]:
        """
        Returns the probe as an argv suitable for running inside the service.
        Compose's ``$$`` escape is undone since no compose interpolation happens here.
        """
        if self.disabled:
            return []
        if self.test[0] == "CMD-SHELL":
            argv = ["sh", "-c", " ".join(self.test[1:])]
        elif self.test[0] == "CMD":
            argv = list(self.test[1:])
        else:
            argv = list(self.test)
        return [arg.replace("$$", "$") for arg in argv]


class VolumeMount(BaseModel):
    """
    Defines a mapping between a named volume or project path and a service path.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    read_only: bool = False

    @property
    def is_named(self) -> bool:
        return not (self.source.startswith(".") or self.source.startswith("/"))

    def to_compose(self) -> str:
        spec = f"{self.source}:{self.target}"
        if self.read_only:
            spec += ":ro"
        return spec


class ServiceSpec(BaseModel):
    """
    The full definition of a single service in the stack.

    Instances are immutable; the stack swaps in a new spec when the image
    actually pulled differs from the declared one.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    fallback_images: List[str] = []
    container_name: Optional[str] = None

    depends_on: List[str] = []
    environment: Dict[str, str] = {}
    volumes: List[VolumeMount] = []
    ports: List[str] = []  # "host:container"

    restart: str = "unless-stopped"
    health_check: Optional[HealthCheck] = None

    @property
    def image_candidates(self) -> List[str]:
        candidates = [self.image]
        for image in self.fallback_images:
            if image not in candidates:
                candidates.append(image)
        return candidates

    @property
    def published_ports(self) -> List[int]:
        """
        Host ports this service publishes.
        """
        published = []
        for port in self.ports:
            host = port.split(":")[0]
            if host.isdigit():
                published.append(int(host))
        return published
