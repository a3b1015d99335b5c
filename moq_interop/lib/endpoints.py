from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from .errors import AvailabilityFailure
from .filters import PlanningFilters
from .registry import Implementation

DOCKER = "docker"

# Raises AvailabilityFailure when a launch reference cannot be run locally.
ImageCheck = Callable[[str], None]


@dataclass(frozen=True)
class Runnable:
    @property
    def runnable(self) -> bool:
        return True


@dataclass(frozen=True)
class Unavailable:
    reason: str

    @property
    def runnable(self) -> bool:
        return False


Availability = Union[Runnable, Unavailable]
RUNNABLE = Runnable()


def remote_mode(transport: str) -> str:
    return f"remote-{transport}"


@dataclass(frozen=True)
class Endpoint:
    mode: str
    target: str
    tls_disable_verify: bool = False
    availability: Availability = RUNNABLE

    @property
    def is_docker(self) -> bool:
        return self.mode == DOCKER


def image_availability(image: str, check: Optional[ImageCheck]) -> Availability:
    if check is None:
        return RUNNABLE
    try:
        check(image)
    except AvailabilityFailure as e:
        return Unavailable(reason=str(e) or f"image {image} not available")
    return RUNNABLE


def enumerate_endpoints(relay: Implementation, filters: PlanningFilters,
                        check_image: Optional[ImageCheck] = None, role: str = "relay") -> List[Endpoint]:
    """Runnable endpoints of one implementation's role, docker first, then remotes in declared order."""
    cfg = relay.role(role)
    if cfg is None:
        return []

    out: List[Endpoint] = []
    if filters.allow_docker and cfg.docker_image:
        out.append(Endpoint(
            mode=DOCKER,
            target=cfg.docker_image,
            availability=image_availability(cfg.docker_image, check_image),
        ))

    if filters.allow_remote:
        for r in cfg.remote:
            if not r.active:
                continue
            if not filters.accepts_transport(r.transport):
                continue
            out.append(Endpoint(
                mode=remote_mode(r.transport),
                target=r.url,
                tls_disable_verify=r.tls_disable_verify,
            ))
    return out
