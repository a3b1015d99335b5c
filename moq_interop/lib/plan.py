from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from .endpoints import RUNNABLE, Availability, ImageCheck, Unavailable, enumerate_endpoints, image_availability
from .errors import ConfigError, PlanningWarning
from .filters import PlanningFilters, check_target_version
from .registry import Registry
from .versions import CLASS_RANK, predict


@dataclass(frozen=True)
class PlanEntry:
    index: int
    client: str
    relay: str
    version: str
    classification: str
    mode: str
    target: str
    client_image: Optional[str] = None
    tls_disable_verify: bool = False
    availability: Availability = RUNNABLE

    @property
    def runnable(self) -> bool:
        return self.availability.runnable

    @property
    def test_id(self) -> str:
        return f"{self.client}_to_{self.relay}_{self.mode}"


@dataclass(frozen=True)
class Plan:
    target: str
    clients: Tuple[str, ...]
    relays: Tuple[str, ...]
    entries: Tuple[PlanEntry, ...]
    warnings: Tuple[PlanningWarning, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def pairs(self) -> List[Tuple[str, str]]:
        return list(dict.fromkeys((e.client, e.relay) for e in self.entries))


def _select(registry: Registry, role: str, names: Sequence[str]) -> List[str]:
    with_role = registry.with_role(role)
    if not names:
        return with_role
    errors = []
    for n in names:
        if n not in registry.implementations:
            errors.append(f"unknown implementation '{n}'")
        elif n not in with_role:
            errors.append(f"implementation '{n}' has no {role} role")
    if errors:
        raise ConfigError(errors)
    wanted = set(names)
    return [n for n in with_role if n in wanted]


def _client_availability(registry: Registry, client: str, check_image: Optional[ImageCheck]) -> Tuple[Optional[str], Availability]:
    cfg = registry.get(client).role("client")
    image = cfg.docker_image if cfg else None
    if not image:
        return None, Unavailable(reason=f"client {client} has no docker image")
    return image, image_availability(image, check_image)


def compile_plan(registry: Registry, filters: Optional[PlanningFilters] = None,
                 target: Optional[str] = None, check_image: Optional[ImageCheck] = None) -> Plan:
    """Expand the client x relay matrix into an ordered list of runnable entries.

    Pairs without a shared draft are dropped with a warning. Entries are
    stably sorted at < ahead < behind so a truncated run always covers the
    target version first.
    """
    filters = filters or PlanningFilters()
    target = check_target_version(target or registry.target)

    clients = _select(registry, "client", filters.clients)
    relays = _select(registry, "relay", filters.relays)

    warnings: List[PlanningWarning] = []
    entries: List[PlanEntry] = []
    client_refs = {}

    for client in clients:
        for relay in relays:
            pred = predict(registry.get(client), registry.get(relay), target)
            if not pred.shared:
                warnings.append(PlanningWarning(client, relay, "no shared version, skipping"))
                continue
            if not filters.accepts_classification(pred.classification):
                warnings.append(PlanningWarning(
                    client, relay,
                    f"{pred.version} ({pred.classification}) filtered (--only-{filters.classification}-target)",
                ))
                continue

            endpoints = enumerate_endpoints(registry.get(relay), filters, check_image=check_image)
            if not endpoints:
                warnings.append(PlanningWarning(client, relay, f"{pred.version} ({pred.classification}) no runnable endpoints"))
                continue

            if client not in client_refs:
                client_refs[client] = _client_availability(registry, client, check_image)
            client_image, client_avail = client_refs[client]

            for ep in endpoints:
                availability = ep.availability
                if availability.runnable and not client_avail.runnable:
                    availability = client_avail
                entries.append(PlanEntry(
                    index=0,
                    client=client,
                    relay=relay,
                    version=pred.version,
                    classification=pred.classification,
                    mode=ep.mode,
                    target=ep.target,
                    client_image=client_image,
                    tls_disable_verify=ep.tls_disable_verify,
                    availability=availability,
                ))

    ordered = sorted(entries, key=lambda e: CLASS_RANK[e.classification])
    ordered = [replace(e, index=i) for i, e in enumerate(ordered)]
    return Plan(
        target=target,
        clients=tuple(clients),
        relays=tuple(relays),
        entries=tuple(ordered),
        warnings=tuple(warnings),
    )
