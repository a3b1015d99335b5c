from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .errors import ConfigError
from .registry import DRAFT_RE, TRANSPORTS
from .versions import CLASSIFICATIONS


@dataclass(frozen=True)
class PlanningFilters:
    docker_only: bool = False
    remote_only: bool = False
    transport: Optional[str] = None
    classification: Optional[str] = None
    clients: Tuple[str, ...] = ()
    relays: Tuple[str, ...] = ()

    def __post_init__(self):
        errors = []
        if self.docker_only and self.remote_only:
            errors.append("--docker-only and --remote-only are mutually exclusive")
        if self.transport is not None and self.transport not in TRANSPORTS:
            errors.append(f"transport must be one of {', '.join(TRANSPORTS)} (got: {self.transport})")
        if self.classification is not None and self.classification not in CLASSIFICATIONS:
            errors.append(f"classification filter must be one of {', '.join(CLASSIFICATIONS)} (got: {self.classification})")
        if errors:
            raise ConfigError(errors)

    @property
    def allow_docker(self) -> bool:
        return not self.remote_only

    @property
    def allow_remote(self) -> bool:
        return not self.docker_only

    def accepts_transport(self, transport: str) -> bool:
        return self.transport is None or transport == self.transport

    def accepts_classification(self, classification: str) -> bool:
        return self.classification is None or classification == self.classification


def single_classification(only_at: bool = False, only_ahead: bool = False, only_behind: bool = False) -> Optional[str]:
    chosen = [c for c, on in (("at", only_at), ("ahead", only_ahead), ("behind", only_behind)) if on]
    if len(chosen) > 1:
        raise ConfigError("only one --only-* classification filter allowed")
    return chosen[0] if chosen else None


def check_target_version(version: str) -> str:
    if not isinstance(version, str) or not DRAFT_RE.match(version):
        raise ConfigError(f"target version must be in format 'draft-NN' (got: {version})")
    return version


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigError(f"{name} must be an integer (got: {v})")


@dataclass(frozen=True)
class RunnerConfig:
    workers: int = 1
    timeout_s: int = 600
    make: str = "make"
    docker: str = "docker"
    command: Optional[str] = None

    @staticmethod
    def from_env() -> "RunnerConfig":
        return RunnerConfig(
            workers=_env_int("MOQ_INTEROP_WORKERS", 1),
            timeout_s=_env_int("MOQ_INTEROP_TIMEOUT_SECS", 600),
            make=os.environ.get("MOQ_INTEROP_MAKE", "make").strip() or "make",
            docker=os.environ.get("MOQ_INTEROP_DOCKER", "docker").strip() or "docker",
            command=(os.environ.get("MOQ_INTEROP_COMMAND", "").strip() or None),
        )

    def with_overrides(self, workers: Optional[int] = None, timeout_s: Optional[int] = None) -> "RunnerConfig":
        cfg = RunnerConfig(
            workers=self.workers if workers is None else workers,
            timeout_s=self.timeout_s if timeout_s is None else timeout_s,
            make=self.make,
            docker=self.docker,
            command=self.command,
        )
        if cfg.workers < 1:
            raise ConfigError(f"workers must be >= 1 (got: {cfg.workers})")
        if cfg.timeout_s < 1:
            raise ConfigError(f"timeout must be >= 1 second (got: {cfg.timeout_s})")
        return cfg


def as_names(values: Optional[Sequence[str]]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(values or ()))
