from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from .errors import ConfigError

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "schemas" / "implementations.schema.json"

DRAFT_RE = re.compile(r"^draft-([0-9]+)$")
DEFAULT_TARGET = "draft-14"

TRANSPORTS = ("quic", "webtransport")
ENDPOINT_STATUSES = ("active", "inactive", "untested")


def draft_number(version: str) -> int:
    m = DRAFT_RE.match(version)
    if not m:
        raise ValueError(f"not a draft-NN version: {version!r}")
    return int(m.group(1))


def is_draft_version(version: Any) -> bool:
    return isinstance(version, str) and DRAFT_RE.match(version) is not None


@dataclass(frozen=True)
class RemoteEndpoint:
    url: str
    transport: str
    tls_disable_verify: bool = False
    status: str = "active"
    notes: str = ""

    @property
    def active(self) -> bool:
        return self.status != "inactive"


@dataclass(frozen=True)
class RoleConfig:
    docker_image: Optional[str] = None
    remote: Tuple[RemoteEndpoint, ...] = ()


@dataclass(frozen=True)
class Implementation:
    id: str
    name: str
    organization: str
    versions: Tuple[str, ...]
    roles: Dict[str, RoleConfig] = field(default_factory=dict, hash=False)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def role(self, role: str) -> Optional[RoleConfig]:
        return self.roles.get(role)


@dataclass(frozen=True)
class Registry:
    target: str
    implementations: Dict[str, Implementation] = field(default_factory=dict, hash=False)

    def get(self, impl_id: str) -> Implementation:
        return self.implementations[impl_id]

    def with_role(self, role: str) -> List[str]:
        return [k for k, impl in self.implementations.items() if impl.has_role(role)]


def _schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def _where(path) -> str:
    parts = [str(p) for p in path]
    return "/".join(parts) if parts else "<root>"


def _check_versions(implementations: dict) -> List[str]:
    errors = []
    for impl_id, impl in implementations.items():
        if not isinstance(impl, dict):
            continue
        versions = impl.get("draft_versions")
        if not isinstance(versions, list):
            continue
        for v in versions:
            if isinstance(v, str) and not is_draft_version(v):
                errors.append(f"{impl_id}: malformed draft version {v!r} (expected draft-NN)")
    return errors


def _check_roles(implementations: dict) -> List[str]:
    errors = []
    for impl_id, impl in implementations.items():
        if not isinstance(impl, dict) or not isinstance(impl.get("roles"), dict):
            continue
        for role_name, role in impl["roles"].items():
            if not isinstance(role, dict):
                continue
            if "docker" not in role and not role.get("remote"):
                errors.append(f"{impl_id}: role '{role_name}' declares neither a docker image nor remote endpoints")
    return errors


def validate_registry(raw: Any) -> List[str]:
    """Return every problem found in a raw registry document (empty when valid)."""
    validator = Draft202012Validator(_schema())
    errors = [
        f"{_where(e.absolute_path)}: {e.message}"
        for e in sorted(validator.iter_errors(raw), key=lambda e: [str(p) for p in e.absolute_path])
    ]
    if not isinstance(raw, dict):
        return errors

    target = raw.get("current_target")
    if isinstance(target, str) and not is_draft_version(target):
        errors.append(f"current_target: malformed draft version {target!r} (expected draft-NN)")

    implementations = raw.get("implementations")
    if isinstance(implementations, dict):
        errors.extend(_check_versions(implementations))
        errors.extend(_check_roles(implementations))
    return errors


def _build_role(role: dict) -> RoleConfig:
    docker = role.get("docker") or {}
    remote = tuple(
        RemoteEndpoint(
            url=r["url"],
            transport=r["transport"],
            tls_disable_verify=bool(r.get("tls_disable_verify", False)),
            status=r.get("status", "active"),
            notes=r.get("notes", ""),
        )
        for r in role.get("remote") or []
    )
    return RoleConfig(docker_image=docker.get("image"), remote=remote)


def parse_registry(raw: Any) -> Registry:
    errors = validate_registry(raw)
    if errors:
        raise ConfigError(errors)

    impls: Dict[str, Implementation] = {}
    for impl_id, impl in raw["implementations"].items():
        impls[impl_id] = Implementation(
            id=impl_id,
            name=impl["name"],
            organization=impl.get("organization", ""),
            versions=tuple(dict.fromkeys(impl["draft_versions"])),
            roles={name: _build_role(role) for name, role in impl["roles"].items()},
        )
    return Registry(target=raw.get("current_target") or DEFAULT_TARGET, implementations=impls)


def read_registry_document(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read registry {path}: {e}")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"{path}: not a valid registry document: {e}")


def load_registry(path) -> Registry:
    return parse_registry(read_registry_document(Path(path)))
