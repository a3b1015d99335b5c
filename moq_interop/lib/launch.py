from __future__ import annotations

import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .endpoints import DOCKER
from .errors import AvailabilityFailure, ConfigError, ExecutionFailure, ExecutionTimeout
from .plan import PlanEntry

EXIT_SPAWN_FAILED = -1
EXIT_TIMEOUT = -2

TEMPLATE_FIELDS = ("client", "relay", "mode", "target", "version", "client_image", "tls_disable_verify")


@dataclass(frozen=True)
class ExecutionResult:
    output: str
    exit_code: int


class MakeLauncher:
    """Runs an entry through the repository Makefile (`make test` / `make test-external`)."""

    def __init__(self, make: str = "make", cwd: Optional[Path] = None):
        self.make = make
        self.cwd = cwd

    def command_for(self, entry: PlanEntry) -> List[str]:
        argv = shlex.split(self.make)
        if entry.mode == DOCKER:
            argv += ["test", f"RELAY_IMAGE={entry.target}"]
        else:
            argv += ["test-external", f"RELAY_URL={entry.target}"]
            if entry.tls_disable_verify:
                argv.append("TLS_DISABLE_VERIFY=1")
        if entry.client_image:
            argv.append(f"CLIENT_IMAGE={entry.client_image}")
        return argv


class TemplateLauncher:
    """Runs an entry through a user supplied command template (MOQ_INTEROP_COMMAND)."""

    def __init__(self, template: str, cwd: Optional[Path] = None):
        self.template = template
        self.cwd = cwd
        try:
            self.parts = shlex.split(template)
            for part in self.parts:
                part.format(**{name: "" for name in TEMPLATE_FIELDS})
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(
                f"bad command template {template!r}: {e!r} "
                f"(placeholders: {', '.join('{' + n + '}' for n in TEMPLATE_FIELDS)})"
            )
        if not self.parts:
            raise ConfigError("command template is empty")

    def command_for(self, entry: PlanEntry) -> List[str]:
        fields = {
            "client": entry.client,
            "relay": entry.relay,
            "mode": entry.mode,
            "target": entry.target,
            "version": entry.version,
            "client_image": entry.client_image or "",
            "tls_disable_verify": "1" if entry.tls_disable_verify else "0",
        }
        return [part.format(**fields) for part in self.parts]


def execute(launcher, entry: PlanEntry, timeout_s: int) -> ExecutionResult:
    """Run one plan entry and return its combined output and exit code.

    Raises ExecutionFailure when the process cannot be started and
    ExecutionTimeout when it outlives timeout_s.
    """
    argv = launcher.command_for(entry)
    try:
        cp = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            cwd=str(launcher.cwd) if launcher.cwd else None,
            timeout=timeout_s,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise ExecutionTimeout(f"timed out after {timeout_s}s")
    except (OSError, ValueError) as e:
        raise ExecutionFailure(f"spawn failed: {e}")
    return ExecutionResult(output=cp.stdout.decode("utf-8", errors="replace"), exit_code=cp.returncode)


class DockerImageProbe:
    """Checks that an image exists locally with `docker image inspect`; results are cached."""

    def __init__(self, docker: str = "docker", timeout_s: int = 30):
        self.docker = docker
        self.timeout_s = timeout_s
        self._seen: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def _probe(self, image: str) -> Optional[str]:
        try:
            cp = subprocess.run(
                shlex.split(self.docker) + ["image", "inspect", image],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout_s,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return f"cannot probe image {image}: {e}"
        if cp.returncode != 0:
            return f"docker image {image} not available"
        return None

    def __call__(self, image: str) -> None:
        with self._lock:
            if image not in self._seen:
                self._seen[image] = self._probe(image)
            err = self._seen[image]
        if err is not None:
            raise AvailabilityFailure(err)
