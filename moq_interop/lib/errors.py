from __future__ import annotations

from dataclasses import dataclass


class InteropError(Exception):
    reason_code = "interop_error"


class ConfigError(InteropError):
    reason_code = "config_error"

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))

    def render(self) -> str:
        lines = ["configuration error:"]
        lines.extend(f"  - {e}" for e in self.errors)
        return "\n".join(lines)


class AvailabilityFailure(InteropError):
    reason_code = "image_unavailable"


class ExecutionFailure(InteropError):
    reason_code = "spawn_failed"


class ExecutionTimeout(ExecutionFailure):
    reason_code = "timeout"


class ParseFailure(InteropError):
    reason_code = "no_test_report"

    def __init__(self, msg: str, empty: bool = False):
        super().__init__(msg)
        self.empty = empty


@dataclass(frozen=True)
class PlanningWarning:
    client: str
    relay: str
    message: str

    def __str__(self) -> str:
        return f"{self.client} -> {self.relay}: {self.message}"
