from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import ParseFailure

TAP14 = "tap14"
LEGACY = "legacy"
UNKNOWN = "unknown"

LEGACY_PASS = "✓"  # check mark
LEGACY_FAIL = "✗"  # ballot x

# Supervisors prefix every line with "service-1  | " (docker compose) or "[service] ".
PREFIX_RE = re.compile(r"^(?:[A-Za-z0-9][\w.\-]*\s+\||\[[A-Za-z0-9][\w.\-]*\])(?: |$)")
VERSION_RE = re.compile(r"^TAP version 1[34]\s*$")
PLAN_RE = re.compile(r"^1\.\.(\d+)")
POINT_RE = re.compile(r"^(not )?ok(?=\s|$)(?:\s+(\d+))?(?:\s*-)?\s*(.*)$")
DIRECTIVE_RE = re.compile(r"(?:^|\s)#\s*(SKIP|TODO)\S*\s*(.*)$", re.IGNORECASE)
BAIL_RE = re.compile(r"^Bail out!\s*(.*)$")
MESSAGE_RE = re.compile(r"^\s*message:\s*(.*)$")


@dataclass(frozen=True)
class FailedPoint:
    number: Optional[int]
    name: str
    message: str = ""


@dataclass(frozen=True)
class RunVerdict:
    passed: int
    failed: int
    skipped: int
    format: str
    planned: Optional[int] = None
    bailed: bool = False
    bail_reason: str = ""
    failures: Tuple[FailedPoint, ...] = ()

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped


def strip_prefix(line: str) -> str:
    m = PREFIX_RE.match(line)
    if m:
        return line[m.end():]
    return line


def clean_lines(text: str) -> List[str]:
    return [strip_prefix(line.rstrip("\r")) for line in text.splitlines()]


def detect_format(lines: List[str]) -> str:
    if any(VERSION_RE.match(line) for line in lines):
        return TAP14
    if any(line.startswith((LEGACY_PASS, LEGACY_FAIL)) for line in lines):
        return LEGACY
    return UNKNOWN


def _unquote(s: str) -> str:
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in "\"'":
        return s[1:-1]
    return s


def _parse_tap(lines: List[str]) -> RunVerdict:
    passed = failed = skipped = 0
    planned = None
    bailed = False
    bail_reason = ""
    failures: List[FailedPoint] = []
    in_yaml = False
    last_failed = None

    for line in lines:
        if in_yaml:
            if line.strip() == "...":
                in_yaml = False
                continue
            # An unindented line ends a block whose "..." never came.
            if line.strip() and line[:1] not in (" ", "\t"):
                in_yaml = False
                last_failed = None
            else:
                m = MESSAGE_RE.match(line)
                if m and last_failed is not None and not failures[last_failed].message:
                    fp = failures[last_failed]
                    failures[last_failed] = FailedPoint(fp.number, fp.name, _unquote(m.group(1)))
                continue

        # Nested subtests are indented; only the YAML block opener matters there.
        if line[:1] in (" ", "\t"):
            if line.strip() == "---":
                in_yaml = True
                # A failure's own diagnostics sit two spaces in.
                if len(line) - len(line.lstrip()) != 2:
                    last_failed = None
            else:
                last_failed = None
            continue

        m = BAIL_RE.match(line)
        if m:
            bailed = True
            bail_reason = m.group(1).strip()
            break

        m = PLAN_RE.match(line)
        if m and planned is None:
            planned = int(m.group(1))
            continue

        m = POINT_RE.match(line)
        if not m:
            last_failed = None
            continue
        not_ok = m.group(1) is not None
        number = int(m.group(2)) if m.group(2) else None
        desc = m.group(3) or ""
        directive = DIRECTIVE_RE.search(desc)
        kind = directive.group(1).upper() if directive else None
        name = desc[:directive.start()].strip() if directive else desc.strip()

        last_failed = None
        if kind == "SKIP":
            skipped += 1
        elif not not_ok:
            passed += 1
        elif kind == "TODO":
            # Expected failure, not a regression.
            passed += 1
        else:
            failed += 1
            failures.append(FailedPoint(number, name))
            last_failed = len(failures) - 1

    return RunVerdict(
        passed=passed,
        failed=failed,
        skipped=skipped,
        format=TAP14,
        planned=planned,
        bailed=bailed,
        bail_reason=bail_reason,
        failures=tuple(failures),
    )


def _parse_legacy(lines: List[str]) -> RunVerdict:
    passed = failed = 0
    failures: List[FailedPoint] = []
    for line in lines:
        if line.startswith(LEGACY_PASS):
            passed += 1
        elif line.startswith(LEGACY_FAIL):
            failed += 1
            failures.append(FailedPoint(None, line[len(LEGACY_FAIL):].strip()))
    return RunVerdict(passed=passed, failed=failed, skipped=0, format=LEGACY, failures=tuple(failures))


def parse_tap(text: str) -> RunVerdict:
    """Count top-level test results in a test client's log.

    Raises ParseFailure when the text holds neither a TAP version line nor
    legacy check-mark lines. A TAP report with an empty plan is a valid
    verdict with zero tests.
    """
    if not text or not text.strip():
        raise ParseFailure("no output", empty=True)
    lines = clean_lines(text)
    fmt = detect_format(lines)
    if fmt == TAP14:
        return _parse_tap(lines)
    if fmt == LEGACY:
        return _parse_legacy(lines)
    raise ParseFailure("output contains no test report")


def parse_tap_file(path) -> RunVerdict:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
    except FileNotFoundError:
        raise ParseFailure(f"missing log file: {path}", empty=True)
    return parse_tap(text)
