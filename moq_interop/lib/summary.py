from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import AvailabilityFailure, ExecutionFailure, ParseFailure
from .launch import EXIT_SPAWN_FAILED, EXIT_TIMEOUT
from .plan import PlanEntry
from .registry import is_draft_version
from .tap import UNKNOWN, RunVerdict
from .versions import classify

PASS = "pass"
FAIL = "fail"
SKIP = "skip"


@dataclass(frozen=True)
class Outcome:
    status: str
    exit_code: int
    verdict: Optional[RunVerdict] = None
    reason: str = ""
    reason_code: str = ""


def from_verdict(verdict: RunVerdict, exit_code: int) -> Outcome:
    if verdict.bailed:
        reason = "bailed out"
        if verdict.bail_reason:
            reason += f": {verdict.bail_reason}"
        return Outcome(FAIL, exit_code, verdict, reason)
    if verdict.failed:
        names = ", ".join(f.name for f in verdict.failures if f.name)
        return Outcome(FAIL, exit_code, verdict, f"{verdict.failed} failed" + (f" ({names})" if names else ""))
    if verdict.planned is not None and verdict.total < verdict.planned:
        return Outcome(FAIL, exit_code, verdict,
                       f"report ended early: planned {verdict.planned}, saw {verdict.total} (exit code {exit_code})")
    if verdict.skipped and not verdict.passed:
        return Outcome(SKIP, exit_code, verdict, "all test points skipped")
    if verdict.passed:
        return Outcome(PASS, exit_code, verdict)
    if exit_code == 0:
        return Outcome(PASS, exit_code, verdict)
    return Outcome(FAIL, exit_code, verdict, f"no test points, exit code {exit_code}")


def from_parse_failure(err: ParseFailure, exit_code: int) -> Outcome:
    if err.empty:
        reason = f"no output (exit code {exit_code})"
    else:
        reason = f"{err} (exit code {exit_code})"
    return Outcome(FAIL, exit_code, None, reason, err.reason_code)


def from_execution_failure(err: ExecutionFailure) -> Outcome:
    code = EXIT_TIMEOUT if err.reason_code == "timeout" else EXIT_SPAWN_FAILED
    return Outcome(FAIL, code, None, str(err), err.reason_code)


def skipped(reason: str, reason_code: str = AvailabilityFailure.reason_code) -> Outcome:
    return Outcome(SKIP, 0, None, reason, reason_code)


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _write_json(path: Path, obj) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def run_record(entry: PlanEntry, outcome: Outcome, log: Optional[str] = None) -> Dict[str, Any]:
    v = outcome.verdict
    rec: Dict[str, Any] = {
        "index": entry.index,
        "client": entry.client,
        "relay": entry.relay,
        "version": entry.version,
        "classification": entry.classification,
        "mode": entry.mode,
        "target": entry.target,
        "status": outcome.status,
        "exit_code": outcome.exit_code,
        "passed": v.passed if v else 0,
        "failed": v.failed if v else 0,
        "skipped": v.skipped if v else 0,
        "total": v.total if v else 0,
        "format": v.format if v else UNKNOWN,
    }
    if log:
        rec["log"] = log
    if outcome.status == SKIP:
        rec["skip_reason"] = outcome.reason
    elif outcome.status == FAIL and outcome.reason:
        rec["failure_reason"] = outcome.reason
    if outcome.reason_code:
        rec["reason_code"] = outcome.reason_code
    return rec


class RunSummary:
    """Run summary owned by a single writer, persisted after every record."""

    def __init__(self, target_version: str, path: Optional[Path] = None, timestamp: Optional[str] = None):
        self.target_version = target_version
        self.timestamp = timestamp or _now()
        self.path = Path(path) if path else None
        self.runs: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._flush()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_version": self.target_version,
            "timestamp": self.timestamp,
            "runs": list(self.runs),
        }

    def _flush(self) -> None:
        if self.path is not None:
            _write_json(self.path, self.to_dict())

    def record(self, entry: PlanEntry, outcome: Outcome, log: Optional[str] = None) -> Dict[str, Any]:
        rec = run_record(entry, outcome, log)
        with self._lock:
            self.runs.append(rec)
            self._flush()
        return rec

    def counts(self) -> Dict[str, int]:
        return count_runs(self.runs)

    def finalize(self) -> Dict[str, Any]:
        with self._lock:
            self.runs.sort(key=lambda r: r["index"])
            self._flush()
            return self.to_dict()


def count_runs(runs: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {"total": len(runs), PASS: 0, FAIL: 0, SKIP: 0}
    for r in runs:
        st = r.get("status")
        if st in counts:
            counts[st] += 1
    return counts


def load_summary(path) -> Dict[str, Any]:
    """Load a summary file, filling in classification for runs recorded before it existed."""
    obj = json.loads(Path(path).read_text(encoding="utf-8"))
    target = obj.get("target_version")
    for i, run in enumerate(obj.get("runs", [])):
        run.setdefault("index", i)
        if run.get("classification") or not is_draft_version(target):
            continue
        if is_draft_version(run.get("version")):
            run["classification"] = classify(run["version"], target)
    return obj
