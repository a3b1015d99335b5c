#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

from moq_interop.lib.endpoints import ImageCheck
from moq_interop.lib.errors import ConfigError, ExecutionFailure, ParseFailure
from moq_interop.lib.filters import PlanningFilters, RunnerConfig, as_names, check_target_version, single_classification
from moq_interop.lib.junit import write_junit
from moq_interop.lib.launch import DockerImageProbe, MakeLauncher, TemplateLauncher, execute
from moq_interop.lib.plan import Plan, PlanEntry, compile_plan
from moq_interop.lib.registry import Registry, load_registry
from moq_interop.lib.summary import (
    FAIL, PASS, SKIP, Outcome, RunSummary, from_execution_failure, from_parse_failure,
    from_verdict, load_summary, skipped,
)
from moq_interop.lib.tap import parse_tap

DEFAULT_CONFIG = "implementations.json"
CLASS_LABELS = {"at": "at-target", "ahead": "ahead", "behind": "behind"}
LOG_WRITE_FAILED = "log_write_failed"


def _warn(msg: str) -> None:
    print(f"[warn] {msg}", file=sys.stderr)


def _log_names(plan: Plan) -> Dict[int, str]:
    names: Dict[int, str] = {}
    seen: Dict[str, int] = {}
    for e in plan:
        n = seen.get(e.test_id, 0)
        seen[e.test_id] = n + 1
        names[e.index] = f"{e.test_id}.log" if n == 0 else f"{e.test_id}-{n + 1}.log"
    return names


def _write_log(log_path: Path, text: str) -> Optional[str]:
    try:
        log_path.write_text(text, encoding="utf-8")
    except OSError as e:
        return f"cannot write log {log_path.name}: {e}"
    return None


def _log_failed(outcome: Outcome, err: str) -> Outcome:
    reason = f"{err}; {outcome.reason}" if outcome.reason else err
    return replace(outcome, status=FAIL, reason=reason, reason_code=LOG_WRITE_FAILED)


def run_entry(entry: PlanEntry, launcher, log_path: Path, timeout_s: int) -> Outcome:
    if not entry.runnable:
        return skipped(entry.availability.reason)
    try:
        res = execute(launcher, entry, timeout_s)
    except ExecutionFailure as e:
        outcome = from_execution_failure(e)
        log_err = _write_log(log_path, f"{e}\n")
        return _log_failed(outcome, log_err) if log_err else outcome

    log_err = _write_log(log_path, res.output)
    try:
        outcome = from_verdict(parse_tap(res.output), res.exit_code)
    except ParseFailure as e:
        outcome = from_parse_failure(e, res.exit_code)
    return _log_failed(outcome, log_err) if log_err else outcome


def execute_plan(plan: Plan, launcher, summary: RunSummary, results_dir: Path,
                 workers: int = 1, timeout_s: int = 600) -> RunSummary:
    """Run every entry of the plan and record outcomes in plan order.

    Entries run on up to `workers` threads; only this thread writes the
    summary, so the persisted order always matches the plan.
    """
    results_dir.mkdir(parents=True, exist_ok=True)
    logs = _log_names(plan)
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = [
            (e, pool.submit(run_entry, e, launcher, results_dir / logs[e.index], timeout_s))
            for e in plan
        ]
        for e, fut in futures:
            outcome = fut.result()
            log = logs[e.index] if e.runnable and outcome.reason_code != LOG_WRITE_FAILED else None
            summary.record(e, outcome, log=log)
            _print_outcome(e, outcome, len(plan))
    summary.finalize()
    return summary


def _print_outcome(e: PlanEntry, outcome: Outcome, n: int) -> None:
    head = f"[run] {e.index + 1}/{n} {e.client} -> {e.relay} {e.version} ({CLASS_LABELS[e.classification]}) {e.mode} {e.target}"
    v = outcome.verdict
    counts = f" {v.passed}/{v.total}" if v is not None else ""
    if outcome.status == PASS:
        print(f"{head}: PASSED{counts}")
    elif outcome.status == SKIP:
        print(f"{head}: SKIPPED ({outcome.reason})")
    else:
        print(f"{head}: FAILED{counts} exit={outcome.exit_code} {outcome.reason}")


def print_registry(registry: Registry) -> None:
    print("Available MoQT Implementations:")
    print("")
    for impl_id, impl in registry.implementations.items():
        print(f"  {impl_id}:")
        print(f"    Name: {impl.name}")
        if impl.organization:
            print(f"    Organization: {impl.organization}")
        print(f"    Versions: {', '.join(impl.versions)}")
        print(f"    Roles: {', '.join(sorted(impl.roles))}")
        for role_name, role in impl.roles.items():
            if role.docker_image:
                print(f"      {role_name} docker: {role.docker_image}")
            for r in role.remote:
                line = f"      {role_name} remote: {r.url} ({r.transport}, {r.status})"
                if r.notes:
                    line += f" - {r.notes}"
                print(line)
        print("")


def print_plan(plan: Plan) -> None:
    print(f"Target version: {plan.target}")
    print(f"Clients: {' '.join(plan.clients)}")
    print(f"Relays: {' '.join(plan.relays)}")
    print("")
    for w in plan.warnings:
        print(f"[plan] {w}")
    print(f"Runs planned: {len(plan)}")
    print("")
    if not len(plan):
        print("No tests to run.")
        return
    print("── Execution Order ──")
    for e in plan:
        line = f"  {e.index + 1}. {e.client} → {e.relay}  {e.version} ({CLASS_LABELS[e.classification]})  {e.mode}  {e.target}"
        if not e.runnable:
            line += f"  (unavailable: {e.availability.reason})"
        print(line)


def filters_from_args(args) -> PlanningFilters:
    transport = args.transport
    if args.quic_only or args.webtransport_only:
        short = "quic" if args.quic_only else "webtransport"
        if transport and transport != short:
            raise ConfigError(f"--transport {transport} conflicts with --{short}-only")
        transport = short
    if transport and args.docker_only:
        _warn("--transport has no effect with --docker-only (transport filters apply to remote endpoints only)")
    return PlanningFilters(
        docker_only=args.docker_only,
        remote_only=args.remote_only,
        transport=transport,
        classification=single_classification(args.only_at_target, args.only_ahead_of_target, args.only_behind_target),
        clients=as_names(args.client),
        relays=as_names(args.relay),
    )


def make_launcher(cfg: RunnerConfig, cwd: Optional[Path]):
    if cfg.command:
        return TemplateLauncher(cfg.command, cwd=cwd)
    return MakeLauncher(cfg.make, cwd=cwd)


def cmd_list(args) -> int:
    print_registry(load_registry(args.config))
    return 0


def cmd_run(args) -> int:
    registry = load_registry(args.config)
    filters = filters_from_args(args)
    target = check_target_version(args.target_version) if args.target_version else None
    cfg = RunnerConfig.from_env().with_overrides(workers=args.workers, timeout_s=args.timeout)
    launcher = make_launcher(cfg, Path(args.workdir) if args.workdir else None)

    check_image: Optional[ImageCheck] = None if args.no_probe else DockerImageProbe(cfg.docker)
    plan = compile_plan(registry, filters, target=target, check_image=check_image)
    print_plan(plan)
    if args.dry_run:
        if len(plan):
            print("")
            print("Run without --dry-run to execute.")
        return 0

    results_dir = Path(args.results_dir) if args.results_dir else Path("results") / time.strftime("%Y-%m-%d_%H%M%S")
    summary = RunSummary(plan.target, path=results_dir / "summary.json")
    print("")
    print(f"Results: {results_dir}")
    execute_plan(plan, launcher, summary, results_dir, workers=cfg.workers, timeout_s=cfg.timeout_s)

    c = summary.counts()
    print("")
    print(f"Total: {c['total']}  Passed: {c[PASS]}  Failed: {c[FAIL]}  Skipped: {c[SKIP]}")
    print(f"Summary JSON: {summary.path}")
    return 1 if c[FAIL] else 0


def cmd_junit(args) -> int:
    obj = load_summary(args.summary)
    out = Path(args.out) if args.out else Path(args.summary).with_name("junit.xml")
    write_junit(out, suite_name=args.suite, runs=obj.get("runs", []))
    print(f"JUnit XML: {out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="moq-interop", description="Run MoQT interop tests across client x relay pairs.")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("list", help="List registered implementations and exit")
    p.add_argument("--config", default=DEFAULT_CONFIG)
    p.set_defaults(fn=cmd_list)

    p = sub.add_parser("run", help="Plan and execute the test matrix")
    p.add_argument("--config", default=DEFAULT_CONFIG)
    modes = p.add_mutually_exclusive_group()
    modes.add_argument("--docker-only", action="store_true", help="Only test Docker images")
    modes.add_argument("--remote-only", action="store_true", help="Only test remote endpoints")
    p.add_argument("--transport", choices=["quic", "webtransport"], help="Filter remote endpoints by transport")
    shorts = p.add_mutually_exclusive_group()
    shorts.add_argument("--quic-only", action="store_true", help="Remote endpoints over raw QUIC only")
    shorts.add_argument("--webtransport-only", action="store_true", help="Remote endpoints over WebTransport only")
    only = p.add_mutually_exclusive_group()
    only.add_argument("--only-at-target", action="store_true")
    only.add_argument("--only-ahead-of-target", action="store_true")
    only.add_argument("--only-behind-target", action="store_true")
    p.add_argument("--target-version", help="Target draft version for classification (default: from config)")
    p.add_argument("--client", action="append", help="Only test this client (repeatable)")
    p.add_argument("--relay", action="append", help="Only test this relay (repeatable)")
    p.add_argument("--dry-run", action="store_true", help="Show computed test plan without executing")
    p.add_argument("--no-probe", action="store_true", help="Do not check docker image availability")
    p.add_argument("--results-dir")
    p.add_argument("--workdir", help="Directory the launcher runs in (default: current)")
    p.add_argument("--workers", type=int)
    p.add_argument("--timeout", type=int, help="Per-run timeout in seconds")
    p.set_defaults(fn=cmd_run)

    p = sub.add_parser("junit", help="Export a summary.json as JUnit XML")
    p.add_argument("summary")
    p.add_argument("--out")
    p.add_argument("--suite", default="moq-interop")
    p.set_defaults(fn=cmd_junit)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.fn(args)
    except ConfigError as e:
        print(e.render(), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
