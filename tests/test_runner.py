import io
import json
import os
import shlex
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from moq_interop import runner
from moq_interop.lib.launch import MakeLauncher, TemplateLauncher
from moq_interop.lib.plan import PlanEntry, compile_plan
from moq_interop.lib.registry import parse_registry
from moq_interop.lib.summary import RunSummary, load_summary

STUB = ROOT / "moq_interop" / "adapters" / "tap_client.py"


def _stub_command(extra: str = "") -> str:
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(STUB))} --relay {{relay}} --report {{relay}} {extra}".strip()


def _doc(relays):
    impls = {
        "client-a": {
            "name": "Client A",
            "draft_versions": ["draft-14"],
            "roles": {"client": {"docker": {"image": "client-a:latest"}}},
        },
    }
    for name in relays:
        impls[name] = {
            "name": name,
            "draft_versions": ["draft-14"],
            "roles": {"relay": {"remote": [{"url": f"https://{name}.example", "transport": "webtransport"}]}},
        }
    return {"current_target": "draft-14", "implementations": impls}


def _run_main(argv, env=None):
    out, err = io.StringIO(), io.StringIO()
    old = dict(os.environ)
    os.environ.update(env or {})
    try:
        with redirect_stdout(out), redirect_stderr(err):
            code = runner.main(argv)
    finally:
        os.environ.clear()
        os.environ.update(old)
    return code, out.getvalue(), err.getvalue()


class ExecutePlanTests(unittest.TestCase):
    def test_outcomes_recorded_in_plan_order(self):
        reg = parse_registry(_doc(["pass", "fail", "legacy", "garbage", "empty", "skip", "bail"]))
        plan = compile_plan(reg)
        with tempfile.TemporaryDirectory() as td:
            results = Path(td) / "results"
            summary = RunSummary(plan.target, path=results / "summary.json")
            with redirect_stdout(io.StringIO()):
                runner.execute_plan(plan, TemplateLauncher(_stub_command()), summary, results, workers=4, timeout_s=60)

            obj = load_summary(results / "summary.json")
            runs = {r["relay"]: r for r in obj["runs"]}
            self.assertEqual([r["index"] for r in obj["runs"]], list(range(7)))
            self.assertEqual([r["relay"] for r in obj["runs"]], ["pass", "fail", "legacy", "garbage", "empty", "skip", "bail"])

            self.assertEqual((runs["pass"]["status"], runs["pass"]["passed"], runs["pass"]["exit_code"]), ("pass", 2, 0))
            self.assertEqual((runs["fail"]["status"], runs["fail"]["failed"]), ("fail", 1))
            self.assertIn("announce-only", runs["fail"]["failure_reason"])
            self.assertEqual((runs["legacy"]["format"], runs["legacy"]["status"]), ("legacy", "fail"))
            self.assertEqual(runs["garbage"]["status"], "fail")
            self.assertIn("no test report", runs["garbage"]["failure_reason"])
            self.assertIn("no output", runs["empty"]["failure_reason"])
            self.assertEqual(runs["garbage"]["reason_code"], "no_test_report")
            self.assertNotIn("reason_code", runs["pass"])
            self.assertEqual(runs["skip"]["status"], "skip")
            self.assertIn("Bail", (results / runs["bail"]["log"]).read_text())
            self.assertEqual(runs["bail"]["status"], "fail")
            self.assertTrue((results / "client-a_to_pass_remote-webtransport.log").exists())

    def test_compose_prefixed_output(self):
        reg = parse_registry(_doc(["fail"]))
        plan = compile_plan(reg)
        with tempfile.TemporaryDirectory() as td:
            summary = RunSummary(plan.target)
            with redirect_stdout(io.StringIO()):
                runner.execute_plan(plan, TemplateLauncher(_stub_command("--prefix test-client-1")), summary, Path(td))
            run = summary.runs[0]
            self.assertEqual((run["passed"], run["failed"], run["format"]), (1, 1, "tap14"))

    def test_unavailable_entry_is_skipped_without_running(self):
        reg = parse_registry(_doc(["pass"]))

        def check(image):
            from moq_interop.lib.errors import AvailabilityFailure
            raise AvailabilityFailure(f"docker image {image} not available")

        plan = compile_plan(reg, check_image=check)
        with tempfile.TemporaryDirectory() as td:
            summary = RunSummary(plan.target)
            with redirect_stdout(io.StringIO()):
                runner.execute_plan(plan, TemplateLauncher("/nonexistent/binary"), summary, Path(td))
            run = summary.runs[0]
            self.assertEqual(run["status"], "skip")
            self.assertEqual(run["skip_reason"], "docker image client-a:latest not available")
            self.assertNotIn("log", run)
            self.assertEqual(run["reason_code"], "image_unavailable")

    def test_spawn_failure_and_timeout(self):
        reg = parse_registry(_doc(["pass"]))
        plan = compile_plan(reg)
        with tempfile.TemporaryDirectory() as td:
            summary = RunSummary(plan.target)
            with redirect_stdout(io.StringIO()):
                runner.execute_plan(plan, TemplateLauncher("/nonexistent/binary {relay}"), summary, Path(td))
            self.assertEqual((summary.runs[0]["status"], summary.runs[0]["exit_code"]), ("fail", -1))

            summary = RunSummary(plan.target)
            with redirect_stdout(io.StringIO()):
                runner.execute_plan(plan, TemplateLauncher(_stub_command("--sleep 10")), summary, Path(td), timeout_s=1)
            self.assertEqual((summary.runs[0]["status"], summary.runs[0]["exit_code"]), ("fail", -2))
            self.assertIn("timed out", summary.runs[0]["failure_reason"])
            self.assertEqual(summary.runs[0]["reason_code"], "timeout")

    def test_unwritable_log_is_recorded_and_matrix_continues(self):
        reg = parse_registry(_doc(["pass", "fail"]))
        plan = compile_plan(reg)
        with tempfile.TemporaryDirectory() as td:
            results = Path(td)
            # A directory where the log file should go makes the write fail.
            (results / "client-a_to_pass_remote-webtransport.log").mkdir()
            summary = RunSummary(plan.target)
            with redirect_stdout(io.StringIO()):
                runner.execute_plan(plan, TemplateLauncher(_stub_command()), summary, results)
            first, second = summary.runs
            self.assertEqual((first["status"], first["passed"]), ("fail", 2))
            self.assertEqual(first["reason_code"], "log_write_failed")
            self.assertIn("cannot write log", first["failure_reason"])
            self.assertNotIn("log", first)
            self.assertEqual((second["status"], second["failed"]), ("fail", 1))
            self.assertEqual(second["log"], "client-a_to_fail_remote-webtransport.log")


class LauncherTests(unittest.TestCase):
    def _entry(self, mode, target, tls=False):
        return PlanEntry(index=0, client="c", relay="r", version="draft-14", classification="at",
                         mode=mode, target=target, client_image="c:latest", tls_disable_verify=tls)

    def test_make_commands(self):
        m = MakeLauncher("make -s")
        self.assertEqual(m.command_for(self._entry("docker", "r:latest")),
                         ["make", "-s", "test", "RELAY_IMAGE=r:latest", "CLIENT_IMAGE=c:latest"])
        self.assertEqual(m.command_for(self._entry("remote-quic", "moqt://r:4433", tls=True)),
                         ["make", "-s", "test-external", "RELAY_URL=moqt://r:4433", "TLS_DISABLE_VERIFY=1", "CLIENT_IMAGE=c:latest"])

    def test_bad_template_rejected_up_front(self):
        from moq_interop.lib.errors import ConfigError
        for bad in ("echo {relay_url}", "echo {", "echo {0}", "echo \"unterminated", ""):
            with self.assertRaises(ConfigError):
                TemplateLauncher(bad)

    def test_template_command(self):
        t = TemplateLauncher("run-client --url {target} --insecure={tls_disable_verify} --image {client_image}")
        self.assertEqual(t.command_for(self._entry("remote-webtransport", "https://r", tls=True)),
                         ["run-client", "--url", "https://r", "--insecure=1", "--image", "c:latest"])


class CliTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.td = tempfile.TemporaryDirectory()
        cls.config = Path(cls.td.name) / "implementations.json"
        doc = _doc(["pass", "fail"])
        doc["implementations"]["old"] = {
            "name": "Old relay",
            "draft_versions": ["draft-13"],
            "roles": {"relay": {"remote": [{"url": "https://old.example", "transport": "quic"}]}},
        }
        cls.config.write_text(json.dumps(doc), encoding="utf-8")

    @classmethod
    def tearDownClass(cls):
        cls.td.cleanup()

    def test_list(self):
        code, out, _ = _run_main(["list", "--config", str(self.config)])
        self.assertEqual(code, 0)
        self.assertIn("client-a:", out)
        self.assertIn("Versions: draft-14", out)

    def test_dry_run(self):
        code, out, _ = _run_main(["run", "--config", str(self.config), "--dry-run", "--no-probe", "--relay", "pass", "--relay", "old"])
        self.assertEqual(code, 0)
        self.assertIn("Runs planned: 1", out)
        self.assertIn("client-a → pass", out)
        self.assertIn("no shared version", out)

    def test_run_exit_code_reflects_failures(self):
        results = Path(self.td.name) / "run1"
        env = {"MOQ_INTEROP_COMMAND": _stub_command()}
        code, out, _ = _run_main(["run", "--config", str(self.config), "--no-probe", "--results-dir", str(results), "--workers", "2"], env)
        self.assertEqual(code, 1)
        self.assertIn("Total: 2  Passed: 1  Failed: 1  Skipped: 0", out)
        obj = load_summary(results / "summary.json")
        self.assertEqual([r["status"] for r in obj["runs"]], ["pass", "fail"])

        code, out, _ = _run_main(["junit", str(results / "summary.json")])
        self.assertEqual(code, 0)
        self.assertTrue((results / "junit.xml").exists())

        code, _, _ = _run_main(["run", "--config", str(self.config), "--no-probe", "--relay", "pass",
                                "--results-dir", str(Path(self.td.name) / "run2")], env)
        self.assertEqual(code, 0)

    def test_config_errors_exit_2(self):
        code, _, err = _run_main(["run", "--config", str(self.config), "--dry-run", "--no-probe", "--target-version", "14"])
        self.assertEqual(code, 2)
        self.assertIn("draft-NN", err)

        code, _, err = _run_main(["run", "--config", str(self.config), "--dry-run", "--no-probe", "--relay", "nope"])
        self.assertEqual(code, 2)
        self.assertIn("unknown implementation 'nope'", err)

        bad = Path(self.td.name) / "bad.json"
        bad.write_text(json.dumps({"implementations": {"x": {"name": "x", "draft_versions": ["d14", "draft-1x"], "roles": {"client": {}}}}}))
        code, _, err = _run_main(["list", "--config", str(bad)])
        self.assertEqual(code, 2)
        self.assertIn("'d14'", err)
        self.assertIn("'draft-1x'", err)

    def test_bad_command_template_exits_2(self):
        results = Path(self.td.name) / "run-bad-template"
        code, _, err = _run_main(["run", "--config", str(self.config), "--no-probe", "--results-dir", str(results)],
                                 {"MOQ_INTEROP_COMMAND": "echo {relay_url}"})
        self.assertEqual(code, 2)
        self.assertIn("relay_url", err)
        self.assertFalse(results.exists())

    def test_mutually_exclusive_flags(self):
        with self.assertRaises(SystemExit):
            _run_main(["run", "--config", str(self.config), "--only-at-target", "--only-behind-target"])
        with self.assertRaises(SystemExit):
            _run_main(["run", "--config", str(self.config), "--docker-only", "--remote-only"])

    def test_transport_shorthand(self):
        code, out, err = _run_main(["run", "--config", str(self.config), "--dry-run", "--no-probe", "--quic-only"])
        self.assertEqual(code, 0)
        self.assertIn("Runs planned: 0", out)
        self.assertIn("no runnable endpoints", out)


if __name__ == "__main__":
    unittest.main()
