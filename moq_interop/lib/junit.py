from pathlib import Path
import xml.etree.ElementTree as ET

def write_junit(path: Path, suite_name: str, runs: list[dict]) -> None:
    ts = ET.Element("testsuite", name=suite_name)
    failures = 0
    skipped = 0
    for r in runs:
        name = f"{r['client']} -> {r['relay']} [{r['mode']}]"
        tc = ET.SubElement(ts, "testcase", name=name, classname=f"{suite_name}.{r.get('classification', 'none')}")
        tc.set("file", r.get("log", ""))
        if r["status"] == "fail":
            failures += 1
            f = ET.SubElement(tc, "failure", message=r.get("failure_reason") or "failed")
            f.text = str({"target": r["target"], "version": r["version"], "exit_code": r["exit_code"],
                          "passed": r.get("passed", 0), "failed": r.get("failed", 0)})
        elif r["status"] == "skip":
            skipped += 1
            ET.SubElement(tc, "skipped", message=r.get("skip_reason") or "skipped")
    ts.set("tests", str(len(runs)))
    ts.set("failures", str(failures))
    ts.set("skipped", str(skipped))
    tree = ET.ElementTree(ts)
    path.parent.mkdir(parents=True, exist_ok=True)
    tree.write(path, encoding="utf-8", xml_declaration=True)
