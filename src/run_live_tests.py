#!/usr/bin/env python3

import argparse
import asyncio
import html
import json
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from live_config import BROWSER_ENGINES, ConfigError, RunConfiguration
from results import RunSummary, SuiteResult
from runner import LiveTestRunner, exit_code
from suites import SuiteName


def write_html_report(results_json: dict, html_path: Path):
    summary = results_json.get("summary", {})
    total = summary.get("total_steps", 0)
    passed = summary.get("passed_steps", 0)
    failed = summary.get("failed_steps", 0)

    page = f"""
<html><head><title>Live Browser Test Report</title>
<style>
body {{ font-family: Arial, sans-serif; padding: 20px; }}
.summary {{ margin-bottom: 16px; }}
.pass {{ color: #0a7b44; }}
.fail {{ color: #b00020; }}
table {{ border-collapse: collapse; margin: 8px 0; }}
td, th {{ border: 1px solid #ddd; padding: 4px 8px; text-align: left; }}
pre {{ background: #f6f8fa; padding: 12px; border-radius: 6px; overflow: auto; }}
</style>
</head><body>
  <h1>Live Browser Test Report</h1>
  <div class="summary">
    <strong>Suites:</strong> {summary.get("suites", 0)} &nbsp;
    <strong>Steps:</strong> {total} &nbsp; <strong class="pass">Passed:</strong> {passed} &nbsp; <strong class="fail">Failed:</strong> {failed}
  </div>
  <hr />
  {''.join(render_suite_result(s, results_json.get("screenshot_dir", "")) for s in results_json.get("suites", []))}
</body></html>
"""
    with open(html_path, "w", encoding="utf-8") as f:
        f.write(page)


def render_suite_result(suite: dict, screenshot_dir: str) -> str:
    status_class = "pass" if suite.get("passed_steps") == suite.get("total_steps") else "fail"
    name = html.escape(suite.get("name", "Unnamed Suite"))
    fatal = suite.get("fatal_error")
    fatal_block = f"<pre>{html.escape(fatal)}</pre>" if fatal else ""
    return f"""
  <section>
    <h3 class="{status_class}">{name}: {suite.get('passed_steps', 0)}/{suite.get('total_steps', 0)} passed</h3>
    {fatal_block}
    <table>
      <tr><th>Step</th><th>Description</th><th>Status</th><th>Duration</th><th>Details</th></tr>
      {''.join(render_step(s, screenshot_dir) for s in suite.get("steps", []))}
    </table>
  </section>
  <hr />
"""


def render_step(step: dict, screenshot_dir: str) -> str:
    status_class = "pass" if step.get("passed") else "fail"
    details = []
    if step.get("error"):
        details.append(f"<pre>{html.escape(step['error'])}</pre>")
    if step.get("validations"):
        details.append(f"<pre>{html.escape(json.dumps(step['validations'], indent=2))}</pre>")
    if step.get("screenshot"):
        src = html.escape(str(Path(screenshot_dir) / step["screenshot"]))
        details.append(f"<a href=\"{src}\">{html.escape(step['screenshot'])}</a>")
    return (
        f"<tr><td>{html.escape(step.get('id', ''))}</td>"
        f"<td>{html.escape(step.get('description', ''))}</td>"
        f"<td class=\"{status_class}\">{step.get('status', 'unknown').upper()}</td>"
        f"<td>{step.get('duration_ms', 0)}ms</td>"
        f"<td>{''.join(details)}</td></tr>"
    )


def build_results_json(results: list[SuiteResult], summary: RunSummary | None) -> dict:
    return {
        "summary": summary.to_dict() if summary else {},
        "screenshot_dir": summary.screenshot_dir if summary else "",
        "suites": [r.to_dict() for r in results],
    }


def parse_suites(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [s.strip() for s in value.split(",") if s.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Live browser tests: drive the UI and cross-check it against the API",
        epilog=f"Suites: {', '.join(s.value for s in SuiteName)}",
    )
    parser.add_argument("-s", "--suite", help="Comma separated suites to run (default: all)")
    parser.add_argument("--slow", action="store_true", help="Double all pacing delays and slow-mo")
    parser.add_argument("-b", "--browser", choices=BROWSER_ENGINES, default="chromium", help="Browser engine")
    parser.add_argument("--headless", action="store_true", help="Run without a visible browser window")
    parser.add_argument("--report-dir", help="Where results.json and report.html go (default: data/runs/run_<timestamp>)")
    return parser


def load_config(args: argparse.Namespace) -> RunConfiguration:
    config = RunConfiguration.from_env()
    if args.slow:
        config = config.slowed()
    if args.headless:
        config = replace(config, headed=False)
    return config


async def run(args: argparse.Namespace, config: RunConfiguration) -> tuple[list[SuiteResult], RunSummary | None]:
    runner = LiveTestRunner(config, browser=args.browser)
    results = await runner.run_all(parse_suites(args.suite))
    return results, runner.summary


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(args.report_dir) if args.report_dir else Path(f"data/runs/run_{timestamp}")
    run_dir.mkdir(parents=True, exist_ok=True)

    print(f"🌐 Frontend: {config.base_url}")
    print(f"🔌 API: {config.api_url}")
    print(f"📂 Reports: {run_dir}")

    try:
        results, summary = asyncio.run(run(args, config))
    except Exception as e:
        print(f"❌ Fatal error: {e}")
        sys.exit(1)

    results_json = build_results_json(results, summary)
    results_path = run_dir / "results.json"
    with open(results_path, "w", encoding="utf-8") as f:
        json.dump(results_json, f, indent=2)
    print(f"📊 Results written: {results_path}")

    report_path = run_dir / "report.html"
    write_html_report(results_json, report_path)
    print(f"📝 HTML report: {report_path}")

    sys.exit(exit_code(results))


if __name__ == "__main__":
    main()
