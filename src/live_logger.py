from datetime import datetime
from pathlib import Path
from typing import TextIO

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from live_config import LOG_LEVELS, RunConfiguration
from results import RunSummary, SuiteResult, ValidationResult


HEAVY_RULE = "═" * 65
LIGHT_RULE = "─" * 61


def format_duration(ms: int) -> str:
    seconds = int(ms // 1000)
    minutes, remaining = divmod(seconds, 60)
    if minutes > 0:
        return f"{minutes}m {remaining}s"
    return f"{seconds}s"


class LiveLogger:
    """Single writer for run telemetry: rich console plus an optional plain-text log file."""

    def __init__(self, config: RunConfiguration, console: Console | None = None, log_file: Path | None = None):
        self.level = config.log_level
        self.headed = config.headed
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.log_file: Path | None = None
        self._fh: TextIO | None = None
        self.current_suite = ""
        self.started_at = datetime.now()
        if log_file is not None:
            self._open(log_file)
        elif config.log_to_file:
            stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
            self._open(Path(config.log_dir) / f"live-test-{stamp}.log")

    def _open(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.log_file = path
        self._fh = open(path, "a", encoding="utf-8")

    def close(self) -> None:
        if self._fh is not None:
            self._fh.flush()
            self._fh.close()
            self._fh = None

    def _enabled(self, level: str) -> bool:
        return LOG_LEVELS.index(level) >= LOG_LEVELS.index(self.level)

    def _write(self, markup: str = "") -> None:
        self.console.print(markup)
        if self._fh is not None:
            self._fh.write(Text.from_markup(markup).plain + "\n")
            self._fh.flush()

    def banner(self, title: str) -> None:
        self.started_at = datetime.now()
        mode = "Headed (Watchable)" if self.headed else "Headless"
        self._write()
        self._write(f"[cyan]{HEAVY_RULE}[/cyan]")
        self._write(f"[bold]  LIVE BROWSER TEST SUITE - {escape(title)}[/bold]")
        self._write(f"  Started: {self.started_at.strftime('%Y-%m-%d %H:%M:%S')}")
        self._write(f"  Mode: {mode}")
        self._write(f"[cyan]{HEAVY_RULE}[/cyan]")
        self._write()

    def suite_start(self, name: str) -> None:
        self.current_suite = name
        self._write()
        self._write(f"[yellow]📍 Suite: {escape(name)}[/yellow]")
        self._write(f"[dim]{LIGHT_RULE}[/dim]")

    def step_start(self, step_id: str, description: str) -> None:
        self._write(f"  [dim]\\[{escape(step_id)}][/dim] {escape(description)}...")

    def step_pass(self, step_id: str, duration_ms: int | None = None, extra: str | None = None) -> None:
        line = f"  [dim]\\[{escape(step_id)}][/dim] ✅"
        if duration_ms:
            line += f" [dim]({duration_ms / 1000:.1f}s)[/dim]"
        if extra:
            line += f"\n        [dim]{escape(extra)}[/dim]"
        self._write(line)

    def step_fail(self, step_id: str, error: str) -> None:
        self._write(f"  [dim]\\[{escape(step_id)}][/dim] ❌ [red]FAILED[/red]")
        self._write(f"        [red]{escape(error)}[/red]")

    def screenshot(self, filename: str) -> None:
        self._write(f"        📸 Screenshot: [cyan]{escape(filename)}[/cyan]")

    def validation(self, result: ValidationResult) -> None:
        status = "✅" if result.match else "❌"
        color = "green" if result.match else "red"
        line = f"        {status} {escape(result.field)}: [{color}]{escape(str(result.ui_value))}[/{color}]"
        if result.tolerance is not None:
            line += f" [dim](API: {escape(str(result.api_value))}, diff: {result.tolerance:.3f}%)[/dim]"
        elif not result.match:
            line += f" [dim](API: {escape(str(result.api_value))})[/dim]"
        if result.error:
            line += f" [red]{escape(result.error)}[/red]"
        self._write(line)

    def validation_summary(self, results: list[ValidationResult]) -> None:
        passed = sum(1 for r in results if r.match)
        status = "✅" if passed == len(results) else "⚠️"
        self._write(f"        {status} {passed}/{len(results)} validations passed")

    def suite_end(self, result: SuiteResult) -> None:
        color = "green" if result.pass_percent == 100 else "yellow"
        self._write()
        self._write(
            f"📊 [bold]{escape(result.name)} Results:[/bold] "
            f"[{color}]{result.passed_steps}/{result.total_steps} passed ({result.pass_percent}%)[/{color}]"
        )
        self._write(f"   Duration: {result.duration_ms / 1000:.1f} seconds")
        self._write(f"   Screenshots: {len(result.screenshots)}")
        if result.fatal_error:
            self._write(f"   [red]Suite aborted: {escape(result.fatal_error)}[/red]")
        self._write()

    def final_summary(self, summary: RunSummary) -> None:
        color = "green" if summary.all_passed else "yellow"
        headline = "🎉 [bold]ALL TESTS COMPLETED[/bold]" if summary.all_passed else "⚠️ [bold]ALL TESTS FINISHED WITH FAILURES[/bold]"
        self._write()
        self._write(f"[cyan]{HEAVY_RULE}[/cyan]")
        self._write()
        self._write(headline)
        self._write(f"[dim]{LIGHT_RULE}[/dim]")
        self._write(f"  Total Suites: {summary.suites}")
        self._write(f"  Total Steps: {summary.total_steps}")
        self._write(f"  Passed: {summary.passed_steps} [{color}]({round(summary.pass_rate)}%)[/{color}]")
        self._write(f"  Failed: {summary.failed_steps}")
        self._write(f"  Duration: {format_duration(summary.duration_ms)}")
        self._write(f"  Screenshots: {summary.screenshots}")
        self._write()
        if summary.log_file:
            self._write(f"  📁 Log: {escape(summary.log_file)}")
        self._write(f"  📁 Screenshots: {escape(summary.screenshot_dir)}")
        self._write()
        self._write(f"[cyan]{HEAVY_RULE}[/cyan]")
        self._write()

    def info(self, message: str) -> None:
        if self._enabled("info"):
            self._write(f"  ℹ️ {escape(message)}")

    def warn(self, message: str) -> None:
        self._write(f"  ⚠️ [yellow]{escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self._write(f"  ❌ [red]{escape(message)}[/red]")

    def verbose(self, message: str) -> None:
        if self._enabled("verbose"):
            self._write(f"        [dim]{escape(message)}[/dim]")
