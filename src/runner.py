import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Iterable, Mapping

from playwright.async_api import async_playwright

from api_validator import ApiValidator
from live_config import BROWSER_ENGINES, RunConfiguration
from live_logger import LiveLogger
from results import RunSummary, StepRecord, StepStatus, SuiteResult
from screenshots import ScreenshotManager
from suites import SUITE_TITLES, SUITES, SuiteContext, SuiteFn, SuiteName


logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    SESSION_OPEN = "session_open"
    RUNNING_SUITE = "running_suite"
    SESSION_CLOSED = "session_closed"


class BrowserSession:
    """One Playwright browser, context and page for the whole run."""

    def __init__(self, playwright, browser, context, page):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page

    @classmethod
    async def open(cls, config: RunConfiguration, engine: str = "chromium") -> "BrowserSession":
        if engine not in BROWSER_ENGINES:
            raise ValueError(f"Unknown browser engine: {engine}")
        p = await async_playwright().start()
        try:
            browser = await getattr(p, engine).launch(headless=not config.headed, slow_mo=config.slow_mo_ms)
            context = await browser.new_context(viewport=dict(config.viewport))
            page = await context.new_page()
        except Exception:
            await p.stop()
            raise
        return cls(p, browser, context, page)

    async def close(self) -> None:
        for name, closer in (
            ("page", lambda: self.page.close()),
            ("context", lambda: self.context.close()),
            ("browser", lambda: self.browser.close()),
            ("playwright", lambda: self.playwright.stop()),
        ):
            try:
                await closer()
            except Exception as e:
                logger.debug("Closing %s failed: %r", name, e)


SessionFactory = Callable[[RunConfiguration, str], Awaitable[BrowserSession]]


def resolve_suites(names: Iterable[str] | None, log: LiveLogger) -> list[SuiteName]:
    if names is None:
        return list(SuiteName)
    resolved = []
    for raw in names:
        name = raw.strip().lower()
        if not name:
            continue
        try:
            suite = SuiteName(name)
        except ValueError:
            log.warn(f"Unknown suite: {raw}")
            continue
        if suite not in resolved:
            resolved.append(suite)
    return resolved


def exit_code(results: list[SuiteResult]) -> int:
    total = sum(r.total_steps for r in results)
    passed = sum(r.passed_steps for r in results)
    return 0 if total - passed == 0 else 1


class LiveTestRunner:
    def __init__(
        self,
        config: RunConfiguration,
        logger: LiveLogger | None = None,
        screenshots: ScreenshotManager | None = None,
        validator: ApiValidator | None = None,
        session_factory: SessionFactory | None = None,
        suites: Mapping[SuiteName, SuiteFn] | None = None,
        browser: str = "chromium",
    ):
        self.config = config
        self.logger = logger or LiveLogger(config)
        self.screenshots = screenshots or ScreenshotManager(config, self.logger)
        self.validator = validator or ApiValidator(config)
        self.session_factory = session_factory or BrowserSession.open
        self.suites = suites if suites is not None else SUITES
        self.browser = browser
        self.session: BrowserSession | None = None
        self.state = RunnerState.UNINITIALIZED
        self.results: list[SuiteResult] = []
        self.summary: RunSummary | None = None

    async def setup(self, title: str = "All Suites") -> None:
        if self.state != RunnerState.UNINITIALIZED:
            raise RuntimeError(f"Cannot set up runner in state {self.state.value}")
        self.logger.banner(title)
        self.logger.info(f"Frontend: {self.config.base_url}")
        self.logger.info(f"API: {self.config.api_url}")
        self.logger.info(f"Browser: {self.browser} ({'headed' if self.config.headed else 'headless'})")
        self.screenshots.cleanup_old_screenshots(self.config.screenshot_keep_runs)
        self.session = await self.session_factory(self.config, self.browser)
        self.state = RunnerState.SESSION_OPEN

    async def teardown(self) -> None:
        if self.session is not None:
            try:
                await self.session.close()
            except Exception as e:
                logger.debug("Closing browser session failed: %r", e)
            self.session = None
        try:
            await self.validator.aclose()
        except Exception as e:
            logger.debug("Closing API client failed: %r", e)
        self.logger.close()
        self.state = RunnerState.SESSION_CLOSED

    async def run_suite(self, name: SuiteName, suite_fn: SuiteFn) -> SuiteResult:
        if self.session is None:
            raise RuntimeError("Browser session is not open; call setup() first")
        title = SUITE_TITLES.get(name, name.value)
        result = SuiteResult(name=title)
        self.state = RunnerState.RUNNING_SUITE
        self.screenshots.set_suite(name.value)
        self.screenshots.clear_screenshots()
        self.logger.suite_start(title)

        ctx = SuiteContext(
            page=self.session.page,
            config=self.config,
            logger=self.logger,
            screenshots=self.screenshots,
            validator=self.validator,
            result=result,
        )
        start = time.monotonic()
        try:
            await suite_fn(ctx)
        except Exception as e:
            message = str(e) or type(e).__name__
            self.logger.error(f"Suite failed: {message}")
            result.fatal_error = message
            result.record_step(StepRecord(
                id=self._fatal_step_id(name, result),
                description="Suite aborted",
                status=StepStatus.FAILED,
                error=message,
                error_kind="fatal",
            ))

        result.attach_screenshots(self.screenshots.get_screenshots())
        result.duration_ms = int((time.monotonic() - start) * 1000)
        self.logger.suite_end(result)
        self.results.append(result)
        self.state = RunnerState.SESSION_OPEN
        return result

    def _fatal_step_id(self, name: SuiteName, result: SuiteResult) -> str:
        number = list(SuiteName).index(name) + 1
        step_id = f"{number}.fatal"
        existing = {s.id for s in result.steps}
        n = 1
        while step_id in existing:
            n += 1
            step_id = f"{number}.fatal-{n}"
        return step_id

    async def run_all(self, selected: Iterable[str] | None = None) -> list[SuiteResult]:
        start = time.monotonic()
        try:
            if selected is None:
                names = [n for n in SuiteName if n in self.suites]
                title = "All Suites"
            else:
                names = resolve_suites(selected, self.logger)
                title = ", ".join(n.value for n in names) or "No Suites"
            await self.setup(title)
            for name in names:
                suite_fn = self.suites.get(name)
                if suite_fn is None:
                    self.logger.warn(f"No suite registered for {name.value}")
                    continue
                await self.run_suite(name, suite_fn)
            self.summary = RunSummary.from_results(
                self.results,
                duration_ms=int((time.monotonic() - start) * 1000),
                log_file=str(self.logger.log_file) if self.logger.log_file else None,
                screenshot_dir=str(self.screenshots.screenshot_dir),
            )
            self.logger.final_summary(self.summary)
        finally:
            await self.teardown()
        return self.results
