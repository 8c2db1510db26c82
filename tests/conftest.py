"""
Shared fixtures for the live test harness tests.

Nothing here launches a browser or touches the network: pages are small
fakes, HTTP goes through httpx.MockTransport.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from live_config import RunConfiguration


def make_config(tmp_path: Path, **overrides) -> RunConfiguration:
    values = dict(
        base_url="http://ui.test",
        api_url="http://api.test",
        step_delay_ms=0,
        page_load_wait_ms=0,
        animation_wait_ms=0,
        api_timeout_ms=1000,
        headed=False,
        slow_mo_ms=0,
        screenshot_dir=tmp_path / "screenshots",
        log_to_file=False,
        log_dir=tmp_path / "logs",
    )
    values.update(overrides)
    return RunConfiguration(**values)


class RecordingLogger:
    """Stands in for LiveLogger; keeps every call as (method, args)."""

    log_file = None

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.closed = False

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args))
        return record

    def close(self):
        self.closed = True

    def messages(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]


class FakePage:
    """Just enough of a Playwright page for screenshots and navigation."""

    def __init__(self, fail_screenshots: bool = False):
        self.fail_screenshots = fail_screenshots
        self.url = "http://ui.test/"
        self.screenshot_paths: list[str] = []
        self.closed = False

    async def screenshot(self, path: str, **options):
        if self.fail_screenshots:
            raise RuntimeError("Target page, context or browser has been closed")
        Path(path).write_bytes(b"\x89PNG")
        self.screenshot_paths.append(path)

    async def goto(self, url, **options):
        self.url = url

    async def close(self):
        self.closed = True


@pytest.fixture
def config(tmp_path) -> RunConfiguration:
    return make_config(tmp_path)


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()
