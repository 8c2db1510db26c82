import re
from datetime import datetime
from pathlib import Path

from live_config import RunConfiguration


# rough number of screenshots a single suite run produces
SCREENSHOTS_PER_RUN = 20


def sanitize_for_filename(text: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "-", text).lower()


def suite_slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


class ScreenshotManager:
    def __init__(self, config: RunConfiguration, logger):
        self.enabled = config.screenshots_enabled
        self.screenshot_dir = Path(config.screenshot_dir)
        self.logger = logger
        self.current_suite = ""
        self._screenshots: list[str] = []
        if self.enabled:
            self.screenshot_dir.mkdir(parents=True, exist_ok=True)

    def set_suite(self, name: str) -> None:
        self.current_suite = suite_slug(name)

    def clear_screenshots(self) -> None:
        self._screenshots = []

    def get_screenshots(self) -> list[str]:
        return list(self._screenshots)

    def filename_for(self, label: str) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        stem = f"{self.current_suite}-{sanitize_for_filename(label)}-{timestamp}"
        filename = f"{stem}.png"
        n = 1
        while filename in self._screenshots:
            n += 1
            filename = f"{stem}-{n}.png"
        return filename

    async def _take(self, target, label: str, **options) -> str | None:
        if not self.enabled:
            return None
        try:
            filename = self.filename_for(label)
            await target.screenshot(path=str(self.screenshot_dir / filename), animations="disabled", **options)
        except Exception as e:
            self.logger.warn(f"Failed to capture screenshot: {e}")
            return None
        self._screenshots.append(filename)
        self.logger.screenshot(filename)
        return filename

    async def capture(self, page, label: str) -> str | None:
        return await self._take(page, label, full_page=False)

    async def capture_full_page(self, page, label: str) -> str | None:
        return await self._take(page, f"full-{label}", full_page=True)

    async def capture_element(self, page, selector: str, label: str) -> str | None:
        if not self.enabled:
            return None
        return await self._take(page.locator(selector).first, f"element-{label}")

    def cleanup_old_screenshots(self, keep_last_n: int = 5) -> int:
        """Keep roughly the last N runs of screenshots per suite prefix. Returns files deleted."""
        deleted = 0
        try:
            if not self.screenshot_dir.exists():
                return 0
            grouped: dict[str, list[Path]] = {}
            for path in self.screenshot_dir.glob("*.png"):
                prefix = path.name.split("-")[0]
                grouped.setdefault(prefix, []).append(path)
            for files in grouped.values():
                files.sort(key=lambda p: p.name, reverse=True)
                for path in files[keep_last_n * SCREENSHOTS_PER_RUN:]:
                    path.unlink()
                    deleted += 1
        except Exception as e:
            self.logger.warn(f"Failed to cleanup old screenshots: {e}")
        if deleted:
            self.logger.verbose(f"Removed {deleted} old screenshots from {self.screenshot_dir}")
        return deleted
