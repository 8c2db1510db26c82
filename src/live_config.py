import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from dotenv import load_dotenv


LOG_LEVELS = ("verbose", "info", "warn", "error")
BROWSER_ENGINES = ("chromium", "firefox", "webkit")


class ConfigError(ValueError):
    pass


def _env_str(name: str, default: str, fallback: str | None = None) -> str:
    value = os.environ.get(name)
    if not value and fallback:
        value = os.environ.get(fallback)
    return value or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class RunConfiguration:
    """Settings resolved once per process. Derive variants with dataclasses.replace."""

    base_url: str = "http://localhost:5173"
    api_url: str = "http://localhost:4000"
    api_token: str | None = None

    step_delay_ms: int = 1500
    page_load_wait_ms: int = 3000
    animation_wait_ms: int = 500
    api_timeout_ms: int = 10000
    pacing_multiplier: float = 1.0

    headed: bool = True
    slow_mo_ms: int = 100
    viewport: dict = field(default_factory=lambda: {"width": 1440, "height": 900})

    screenshots_enabled: bool = True
    screenshot_dir: Path = Path("./e2e/screenshots/live-run")
    screenshot_keep_runs: int = 5

    log_level: str = "verbose"
    log_to_file: bool = True
    log_dir: Path = Path("./e2e/logs")

    # percent, 1.0 == 1%
    tolerance_percent: float = 1.0

    def __post_init__(self):
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")
        if self.pacing_multiplier <= 0:
            raise ConfigError("pacing multiplier must be positive")

    @classmethod
    def from_env(cls) -> "RunConfiguration":
        load_dotenv()
        token = os.environ.get("LIVE_API_TOKEN") or None
        return cls(
            base_url=_env_str("LIVE_BASE_URL", cls.base_url, fallback="BASE_URL"),
            api_url=_env_str("LIVE_API_URL", cls.api_url, fallback="API_URL"),
            api_token=token,
            step_delay_ms=_env_int("LIVE_STEP_DELAY_MS", cls.step_delay_ms),
            page_load_wait_ms=_env_int("LIVE_PAGE_LOAD_WAIT_MS", cls.page_load_wait_ms),
            animation_wait_ms=_env_int("LIVE_ANIMATION_WAIT_MS", cls.animation_wait_ms),
            api_timeout_ms=_env_int("LIVE_API_TIMEOUT_MS", cls.api_timeout_ms),
            headed=_env_bool("LIVE_HEADED", cls.headed),
            slow_mo_ms=_env_int("LIVE_SLOW_MO_MS", cls.slow_mo_ms),
            screenshots_enabled=_env_bool("LIVE_SCREENSHOTS", cls.screenshots_enabled),
            screenshot_dir=Path(_env_str("LIVE_SCREENSHOT_DIR", str(cls.screenshot_dir))),
            screenshot_keep_runs=_env_int("LIVE_SCREENSHOT_KEEP_RUNS", cls.screenshot_keep_runs),
            log_level=_env_str("LIVE_LOG_LEVEL", cls.log_level).lower(),
            log_to_file=_env_bool("LIVE_LOG_TO_FILE", cls.log_to_file),
            log_dir=Path(_env_str("LIVE_LOG_DIR", str(cls.log_dir))),
            tolerance_percent=_env_float("LIVE_TOLERANCE_PERCENT", cls.tolerance_percent),
        )

    def slowed(self, factor: float = 2.0) -> "RunConfiguration":
        return replace(
            self,
            pacing_multiplier=self.pacing_multiplier * factor,
            slow_mo_ms=int(self.slow_mo_ms * factor),
        )

    def paced(self, ms: int) -> int:
        return int(ms * self.pacing_multiplier)

    @property
    def api_timeout_s(self) -> float:
        return self.api_timeout_ms / 1000
