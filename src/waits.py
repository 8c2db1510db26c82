import asyncio
import inspect
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from live_config import RunConfiguration


T = TypeVar("T")


class TimeoutExceeded(Exception):
    """The UI never reached the expected state within the allotted time."""

    def __init__(self, message: str, elapsed_ms: int, last_result: Any = None):
        super().__init__(message)
        self.elapsed_ms = elapsed_ms
        self.last_result = last_result


class WaitOutcome(str, Enum):
    GONE = "gone"
    NEVER_PRESENT = "never_present"
    STILL_VISIBLE = "still_visible"
    CHECK_FAILED = "check_failed"


async def _call(fn: Callable[[], Any]) -> Any:
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def delay(ms: int) -> None:
    if ms > 0:
        await asyncio.sleep(ms / 1000)


async def step_delay(config: RunConfiguration) -> None:
    await delay(config.paced(config.step_delay_ms))


async def wait_for_animations(config: RunConfiguration) -> None:
    await delay(config.paced(config.animation_wait_ms))


async def wait_for_page_load(page, config: RunConfiguration) -> None:
    await page.wait_for_load_state("networkidle", timeout=config.api_timeout_ms)
    await delay(config.paced(config.page_load_wait_ms))


async def wait_for_condition(
    predicate: Callable[[], Any],
    timeout_ms: int,
    poll_interval_ms: int = 250,
) -> Any:
    """Poll predicate at a constant interval until it returns something truthy."""
    start = time.monotonic()
    last = None
    while True:
        last = await _call(predicate)
        if last:
            return last
        elapsed = _elapsed_ms(start)
        if elapsed >= timeout_ms:
            raise TimeoutExceeded(
                f"Condition not met within {timeout_ms}ms (last result: {last!r})",
                elapsed_ms=elapsed,
                last_result=last,
            )
        await asyncio.sleep(min(poll_interval_ms, timeout_ms - elapsed) / 1000)


async def wait_for_value_change(
    read: Callable[[], Any],
    initial_value: Any,
    timeout_ms: int,
    poll_interval_ms: int = 500,
    logger=None,
) -> Any:
    start = time.monotonic()
    current = initial_value
    while True:
        current = await _call(read)
        if current and current != initial_value:
            if logger:
                logger.verbose(f'Value changed from "{initial_value}" to "{current}"')
            return current
        elapsed = _elapsed_ms(start)
        if elapsed >= timeout_ms:
            raise TimeoutExceeded(
                f"Value did not change from {initial_value!r} within {timeout_ms}ms",
                elapsed_ms=elapsed,
                last_result=current,
            )
        await asyncio.sleep(min(poll_interval_ms, timeout_ms - elapsed) / 1000)


async def retry(
    action: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay_ms: int = 1000,
    logger=None,
) -> T:
    if retries < 1:
        raise ValueError("retries must be at least 1")
    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        try:
            return await action()
        except Exception as e:
            last_error = e
            if logger:
                logger.verbose(f"Retry {attempt}/{retries} failed: {e}")
            if attempt < retries:
                await delay(delay_ms)
    raise last_error


async def retry_with_backoff(
    action: Callable[[], Awaitable[T]],
    retries: int = 5,
    base_delay_ms: int = 250,
    max_delay_ms: int = 5000,
    logger=None,
) -> T:
    """Like retry(), but doubles the pause after each failure up to max_delay_ms.

    Use this for polling the backend API, where a fixed tight interval would add load
    during an outage.
    """
    if retries < 1:
        raise ValueError("retries must be at least 1")
    last_error: Exception | None = None
    pause = base_delay_ms
    for attempt in range(1, retries + 1):
        try:
            return await action()
        except Exception as e:
            last_error = e
            if logger:
                logger.verbose(f"Retry {attempt}/{retries} failed: {e} (next wait {pause}ms)")
            if attempt < retries:
                await delay(pause)
                pause = min(pause * 2, max_delay_ms)
    raise last_error


async def wait_for_loading_indicator_gone(locator_lookup: Callable[[], Any], timeout_ms: int) -> WaitOutcome:
    """Wait for a loading indicator to go away. Absence of the indicator is not a failure.

    STILL_VISIBLE means the indicator was seen and outlived timeout_ms;
    CHECK_FAILED means the lookup itself errored.

    locator_lookup returns a Playwright-style locator (count(), wait_for(state=...)).
    """
    try:
        locator = locator_lookup()
        if await locator.count() == 0:
            return WaitOutcome.NEVER_PRESENT
        await locator.wait_for(state="hidden", timeout=timeout_ms)
        return WaitOutcome.GONE
    except PlaywrightTimeoutError:
        return WaitOutcome.STILL_VISIBLE
    except Exception:
        return WaitOutcome.CHECK_FAILED
