import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from live_config import RunConfiguration
from pages import (
    AssetDetailPage,
    DashboardPage,
    LeaderboardPage,
    PortfolioPage,
    ProfilePage,
    SettingsPage,
    TradingPage,
    Visibility,
)
from results import StepRecord, StepStatus, SuiteResult, ValidationResult
from waits import TimeoutExceeded, step_delay, wait_for_condition, wait_for_value_change


@dataclass
class StepOutcome:
    passed: bool = True
    detail: str | None = None
    validations: list[ValidationResult] = field(default_factory=list)


@dataclass
class SuiteContext:
    """Everything a suite may touch. The page belongs to the runner and is lent for one suite.

    state is scratch space shared between steps of the same suite; a new
    context is built for every suite.
    """

    page: Any
    config: RunConfiguration
    logger: Any
    screenshots: Any
    validator: Any
    result: SuiteResult
    state: dict = field(default_factory=dict)

    async def step(
        self,
        step_id: str,
        description: str,
        action: Callable[[], Awaitable[Any]],
        screenshot: str | None = None,
    ) -> StepRecord:
        """Run one step and record it.

        The action may return None or any truthy value (pass), a falsy value or
        a non-present Visibility (fail), a non-empty list of ValidationResult (pass iff
        all match) or a StepOutcome.
        """
        record = StepRecord(id=step_id, description=description, status=StepStatus.RUNNING)
        self.logger.step_start(step_id, description)
        start = time.monotonic()
        detail = None
        try:
            outcome = await action()
        except TimeoutExceeded as e:
            record.status, record.error, record.error_kind = StepStatus.FAILED, str(e), "timeout"
        except Exception as e:
            record.status, record.error, record.error_kind = StepStatus.FAILED, str(e) or type(e).__name__, "action"
        else:
            if isinstance(outcome, list) and not outcome:
                outcome = StepOutcome(passed=False, detail="No values were compared")
            elif isinstance(outcome, list):
                outcome = StepOutcome(passed=all(v.match for v in outcome), validations=outcome)
            elif isinstance(outcome, Visibility):
                outcome = StepOutcome(passed=bool(outcome), detail=None if outcome else f"Visibility: {outcome.value}")
            elif not isinstance(outcome, StepOutcome):
                outcome = StepOutcome(passed=outcome is None or bool(outcome))
            record.validations = list(outcome.validations)
            detail = outcome.detail
            if outcome.passed:
                record.status = StepStatus.PASSED
            else:
                record.status = StepStatus.FAILED
                record.error_kind = "action"
                record.error = detail or self._mismatch_message(record.validations)

        for v in record.validations:
            self.logger.validation(v)
        if record.validations:
            self.logger.validation_summary(record.validations)

        if screenshot:
            label = screenshot if record.passed else f"{screenshot}-failure"
            record.screenshot = await self.screenshots.capture(self.page, label)

        record.duration_ms = int((time.monotonic() - start) * 1000)
        if record.passed:
            self.logger.step_pass(step_id, record.duration_ms, detail)
        else:
            self.logger.step_fail(step_id, record.error)
        return self.result.record_step(record)

    @staticmethod
    def _mismatch_message(validations: list[ValidationResult]) -> str:
        failed = [v.field for v in validations if not v.match]
        if failed:
            return f"{len(failed)}/{len(validations)} validations failed: {', '.join(failed)}"
        return "Check did not pass"


SuiteFn = Callable[[SuiteContext], Awaitable[None]]


async def dashboard_suite(ctx: SuiteContext) -> None:
    dashboard = DashboardPage(ctx.page, ctx.config, ctx.logger)

    async def check_count():
        count = await dashboard.get_asset_count()
        return StepOutcome(passed=count > 0, detail=f"Found {count} assets")

    async def check_prices():
        assets = await dashboard.get_top_assets(5)
        if not assets:
            return StepOutcome(passed=False, detail="No asset rows could be read")
        return await ctx.validator.validate_assets(
            [{"symbol": a.symbol, "price": a.price, "change24h": a.change24h} for a in assets]
        )

    async def click_first():
        symbol = await dashboard.click_first_asset()
        return StepOutcome(passed=symbol is not None, detail=f"Clicked {symbol}")

    async def go_back():
        await ctx.page.go_back()
        await dashboard.wait_for_ready()

    await ctx.step("1.1", "Navigate to dashboard", dashboard.navigate, screenshot="01-dashboard-load")
    await ctx.step("1.2", "Wait for assets to load", dashboard.wait_for_assets, screenshot="01-assets-loaded")
    await ctx.step("1.3", "Verify asset count", check_count)
    await ctx.step("1.4", "Validate top 5 prices against API", check_prices, screenshot="01-prices-match")
    await ctx.step("1.5", 'Click "Crypto" filter', lambda: dashboard.click_filter("crypto"), screenshot="01-crypto-filter")
    await ctx.step("1.6", 'Click "Stocks" filter', lambda: dashboard.click_filter("stocks"), screenshot="01-stocks-filter")
    await ctx.step("1.7", 'Click "All" filter', lambda: dashboard.click_filter("all"), screenshot="01-all-filter")
    await ctx.step("1.8", "Toggle to grid view", lambda: dashboard.toggle_view(grid=True), screenshot="01-grid-view")
    await ctx.step("1.9", "Toggle to list view", lambda: dashboard.toggle_view(grid=False), screenshot="01-list-view")
    await ctx.step("1.10", 'Search "BTC"', lambda: dashboard.search("BTC"), screenshot="01-search-btc")
    await ctx.step("1.11", "Clear search", lambda: dashboard.search(""))
    await ctx.step("1.12", "Click first asset", click_first, screenshot="01-asset-clicked")
    await ctx.step("1.13", "Go back to dashboard", go_back, screenshot="01-back-to-dashboard")


async def asset_detail_suite(ctx: SuiteContext) -> None:
    detail = AssetDetailPage(ctx.page, ctx.config, ctx.logger)
    symbol = "BTC"

    async def check_price():
        return [await ctx.validator.validate_asset_price(symbol, await detail.get_price())]

    async def check_change():
        return [await ctx.validator.validate_asset_24h_change(symbol, await detail.get_price_change())]

    async def check_signal():
        return [await ctx.validator.validate_signal_score(symbol, await detail.get_signal_score())]

    async def check_direction():
        direction = await detail.get_signal_direction()
        return StepOutcome(passed=bool(direction), detail=f"Direction: {direction}")

    await ctx.step("2.1", f"Navigate to {symbol} detail", lambda: detail.navigate_to_asset(symbol), screenshot="02-detail-load")
    await ctx.step("2.2", "Verify price display", check_price)
    await ctx.step("2.3", "Verify 24h change", check_change)
    await ctx.step("2.4", "Verify chart renders", lambda: detail.is_visible(detail.chart), screenshot="02-chart")
    for n, timeframe in enumerate(("1H", "1D", "1W"), start=5):
        await ctx.step(
            f"2.{n}", f"Change timeframe to {timeframe}",
            lambda tf=timeframe: detail.change_timeframe(tf), screenshot=f"02-timeframe-{timeframe}",
        )
    await ctx.step("2.8", "Verify signal score", check_signal, screenshot="02-signal")
    await ctx.step("2.9", "Verify direction label", check_direction)


async def trading_suite(ctx: SuiteContext) -> None:
    trading = TradingPage(ctx.page, ctx.config, ctx.logger)
    symbol = "BTC"

    async def wait_for_fill():
        await wait_for_condition(trading.get_position_count, ctx.config.api_timeout_ms, poll_interval_ms=500)

    async def check_position():
        position = await trading.get_position(0)
        if position is None:
            return StepOutcome(passed=False, detail="No open position row found")
        if not position.id:
            return StepOutcome(passed=False, detail="Position row has no data-position-id to validate against")
        return await ctx.validator.validate_position(position.id, position.as_api_fields())

    async def watch_pnl():
        initial = await trading.read_position_pnl(0)
        final = await wait_for_value_change(
            lambda: trading.read_position_pnl(0), initial,
            timeout_ms=ctx.config.api_timeout_ms, poll_interval_ms=500, logger=ctx.logger,
        )
        return StepOutcome(detail=f"P&L {initial} -> {final}")

    async def no_positions():
        return await trading.get_position_count() == 0

    async def check_closed():
        await wait_for_condition(no_positions, ctx.config.api_timeout_ms, poll_interval_ms=500)

    await ctx.step("3.1", "Navigate to trading", lambda: trading.navigate_to_symbol(symbol), screenshot="03-trading-load")
    await ctx.step("3.2", "Verify order book", lambda: trading.is_visible(trading.order_book), screenshot="03-order-book")
    await ctx.step("3.3", "Verify chart", lambda: trading.is_visible(trading.chart))
    await ctx.step("3.4", 'Set order type "Market"', lambda: trading.set_order_type("market"))
    await ctx.step("3.5", 'Set side "Buy"', lambda: trading.set_side("buy"))
    await ctx.step("3.6", 'Enter quantity "0.1"', lambda: trading.set_quantity(0.1))
    await ctx.step("3.7", 'Set leverage "2x"', lambda: trading.set_leverage(2), screenshot="03-order-form")
    await ctx.step("3.8", 'Click "Place Order"', lambda: trading.place_order("buy"), screenshot="03-confirm-modal")
    await ctx.step("3.9", 'Click "Confirm"', trading.confirm_order)
    await ctx.step("3.10", "Wait for fill", wait_for_fill, screenshot="03-filled")
    await ctx.step("3.11", "Check positions tab", lambda: trading.go_to_tab("Positions"), screenshot="03-positions")
    await ctx.step("3.12", "Verify position details", check_position)
    await ctx.step("3.13", "Watch P&L updating", watch_pnl, screenshot="03-pnl")
    await ctx.step("3.14", "Close position", lambda: trading.close_position(0))
    await ctx.step("3.15", "Verify position closed", check_closed, screenshot="03-closed")
    await ctx.step("3.16", "Check history tab", lambda: trading.go_to_tab("History"), screenshot="03-history")


async def portfolio_suite(ctx: SuiteContext) -> None:
    portfolio = PortfolioPage(ctx.page, ctx.config, ctx.logger)

    async def read_summary():
        summary = await portfolio.get_summary()
        ctx.state["portfolio"] = summary
        return StepOutcome(passed=bool(summary), detail=", ".join(f"{k}={v}" for k, v in summary.items()))

    def metric_present(key):
        async def check():
            value = ctx.state.get("portfolio", {}).get(key)
            return StepOutcome(passed=value is not None, detail=f"{key}: {value}")
        return check

    async def check_holdings():
        count = await portfolio.count(portfolio.holding_row)
        return StepOutcome(detail=f"{count} holdings")

    async def validate():
        summary = ctx.state.get("portfolio")
        if not summary:
            return StepOutcome(passed=False, detail="No portfolio metrics were read from the page")
        return await ctx.validator.validate_portfolio(summary)

    await ctx.step("4.1", "Navigate to portfolio", portfolio.navigate, screenshot="04-portfolio-load")
    await ctx.step("4.2", "Verify summary metrics", read_summary)
    await ctx.step("4.3", "Check cash balance", metric_present("cashBalance"))
    await ctx.step("4.4", "Check margin used", metric_present("marginUsed"))
    await ctx.step("4.5", "Check unrealized P&L", metric_present("unrealizedPnl"))
    await ctx.step("4.6", "Verify equity curve", lambda: portfolio.is_visible(portfolio.equity_curve), screenshot="04-equity")
    await ctx.step("4.7", "Verify holdings list", check_holdings, screenshot="04-holdings")
    await ctx.step("4.8", "Validate against API", validate)


async def leaderboard_suite(ctx: SuiteContext) -> None:
    leaderboard = LeaderboardPage(ctx.page, ctx.config, ctx.logger)

    async def check_entries():
        count = await leaderboard.get_entry_count()
        return StepOutcome(passed=count > 0, detail=f"{count} entries")

    async def validate_top():
        entry = await leaderboard.get_entry(0)
        if entry is None:
            return StepOutcome(passed=False, detail="Top leaderboard row could not be read")
        return await ctx.validator.validate_leaderboard_entry(entry["rank"], entry)

    await ctx.step("5.1", "Navigate to leaderboard", leaderboard.navigate, screenshot="05-leaderboard-load")
    await ctx.step("5.2", "Verify entries listed", check_entries)
    await ctx.step("5.3", "Validate top entry against API", validate_top, screenshot="05-top-entry")
    await ctx.step("5.4", "Check my rank", lambda: leaderboard.is_visible(leaderboard.my_rank))


async def profile_suite(ctx: SuiteContext) -> None:
    profile = ProfilePage(ctx.page, ctx.config, ctx.logger)

    async def check_key():
        key = await profile.get_public_key()
        return StepOutcome(passed=len(key) > 0, detail=f"Public key: {key[:12]}...")

    async def check_connected():
        status = await profile.get_connection_status()
        return StepOutcome(passed="connected" in status.lower(), detail=status)

    await ctx.step("6.1", "Navigate to profile", profile.navigate, screenshot="06-profile-load")
    await ctx.step("6.2", "Verify guest state", profile.is_guest)
    await ctx.step("6.3", "Create account", profile.create_account, screenshot="06-account-created")
    await ctx.step("6.4", "Verify public key", check_key)
    await ctx.step("6.5", "Connect to server", profile.connect_to_server)
    await ctx.step("6.6", "Verify connected", check_connected, screenshot="06-connected")
    await ctx.step("6.7", "Logout", profile.logout)
    await ctx.step("6.8", "Verify guest state", profile.is_guest, screenshot="06-logged-out")


async def settings_suite(ctx: SuiteContext) -> None:
    settings = SettingsPage(ctx.page, ctx.config, ctx.logger)

    async def check_language():
        language = await settings.get_current_language()
        ctx.state["language"] = language
        return StepOutcome(passed=bool(language), detail=f"Language: {language}")

    async def check_servers():
        servers = await settings.get_servers()
        return StepOutcome(passed=len(servers) > 0, detail=f"{len(servers)} servers")

    async def remember_server():
        ctx.state["server"] = await settings.get_current_server()
        return StepOutcome(detail=f"Current server: {ctx.state['server']}")

    async def switch():
        name = await settings.switch_server(1)
        return StepOutcome(detail=f"Switched to {name}")

    async def switch_back():
        await settings.switch_server(0)
        await step_delay(ctx.config)

    await ctx.step("7.1", "Navigate to settings", settings.navigate, screenshot="07-settings-load")
    await ctx.step("7.2", "Check current language", check_language)
    await ctx.step("7.3", "Change language", lambda: settings.change_language(ctx.state.get("language") or "en"))
    await ctx.step("7.4", "Change speed", lambda: settings.set_speed("2x"), screenshot="07-speed")
    await ctx.step("7.5", "Check servers list", check_servers)
    await ctx.step("7.6", "Get current server", remember_server)
    await ctx.step("7.7", "Switch server", switch, screenshot="07-server-switched")
    await ctx.step("7.8", "Reset to original server", switch_back)


async def full_flow_suite(ctx: SuiteContext) -> None:
    dashboard = DashboardPage(ctx.page, ctx.config, ctx.logger)
    profile = ProfilePage(ctx.page, ctx.config, ctx.logger)
    trading = TradingPage(ctx.page, ctx.config, ctx.logger)
    portfolio = PortfolioPage(ctx.page, ctx.config, ctx.logger)

    async def view_prices():
        assets = await dashboard.get_top_assets(3)
        if not assets:
            return StepOutcome(passed=False, detail="No asset rows could be read")
        return await ctx.validator.validate_assets([{"symbol": a.symbol, "price": a.price} for a in assets])

    async def place_market_order():
        await trading.navigate_to_symbol("BTC")
        await trading.set_order_type("market")
        await trading.set_side("buy")
        await trading.set_quantity(0.01)
        await trading.place_order("buy")
        await trading.confirm_order()
        await wait_for_condition(trading.get_position_count, ctx.config.api_timeout_ms, poll_interval_ms=500)

    async def check_portfolio():
        await portfolio.navigate()
        summary = await portfolio.get_summary()
        if not summary:
            return StepOutcome(passed=False, detail="No portfolio metrics were read from the page")
        return await ctx.validator.validate_portfolio(summary)

    async def create_account():
        await profile.navigate()
        await profile.create_account()

    async def logout():
        await profile.navigate()
        await profile.logout()
        return await profile.is_guest()

    await ctx.step("8.1", "Navigate to dashboard", dashboard.navigate, screenshot="08-dashboard")
    await ctx.step("8.2", "View asset prices", view_prices)
    await ctx.step("8.3", "Create account", create_account)
    await ctx.step("8.4", "Connect to server", profile.connect_to_server, screenshot="08-connected")
    await ctx.step("8.5", "Place market order", place_market_order, screenshot="08-order-filled")
    await ctx.step("8.6", "Close position", lambda: trading.close_position(0))
    await ctx.step("8.7", "Check portfolio", check_portfolio, screenshot="08-portfolio")
    await ctx.step("8.8", "Logout", logout, screenshot="08-logged-out")


class SuiteName(str, Enum):
    DASHBOARD = "dashboard"
    ASSET_DETAIL = "asset-detail"
    TRADING = "trading"
    PORTFOLIO = "portfolio"
    LEADERBOARD = "leaderboard"
    PROFILE = "profile"
    SETTINGS = "settings"
    FULL_FLOW = "full-flow"


SUITE_TITLES = {
    SuiteName.DASHBOARD: "Dashboard Walkthrough",
    SuiteName.ASSET_DETAIL: "Asset Detail",
    SuiteName.TRADING: "Trading Flow",
    SuiteName.PORTFOLIO: "Portfolio",
    SuiteName.LEADERBOARD: "Leaderboard",
    SuiteName.PROFILE: "Profile",
    SuiteName.SETTINGS: "Settings",
    SuiteName.FULL_FLOW: "Full User Flow",
}

# Registry order is execution order.
SUITES: dict[SuiteName, SuiteFn] = {
    SuiteName.DASHBOARD: dashboard_suite,
    SuiteName.ASSET_DETAIL: asset_detail_suite,
    SuiteName.TRADING: trading_suite,
    SuiteName.PORTFOLIO: portfolio_suite,
    SuiteName.LEADERBOARD: leaderboard_suite,
    SuiteName.PROFILE: profile_suite,
    SuiteName.SETTINGS: settings_suite,
    SuiteName.FULL_FLOW: full_flow_suite,
}
