import re
from dataclasses import dataclass
from enum import Enum

from live_config import RunConfiguration
from waits import WaitOutcome, step_delay, wait_for_animations, wait_for_loading_indicator_gone, wait_for_page_load


class Visibility(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    ERROR = "error"

    def __bool__(self) -> bool:
        return self is Visibility.PRESENT


def parse_price(text: str) -> float:
    return float(re.sub(r"[$,\s]", "", text))


def parse_percent(text: str) -> float:
    match = re.search(r"-?\d+(?:\.\d+)?", text.replace(",", ""))
    if not match:
        raise ValueError(f"No percentage in {text!r}")
    return float(match.group(0))


class BasePage:
    page_name = "Base"
    page_url = "/"
    loading_selector = '[data-testid="loading"]'

    def __init__(self, page, config: RunConfiguration, logger):
        self.page = page
        self.config = config
        self.logger = logger

    def url_for(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + "/" + path.lstrip("/")

    async def navigate(self, path: str | None = None) -> None:
        await self.page.goto(self.url_for(path or self.page_url), timeout=60000)
        await self.wait_for_ready()
        await step_delay(self.config)

    async def wait_for_ready(self) -> None:
        await wait_for_page_load(self.page, self.config)
        outcome = await wait_for_loading_indicator_gone(
            lambda: self.page.locator(self.loading_selector), self.config.api_timeout_ms
        )
        if outcome == WaitOutcome.STILL_VISIBLE:
            self.logger.warn(f"{self.page_name} still loading after {self.config.api_timeout_ms}ms")
        else:
            self.logger.verbose(f"{self.page_name} loading indicator: {outcome.value}")
        await wait_for_animations(self.config)

    async def click(self, selector: str, description: str | None = None) -> None:
        locator = self.page.locator(selector).first
        await locator.wait_for(state="visible", timeout=self.config.api_timeout_ms)
        await locator.click()
        if description:
            self.logger.verbose(f"Clicked: {description}")
        await step_delay(self.config)

    async def click_button(self, name: str) -> None:
        await self.page.get_by_role("button", name=name).first.click(timeout=self.config.api_timeout_ms)
        self.logger.verbose(f"Clicked button: {name}")
        await step_delay(self.config)

    async def click_text(self, text: str, exact: bool = False) -> None:
        await self.page.get_by_text(text, exact=exact).first.click(timeout=self.config.api_timeout_ms)
        self.logger.verbose(f"Clicked: {text}")
        await step_delay(self.config)

    async def type(self, selector: str, text: str, clear: bool = False) -> None:
        locator = self.page.locator(selector).first
        await locator.wait_for(state="visible", timeout=self.config.api_timeout_ms)
        if clear:
            await locator.clear()
        await locator.fill(text)
        self.logger.verbose(f'Typed: "{text}"')
        await wait_for_animations(self.config)

    async def get_text(self, selector: str) -> str:
        locator = self.page.locator(selector).first
        await locator.wait_for(state="visible", timeout=self.config.api_timeout_ms)
        return ((await locator.text_content()) or "").strip()

    async def is_visible(self, selector: str) -> Visibility:
        try:
            visible = await self.page.locator(selector).first.is_visible()
        except Exception as e:
            self.logger.verbose(f"Visibility check failed for {selector}: {e}")
            return Visibility.ERROR
        return Visibility.PRESENT if visible else Visibility.ABSENT

    async def text_visible(self, text: str) -> Visibility:
        try:
            visible = await self.page.get_by_text(text).first.is_visible()
        except Exception as e:
            self.logger.verbose(f"Visibility check failed for text {text!r}: {e}")
            return Visibility.ERROR
        return Visibility.PRESENT if visible else Visibility.ABSENT

    async def count(self, selector: str) -> int:
        return await self.page.locator(selector).count()

    async def get_all_texts(self, selector: str) -> list[str]:
        texts = []
        for text in await self.page.locator(selector).all_text_contents():
            if text and text.strip():
                texts.append(text.strip())
        return texts


@dataclass
class AssetRow:
    symbol: str
    price: float
    change24h: float | None = None


class DashboardPage(BasePage):
    page_name = "Dashboard"
    page_url = "/"
    asset_row = 'tr:has(button:has-text("Trade"))'
    trade_button = 'button:has-text("Trade")'
    search_input = 'input[placeholder*="Search"], input[type="search"]'
    filters = {
        "all": 'button:has-text("All")',
        "crypto": 'button:has-text("Crypto")',
        "stocks": 'button:has-text("Stocks")',
    }
    grid_toggle = 'button:has-text("Charts"), [aria-label*="grid"], [title*="Charts"]'
    list_toggle = 'button:has-text("List"), [aria-label*="list"], [title*="List"]'

    async def wait_for_assets(self) -> None:
        await self.page.get_by_text("Asset Prices").first.wait_for(state="visible", timeout=self.config.api_timeout_ms)
        await self.page.locator(self.trade_button).first.wait_for(state="visible", timeout=self.config.api_timeout_ms)
        await step_delay(self.config)

    async def get_asset_count(self) -> int:
        count = await self.count(self.trade_button)
        if count == 0:
            count = await self.count("table tbody tr")
        return count

    async def get_asset(self, index: int) -> AssetRow | None:
        row = self.page.locator(self.asset_row).nth(index)
        cells = row.locator("td")
        name_text = ((await cells.nth(1).text_content()) or "").split()
        price_text = (await cells.nth(2).text_content()) or ""
        if not name_text or not price_text.strip():
            self.logger.warn(f"Could not extract data from asset row {index}")
            return None
        change = None
        for text in await cells.all_text_contents():
            if "%" in text and "Trade" not in text:
                change = parse_percent(text)
                break
        return AssetRow(
            symbol=name_text[-1],
            price=parse_price(price_text),
            change24h=change,
        )

    async def get_top_assets(self, count: int = 5) -> list[AssetRow]:
        assets = []
        for i in range(min(count, await self.get_asset_count())):
            asset = await self.get_asset(i)
            if asset:
                assets.append(asset)
        return assets

    async def click_filter(self, name: str) -> None:
        await self.click(self.filters[name], f"Filter: {name}")

    async def toggle_view(self, grid: bool) -> None:
        await self.click(self.grid_toggle if grid else self.list_toggle, "Grid view" if grid else "List view")

    async def search(self, query: str) -> None:
        await self.type(self.search_input, query, clear=True)
        await step_delay(self.config)

    async def click_first_asset(self) -> str | None:
        asset = await self.get_asset(0)
        await self.page.locator(self.asset_row).first.locator("td").nth(1).click()
        await self.wait_for_ready()
        return asset.symbol if asset else None


class AssetDetailPage(BasePage):
    page_name = "Asset Detail"
    page_url = "/asset"
    price = '[data-testid="asset-price"], [class*="current-price"]'
    change = '[data-testid="price-change"], [class*="price-change"]'
    chart = "canvas"
    signal_score = '[data-testid="signal-score"], [class*="composite-score"]'
    signal_direction = '[data-testid="signal-direction"], [class*="direction"]'

    async def navigate_to_asset(self, symbol: str) -> None:
        await self.navigate(f"/asset/{symbol.lower()}")

    async def get_price(self) -> float:
        return parse_price(await self.get_text(self.price))

    async def get_price_change(self) -> float:
        return parse_percent(await self.get_text(self.change))

    async def get_signal_score(self) -> float:
        return float(await self.get_text(self.signal_score))

    async def get_signal_direction(self) -> str:
        return await self.get_text(self.signal_direction)

    async def change_timeframe(self, timeframe: str) -> None:
        await self.click_button(timeframe)
        await wait_for_animations(self.config)


@dataclass
class PositionRow:
    id: str | None
    symbol: str
    side: str
    size: float | None = None
    entry_price: float | None = None
    leverage: float | None = None

    def as_api_fields(self) -> dict:
        return {
            "symbol": self.symbol,
            "side": self.side,
            "size": self.size,
            "entryPrice": self.entry_price,
            "leverage": self.leverage,
        }


class TradingPage(BasePage):
    page_name = "Trading"
    page_url = "/trade"
    order_book = "text=Order Book"
    chart = "canvas"
    quantity_input = 'input[placeholder*="0.00"], input[type="number"]'
    confirm_button = 'button:has-text("Confirm Order")'
    position_row = '[data-testid="position-row"], tr:has-text("LONG"), tr:has-text("SHORT")'
    position_pnl = '[data-testid="position-pnl"], td:nth-child(6)'

    async def navigate_to_symbol(self, symbol: str) -> None:
        await self.navigate(f"/trade/{symbol.lower()}")

    async def set_side(self, side: str) -> None:
        await self.click_text("Buy / Long" if side == "buy" else "Sell / Short")

    async def set_order_type(self, order_type: str) -> None:
        labels = {"market": "Market", "limit": "Limit", "stop": "Stop Loss", "stop_limit": "Take Profit"}
        await self.page.locator("button").filter(has_text=re.compile("Market|Limit|Stop Loss|Take Profit")).first.click()
        await step_delay(self.config)
        await self.click_text(labels[order_type], exact=True)

    async def set_quantity(self, quantity: float) -> None:
        await self.type(self.quantity_input, str(quantity), clear=True)

    async def set_leverage(self, leverage: int) -> None:
        preset = self.page.get_by_role("button", name=f"{leverage}x")
        if await preset.count():
            await preset.first.click()
        else:
            await self.page.locator('input[type="range"]').first.fill(str(leverage))
        await wait_for_animations(self.config)

    async def place_order(self, side: str = "buy") -> None:
        await self.click(f'button:has-text("{"Buy / Long" if side == "buy" else "Sell / Short"}")', "Place order")

    async def confirm_order(self) -> None:
        await self.click(self.confirm_button, "Confirm order")

    async def go_to_tab(self, name: str) -> None:
        await self.click_button(name)

    async def get_position_count(self) -> int:
        return await self.count(self.position_row)

    async def get_position(self, index: int = 0) -> PositionRow | None:
        if await self.get_position_count() <= index:
            return None
        row = self.page.locator(self.position_row).nth(index)
        cells = [c.strip() for c in await row.locator("td").all_text_contents()]
        if len(cells) < 5:
            self.logger.warn(f"Position row {index} has {len(cells)} cells, expected at least 5")
            return None
        return PositionRow(
            id=await row.get_attribute("data-position-id"),
            symbol=cells[0],
            side=cells[1].lower(),
            size=parse_price(cells[2]),
            entry_price=parse_price(cells[3]),
            leverage=float(cells[4].rstrip("x")),
        )

    async def read_position_pnl(self, index: int = 0) -> str:
        locator = self.page.locator(self.position_row).nth(index).locator(self.position_pnl).first
        return ((await locator.text_content()) or "").strip()

    async def close_position(self, index: int = 0) -> None:
        await self.page.locator(self.position_row).nth(index).locator('button:has-text("Close")').click()
        await step_delay(self.config)
        await self.click('button:has-text("Close Position"), button:has-text("Confirm")', "Confirm close")


class PortfolioPage(BasePage):
    page_name = "Portfolio"
    page_url = "/portfolio"
    metrics = {
        "cashBalance": '[data-testid="cash-balance"]',
        "marginUsed": '[data-testid="margin-used"]',
        "equity": '[data-testid="equity"]',
        "unrealizedPnl": '[data-testid="unrealized-pnl"]',
        "realizedPnl": '[data-testid="realized-pnl"]',
    }
    equity_curve = '[data-testid="equity-curve"], canvas'
    holding_row = '[data-testid="holding-row"], [class*="holding-item"]'

    async def get_metric(self, key: str) -> float:
        return parse_price(await self.get_text(self.metrics[key]))

    async def get_summary(self) -> dict:
        summary = {}
        for key in self.metrics:
            if await self.is_visible(self.metrics[key]):
                summary[key] = await self.get_metric(key)
        return summary


class LeaderboardPage(BasePage):
    page_name = "Leaderboard"
    page_url = "/leaderboard"
    entry_row = '[data-testid="leaderboard-row"], table tbody tr'
    my_rank = '[data-testid="my-rank"]'

    async def get_entry_count(self) -> int:
        return await self.count(self.entry_row)

    async def get_entry(self, index: int = 0) -> dict | None:
        if await self.get_entry_count() <= index:
            return None
        cells = [c.strip() for c in await self.page.locator(self.entry_row).nth(index).locator("td").all_text_contents()]
        if len(cells) < 5:
            return None
        return {
            "rank": int(cells[0].lstrip("#")),
            "username": cells[1],
            "pnl": parse_price(cells[2]),
            "winRate": parse_percent(cells[3]),
            "totalTrades": int(cells[4].replace(",", "")),
        }


class ProfilePage(BasePage):
    page_name = "Profile"
    page_url = "/profile"
    public_key = '[data-testid="public-key"]'
    connection_status = '[data-testid="connection-status"]'

    async def is_guest(self) -> Visibility:
        return await self.text_visible("Create Account")

    async def create_account(self) -> None:
        await self.click_button("Create Account")
        await self.wait_for_ready()

    async def get_public_key(self) -> str:
        return await self.get_text(self.public_key)

    async def connect_to_server(self) -> None:
        await self.click_button("Connect")
        await self.wait_for_ready()

    async def get_connection_status(self) -> str:
        return await self.get_text(self.connection_status)

    async def logout(self) -> None:
        await self.click_button("Logout")
        await self.click_button("Confirm")
        await self.wait_for_ready()


class SettingsPage(BasePage):
    page_name = "Settings"
    page_url = "/settings"
    language_select = '[data-testid="language-select"], select'
    server_row = '[data-testid="server-row"]'
    current_server = '[data-testid="server-row"][data-active="true"]'

    async def get_current_language(self) -> str:
        return await self.page.locator(self.language_select).first.input_value()

    async def change_language(self, language: str) -> None:
        await self.page.locator(self.language_select).first.select_option(language)
        await step_delay(self.config)

    async def set_speed(self, speed: str) -> None:
        await self.click_button(speed)

    async def get_servers(self) -> list[str]:
        return await self.get_all_texts(self.server_row)

    async def get_current_server(self) -> str | None:
        if not await self.is_visible(self.current_server):
            return None
        return await self.get_text(self.current_server)

    async def switch_server(self, index: int) -> str:
        row = self.page.locator(self.server_row).nth(index)
        name = ((await row.text_content()) or "").strip()
        await row.click()
        await self.wait_for_ready()
        return name
