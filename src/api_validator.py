import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from live_config import RunConfiguration
from results import ValidationResult, is_numeric


logger = logging.getLogger(__name__)


class RequestFailed(Exception):
    def __init__(self, status: int, status_text: str, url: str = ""):
        super().__init__(f"API request failed: {status} {status_text}".rstrip())
        self.status = status
        self.status_text = status_text
        self.url = url


class RequestTimedOut(Exception):
    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"API request timed out after {timeout_ms}ms: {url}")
        self.url = url
        self.timeout_ms = timeout_ms


@dataclass(frozen=True)
class Comparison:
    match: bool
    tolerance: float | None = None


@dataclass(frozen=True)
class FieldTolerances:
    """Default tolerance (percent) per field category. None means the run-wide default."""

    price: float | None = None
    change_percent: float = 0.1
    unrealized_pnl: float = 1.0
    signal_score: float = 0.5
    position: float | None = None
    leaderboard: float | None = None


class ApiValidator:
    def __init__(
        self,
        config: RunConfiguration,
        tolerances: FieldTolerances | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = config.api_url.rstrip("/")
        self.timeout_ms = config.api_timeout_ms
        self.default_tolerance = config.tolerance_percent
        self.tolerances = tolerances or FieldTolerances()
        self.session_token = config.api_token
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=config.api_timeout_s,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "ApiValidator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_session_token(self, token: str | None) -> None:
        self.session_token = token

    async def fetch_entity(self, endpoint: str) -> Any:
        headers = {}
        if self.session_token:
            headers["Authorization"] = f"Bearer {self.session_token}"
        try:
            response = await self._client.get(endpoint, headers=headers)
        except httpx.TimeoutException:
            raise RequestTimedOut(f"{self.api_url}{endpoint}", self.timeout_ms)
        except httpx.HTTPError as e:
            logger.debug("Transport error for %s: %r", endpoint, e)
            raise RequestFailed(0, str(e) or type(e).__name__, f"{self.api_url}{endpoint}")
        if not response.is_success:
            raise RequestFailed(response.status_code, response.reason_phrase, str(response.url))
        return response.json()

    async def _fetch_object(self, endpoint: str) -> dict:
        data = await self.fetch_entity(endpoint)
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object from {endpoint}, got {type(data).__name__}")
        return data

    def compare(self, ui_value: Any, api_value: Any, tolerance_override: float | None = None) -> Comparison:
        if is_numeric(ui_value) and is_numeric(api_value):
            if api_value == 0:
                return Comparison(match=ui_value == 0, tolerance=0.0)
            measured = abs(ui_value - api_value) / abs(api_value) * 100
            limit = tolerance_override if tolerance_override is not None else self.default_tolerance
            return Comparison(match=measured <= limit, tolerance=measured)
        if isinstance(ui_value, str) and isinstance(api_value, str):
            return Comparison(match=ui_value.lower() == api_value.lower())
        return Comparison(match=type(ui_value) is type(api_value) and ui_value == api_value)

    def _result(self, label: str, ui_value: Any, api_value: Any, tolerance_override: float | None = None) -> ValidationResult:
        comparison = self.compare(ui_value, api_value, tolerance_override)
        return ValidationResult(
            field=label,
            ui_value=ui_value,
            api_value=api_value,
            match=comparison.match,
            tolerance=comparison.tolerance,
        )

    @staticmethod
    def _failed(label: str, ui_value: Any, error: Exception | str) -> ValidationResult:
        message = error if isinstance(error, str) else (str(error) or type(error).__name__)
        return ValidationResult(field=label, ui_value=ui_value, api_value=None, match=False, error=message)

    async def validate_field(
        self,
        label: str,
        ui_value: Any,
        endpoint: str,
        extractor: Callable[[Any], Any],
        tolerance_override: float | None = None,
    ) -> ValidationResult:
        try:
            data = await self.fetch_entity(endpoint)
            api_value = extractor(data)
        except Exception as e:
            return self._failed(label, ui_value, e)
        return self._result(label, ui_value, api_value, tolerance_override)

    # Assets

    async def validate_asset_price(self, symbol: str, ui_price: float, tolerance: float | None = None) -> ValidationResult:
        return await self.validate_field(
            f"{symbol} price", ui_price, f"/api/crypto/{symbol}",
            lambda d: d["price"], tolerance if tolerance is not None else self.tolerances.price,
        )

    async def validate_asset_24h_change(self, symbol: str, ui_change: float, tolerance: float | None = None) -> ValidationResult:
        return await self.validate_field(
            f"{symbol} 24h change", ui_change, f"/api/crypto/{symbol}",
            lambda d: d["changePercent24h"], tolerance if tolerance is not None else self.tolerances.change_percent,
        )

    async def validate_asset_count(self, ui_count: int) -> ValidationResult:
        return await self.validate_field(
            "Asset count", ui_count, "/api/crypto/listings?limit=200",
            lambda d: len(d["items"]), 0,
        )

    async def validate_assets(self, assets: list[dict]) -> list[ValidationResult]:
        """assets: [{"symbol": ..., "price": ..., "change24h": optional}]"""
        results = []
        for asset in assets:
            results.append(await self.validate_asset_price(asset["symbol"], asset["price"]))
            if asset.get("change24h") is not None:
                results.append(await self.validate_asset_24h_change(asset["symbol"], asset["change24h"]))
        return results

    # Trading

    async def validate_position(self, position_id: str, ui_position: dict, tolerance: float | None = None) -> list[ValidationResult]:
        try:
            data = await self._fetch_object(f"/api/trading/positions/{position_id}")
        except Exception as e:
            return [self._failed("Position fetch", position_id, e)]
        tolerance = tolerance if tolerance is not None else self.tolerances.position
        fields = [
            ("symbol", "Position symbol", None),
            ("side", "Position side", None),
            ("size", "Position size", tolerance),
            ("entryPrice", "Entry price", tolerance),
            ("leverage", "Leverage", 0),
        ]
        return self._fan_out(ui_position, data, fields)

    async def validate_portfolio(self, ui_portfolio: dict) -> list[ValidationResult]:
        try:
            data = await self._fetch_object("/api/trading/portfolios")
        except Exception as e:
            return [self._failed("Portfolio fetch", None, e)]
        fields = [
            ("cashBalance", "Cash balance", None),
            ("marginUsed", "Margin used", None),
            ("equity", "Equity", None),
            ("unrealizedPnl", "Unrealized P&L", self.tolerances.unrealized_pnl),
            ("realizedPnl", "Realized P&L", None),
        ]
        return self._fan_out(ui_portfolio, data, fields)

    async def validate_leaderboard_entry(self, rank: int, ui_entry: dict) -> list[ValidationResult]:
        try:
            data = await self._fetch_object("/api/trading/leaderboard?limit=100")
            entries = data["entries"]
            if not isinstance(entries, list):
                raise TypeError(f"'entries' is {type(entries).__name__}, expected a list")
            api_entry = next((e for e in entries if isinstance(e, dict) and e.get("rank") == rank), None)
        except Exception as e:
            return [self._failed("Leaderboard fetch", None, e)]
        if api_entry is None:
            return [self._failed(f"Rank {rank} entry", ui_entry, f"Rank {rank} not found in API response")]
        fields = [
            ("pnl", f"Rank {rank} P&L", self.tolerances.leaderboard),
            ("pnlPercent", f"Rank {rank} P&L %", self.tolerances.change_percent),
            ("winRate", f"Rank {rank} Win Rate", self.tolerances.leaderboard),
            ("totalTrades", f"Rank {rank} Trades", 0),
        ]
        return self._fan_out(ui_entry, api_entry, fields)

    def _fan_out(self, ui: dict, api: dict, fields: list[tuple]) -> list[ValidationResult]:
        results = []
        for key, label, tolerance in fields:
            if ui.get(key) is None:
                continue
            if key not in api:
                results.append(self._failed(label, ui[key], f"'{key}' missing from API response"))
                continue
            results.append(self._result(label, ui[key], api[key], tolerance))
        return results

    async def validate_order_status(self, order_id: str, expected_status: str) -> ValidationResult:
        return await self.validate_field(
            f"Order {order_id[:8]} status", expected_status, f"/api/trading/orders/{order_id}",
            lambda d: d["status"],
        )

    # Signals

    async def validate_signal_score(self, symbol: str, ui_score: float, tolerance: float | None = None) -> ValidationResult:
        return await self.validate_field(
            f"{symbol} signal score", ui_score, f"/api/signals/{symbol}",
            lambda d: d["compositeScore"], tolerance if tolerance is not None else self.tolerances.signal_score,
        )
