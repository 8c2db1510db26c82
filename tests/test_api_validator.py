"""
Tests for ApiValidator against an httpx.MockTransport backend.

Covers:
- tolerance law and the zero API value rule
- case-insensitive string comparison
- fetch failures (404, timeout) become failed ValidationResults
- bearer token header
- batch validations keep going when one field fails
"""

from __future__ import annotations

import httpx
import pytest

from api_validator import ApiValidator, FieldTolerances, RequestFailed, RequestTimedOut


def mock_backend(routes: dict, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        key = request.url.path
        if request.url.query:
            key += "?" + request.url.query.decode()
        if key not in routes:
            return httpx.Response(404, json={"error": "not found"})
        route = routes[key]
        if isinstance(route, Exception):
            raise route
        return httpx.Response(200, json=route)

    return httpx.MockTransport(handler)


@pytest.fixture
def make_validator(config):
    created = []

    def factory(routes: dict, seen: list | None = None, **kwargs) -> ApiValidator:
        validator = ApiValidator(config, transport=mock_backend(routes, seen), **kwargs)
        created.append(validator)
        return validator

    yield factory


class TestCompare:
    def test_within_tolerance_matches(self, config):
        validator = ApiValidator(config)
        result = validator.compare(100.4, 100)
        assert result.match is True
        assert result.tolerance == pytest.approx(0.4)

    def test_outside_tolerance_mismatches(self, config):
        result = ApiValidator(config).compare(105, 100)
        assert result.match is False
        assert result.tolerance == pytest.approx(5.0)

    def test_override_tolerance(self, config):
        assert ApiValidator(config).compare(105, 100, tolerance_override=5).match is True
        assert ApiValidator(config).compare(100.2, 100, tolerance_override=0.1).match is False

    def test_zero_api_value(self, config):
        validator = ApiValidator(config)
        assert validator.compare(0, 0).match is True
        assert validator.compare(0.0001, 0).match is False
        assert validator.compare(0.0001, 0).tolerance == 0.0

    def test_strings_case_insensitive(self, config):
        validator = ApiValidator(config)
        assert validator.compare("LONG", "long").match is True
        assert validator.compare("LONG", "short").match is False
        assert validator.compare("LONG", "long").tolerance is None

    def test_mixed_types_use_strict_equality(self, config):
        validator = ApiValidator(config)
        assert validator.compare("100", 100).match is False
        assert validator.compare(True, 1).match is False
        assert validator.compare(False, 0).match is False
        assert validator.compare(None, 0).match is False
        assert validator.compare(True, True).match is True
        assert validator.compare(True, 1).tolerance is None


class TestFetch:
    @pytest.mark.asyncio
    async def test_non_2xx_raises_request_failed(self, make_validator):
        validator = make_validator({})
        with pytest.raises(RequestFailed) as exc_info:
            await validator.fetch_entity("/api/crypto/BTC")
        assert exc_info.value.status == 404
        assert "404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_raises_request_timed_out(self, make_validator):
        validator = make_validator({"/api/crypto/BTC": httpx.ReadTimeout("slow")})
        with pytest.raises(RequestTimedOut):
            await validator.fetch_entity("/api/crypto/BTC")

    @pytest.mark.asyncio
    async def test_transport_error_is_status_zero(self, make_validator):
        validator = make_validator({"/api/crypto/BTC": httpx.ConnectError("refused")})
        with pytest.raises(RequestFailed) as exc_info:
            await validator.fetch_entity("/api/crypto/BTC")
        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_bearer_token_sent_when_set(self, make_validator):
        seen = []
        validator = make_validator({"/api/crypto/BTC": {"price": 1}}, seen)
        await validator.fetch_entity("/api/crypto/BTC")
        validator.set_session_token("abc123")
        await validator.fetch_entity("/api/crypto/BTC")

        assert "authorization" not in seen[0].headers
        assert seen[1].headers["authorization"] == "Bearer abc123"


class TestValidateField:
    @pytest.mark.asyncio
    async def test_asset_price_match(self, make_validator):
        validator = make_validator({"/api/crypto/BTC": {"price": 50000, "changePercent24h": 2.5}})
        result = await validator.validate_asset_price("BTC", 50100)
        assert result.match is True
        assert result.field == "BTC price"
        assert result.api_value == 50000

    @pytest.mark.asyncio
    async def test_404_becomes_failed_result(self, make_validator):
        validator = make_validator({})
        result = await validator.validate_asset_price("NOPE", 1.0)
        assert result.match is False
        assert result.api_value is None
        assert "404" in result.error

    @pytest.mark.asyncio
    async def test_missing_key_becomes_failed_result(self, make_validator):
        validator = make_validator({"/api/crypto/BTC": {"last": 1}})
        result = await validator.validate_asset_price("BTC", 1.0)
        assert result.match is False
        assert result.error

    @pytest.mark.asyncio
    async def test_24h_change_uses_category_tolerance(self, make_validator):
        validator = make_validator({"/api/crypto/ETH": {"price": 1, "changePercent24h": 10.0}})
        assert (await validator.validate_asset_24h_change("ETH", 10.005)).match is True
        assert (await validator.validate_asset_24h_change("ETH", 10.05)).match is False

    @pytest.mark.asyncio
    async def test_tolerance_table_is_configurable(self, make_validator):
        validator = make_validator(
            {"/api/signals/BTC": {"compositeScore": 70}},
            tolerances=FieldTolerances(signal_score=5.0),
        )
        assert (await validator.validate_signal_score("BTC", 73)).match is True

    @pytest.mark.asyncio
    async def test_asset_count_is_exact(self, make_validator):
        validator = make_validator({"/api/crypto/listings?limit=200": {"items": [{}, {}, {}]}})
        assert (await validator.validate_asset_count(3)).match is True
        assert (await validator.validate_asset_count(4)).match is False

    @pytest.mark.asyncio
    async def test_order_status(self, make_validator):
        validator = make_validator({"/api/trading/orders/order-12345678": {"status": "FILLED"}})
        result = await validator.validate_order_status("order-12345678", "filled")
        assert result.match is True
        assert result.field == "Order order-12 status"


class TestBatch:
    @pytest.mark.asyncio
    async def test_assets_one_failure_does_not_block_others(self, make_validator):
        validator = make_validator({
            "/api/crypto/BTC": {"price": 100, "changePercent24h": 1.0},
            "/api/crypto/ETH": {"price": 10, "changePercent24h": -2.0},
        })
        results = await validator.validate_assets([
            {"symbol": "BTC", "price": 100.5, "change24h": 1.0},
            {"symbol": "DOGE", "price": 0.1},
            {"symbol": "ETH", "price": 12},
        ])
        assert [r.field for r in results] == ["BTC price", "BTC 24h change", "DOGE price", "ETH price"]
        assert [r.match for r in results] == [True, True, False, False]
        assert results[2].error is not None

    @pytest.mark.asyncio
    async def test_position_fans_out_over_present_fields(self, make_validator):
        validator = make_validator({
            "/api/trading/positions/p1": {
                "symbol": "BTC", "side": "LONG", "size": 0.1, "entryPrice": 50000, "leverage": 2,
            },
        })
        results = await validator.validate_position("p1", {"symbol": "btc", "side": "long", "size": 0.1, "leverage": 3})
        assert {r.field: r.match for r in results} == {
            "Position symbol": True,
            "Position side": True,
            "Position size": True,
            "Leverage": False,
        }

    @pytest.mark.asyncio
    async def test_position_fetch_failure_is_single_result(self, make_validator):
        results = await make_validator({}).validate_position("missing", {"symbol": "BTC"})
        assert len(results) == 1
        assert results[0].match is False

    @pytest.mark.asyncio
    async def test_portfolio_field_missing_from_api(self, make_validator):
        validator = make_validator({"/api/trading/portfolios": {"cashBalance": 1000, "unrealizedPnl": 50}})
        results = await validator.validate_portfolio({"cashBalance": 1000, "unrealizedPnl": 50.4, "equity": 1050})
        by_field = {r.field: r for r in results}
        assert by_field["Cash balance"].match is True
        assert by_field["Unrealized P&L"].match is True
        assert by_field["Equity"].match is False
        assert "missing" in by_field["Equity"].error

    @pytest.mark.asyncio
    async def test_leaderboard_missing_rank(self, make_validator):
        validator = make_validator({"/api/trading/leaderboard?limit=100": {"entries": [{"rank": 1, "pnl": 10}]}})
        results = await validator.validate_leaderboard_entry(7, {"rank": 7, "pnl": 5})
        assert len(results) == 1
        assert results[0].match is False
        assert "Rank 7 not found" in results[0].error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"entries": None}, {"entries": [["x"]]}, {"rows": []}, [1, 2]])
    async def test_leaderboard_malformed_response_is_failed_result(self, make_validator, body):
        validator = make_validator({"/api/trading/leaderboard?limit=100": body})
        results = await validator.validate_leaderboard_entry(1, {"rank": 1, "pnl": 5})
        assert len(results) == 1
        assert results[0].match is False
        assert results[0].error

    @pytest.mark.asyncio
    async def test_portfolio_non_object_response_is_failed_result(self, make_validator):
        validator = make_validator({"/api/trading/portfolios": None})
        results = await validator.validate_portfolio({"cashBalance": 1000})
        assert [r.field for r in results] == ["Portfolio fetch"]
        assert "Expected a JSON object" in results[0].error

    @pytest.mark.asyncio
    async def test_leaderboard_entry(self, make_validator):
        validator = make_validator({
            "/api/trading/leaderboard?limit=100": {
                "entries": [{"rank": 1, "pnl": 1000, "winRate": 60, "totalTrades": 42}],
            },
        })
        results = await validator.validate_leaderboard_entry(1, {"rank": 1, "pnl": 1000, "winRate": 60, "totalTrades": 41})
        assert [r.match for r in results] == [True, True, False]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_async_context_manager_closes_client(self, config):
        async with ApiValidator(config, transport=mock_backend({})) as validator:
            pass
        assert validator._client.is_closed
