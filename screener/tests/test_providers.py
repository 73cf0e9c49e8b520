"""Tests for provider adapters: parsing, error mapping, breaker bookkeeping.

Every adapter is driven through ``httpx.MockTransport`` so the real
request-building and response-parsing code runs without the network.
"""

from __future__ import annotations

import httpx
import pytest

from screener.providers import build_providers
from screener.providers.base import percent_change, positive, relative_volume, safe_num
from screener.providers.finnhub import FinnhubProvider
from screener.providers.fmp import FmpProvider
from screener.providers.twelve_data import TwelveDataProvider
from screener.providers.yahoo import YahooProvider
from screener.services.provider_state import ProviderRegistry, ProviderState
from screener.services.rate_limiter import SlidingWindowRateLimiter


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://test")


def _json(payload, status: int = 200, headers: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload, headers=headers)
    return handler


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_safe_num(self):
        assert safe_num("1.5") == 1.5
        assert safe_num(None) is None
        assert safe_num("n/a") is None
        assert safe_num(float("nan")) is None
        assert safe_num(True) is None

    def test_positive_treats_zero_as_unknown(self):
        assert positive(0) is None
        assert positive(-3) is None
        assert positive("4") == 4.0

    def test_percent_change_prefers_computed(self):
        assert percent_change(110.0, 100.0, "3.0") == 10.0
        assert percent_change(None, 100.0, "3.0") == 3.0
        assert percent_change(110.0, 0, None) is None

    def test_relative_volume(self):
        assert relative_volume(300.0, 100.0) == 3.0
        assert relative_volume(300.0, 0.0) is None
        assert relative_volume(None, 100.0) is None


# ---------------------------------------------------------------------------
# Yahoo
# ---------------------------------------------------------------------------


YAHOO_PAYLOAD = {
    "quoteResponse": {
        "result": [
            {
                "symbol": "AAPL",
                "longName": "Apple Inc.",
                "regularMarketPrice": 110.0,
                "regularMarketPreviousClose": 100.0,
                "regularMarketVolume": 5_000_000,
                "averageDailyVolume10Day": 2_500_000,
                "marketCap": 3e12,
                "floatShares": 1.5e10,
            },
            {"symbol": "DEAD", "regularMarketPrice": 0},
        ],
        "error": None,
    }
}


class TestYahooProvider:
    @pytest.mark.asyncio
    async def test_parses_batch(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["symbols"] = request.url.params["symbols"]
            return httpx.Response(200, json=YAHOO_PAYLOAD)

        provider = YahooProvider(ProviderState(name="yahoo"), client=_client(handler))
        results = await provider.fetch_batch(["AAPL", "DEAD"])

        assert seen["symbols"] == "AAPL,DEAD"
        aapl = results["AAPL"]
        assert aapl["price"] == 110.0
        assert aapl["change_percent"] == 10.0
        assert aapl["relative_volume"] == 2.0
        assert aapl["market_cap"] == 3e12
        assert aapl["shares_float"] == 1.5e10
        assert aapl["name"] == "Apple Inc."
        assert results["DEAD"]["price"] is None

    @pytest.mark.asyncio
    async def test_http_error_returns_empty_and_counts_failure(self):
        state = ProviderState(name="yahoo")
        provider = YahooProvider(state, client=_client(_json({}, status=503)))
        assert await provider.fetch_batch(["AAPL"]) == {}
        assert state.failures == 1

    @pytest.mark.asyncio
    async def test_malformed_payload_counts_failure(self):
        state = ProviderState(name="yahoo")
        provider = YahooProvider(state, client=_client(_json({"unexpected": True})))
        assert await provider.fetch_batch(["AAPL"]) == {}
        assert state.failures == 1

    @pytest.mark.asyncio
    async def test_network_error_counts_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        state = ProviderState(name="yahoo")
        provider = YahooProvider(state, client=_client(handler))
        assert await provider.fetch_batch(["AAPL"]) == {}
        assert state.failures == 1

    @pytest.mark.asyncio
    async def test_success_resets_failures(self):
        state = ProviderState(name="yahoo")
        state.failures = 5
        provider = YahooProvider(state, client=_client(_json(YAHOO_PAYLOAD)))
        await provider.fetch_batch(["AAPL"])
        assert state.failures == 0
        assert state.total_calls == 1

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_call(self):
        state = ProviderState(name="yahoo")
        provider = YahooProvider(state, client=_client(_json(YAHOO_PAYLOAD)))
        assert await provider.fetch_batch([]) == {}
        assert state.total_calls == 0


# ---------------------------------------------------------------------------
# Twelve Data
# ---------------------------------------------------------------------------


class TestTwelveDataProvider:
    @pytest.mark.asyncio
    async def test_multi_symbol_nested_response(self):
        payload = {
            "AAPL": {"close": "110", "previous_close": "100", "volume": "900", "average_volume": "300", "name": "Apple"},
            "BAD": {"code": 400, "message": "symbol not found", "status": "error"},
        }
        provider = TwelveDataProvider(
            ProviderState(name="twelve_data"), api_key="k", client=_client(_json(payload)),
        )
        results = await provider.fetch_batch(["AAPL", "BAD", "MISSING"])
        assert set(results) == {"AAPL"}
        assert results["AAPL"]["price"] == 110.0
        assert results["AAPL"]["change_percent"] == 10.0
        assert results["AAPL"]["relative_volume"] == 3.0

    @pytest.mark.asyncio
    async def test_single_symbol_flat_response(self):
        payload = {"close": "5", "percent_change": "-1.5", "volume": "50"}
        provider = TwelveDataProvider(
            ProviderState(name="twelve_data"), api_key="k", client=_client(_json(payload)),
        )
        results = await provider.fetch_batch(["BBB"])
        assert results["BBB"]["price"] == 5.0
        assert results["BBB"]["change_percent"] == -1.5

    @pytest.mark.asyncio
    async def test_credit_exhaustion_is_failure(self):
        state = ProviderState(name="twelve_data")
        payload = {"code": 429, "message": "run out of API credits", "status": "error"}
        provider = TwelveDataProvider(state, api_key="k", client=_client(_json(payload)))
        assert await provider.fetch_batch(["AAPL", "MSFT"]) == {}
        assert state.failures == 1

    @pytest.mark.asyncio
    async def test_single_symbol_auth_error_trips_breaker(self):
        state = ProviderState(name="twelve_data", threshold=3)
        payload = {"code": 401, "message": "invalid api key", "status": "error"}
        provider = TwelveDataProvider(state, api_key="k", client=_client(_json(payload)))
        for _ in range(3):
            assert await provider.fetch_batch(["AAPL"]) == {}
        assert state.failures == 3
        assert state.is_open

    @pytest.mark.asyncio
    async def test_single_symbol_not_found_is_no_data(self):
        state = ProviderState(name="twelve_data")
        state.failures = 2
        payload = {"code": 404, "message": "symbol not found", "status": "error"}
        provider = TwelveDataProvider(state, api_key="k", client=_client(_json(payload)))
        assert await provider.fetch_batch(["NOPE"]) == {}
        assert state.failures == 0

    def test_unavailable_without_key(self):
        provider = TwelveDataProvider(ProviderState(name="twelve_data"), api_key="")
        assert not provider.is_available()


# ---------------------------------------------------------------------------
# Finnhub
# ---------------------------------------------------------------------------


def _finnhub_handler(request: httpx.Request) -> httpx.Response:
    assert request.url.params["token"] == "k"
    if request.url.path.endswith("/quote"):
        return httpx.Response(200, json={"c": 20.0, "pc": 16.0, "dp": 25.0, "v": 3_000_000})
    if request.url.path.endswith("/stock/metric"):
        return httpx.Response(200, json={"metric": {"10DayAverageTradingVolume": 1.5}})
    if request.url.path.endswith("/stock/profile2"):
        return httpx.Response(
            200, json={"name": "Foo Corp", "marketCapitalization": 2500, "shareOutstanding": 120},
        )
    return httpx.Response(404)


class TestFinnhubProvider:
    @pytest.mark.asyncio
    async def test_scales_million_units(self):
        provider = FinnhubProvider(
            ProviderState(name="finnhub"), api_key="k", client=_client(_finnhub_handler),
        )
        quote = await provider.fetch_one("FOO")
        assert quote["price"] == 20.0
        assert quote["change_percent"] == 25.0
        assert quote["relative_volume"] == 2.0
        assert quote["market_cap"] == 2.5e9
        assert quote["shares_float"] == 1.2e8
        assert quote["name"] == "Foo Corp"

    @pytest.mark.asyncio
    async def test_secondary_endpoint_failure_is_tolerated(self):
        def handler(request):
            if request.url.path.endswith("/quote"):
                return httpx.Response(200, json={"c": 20.0, "pc": 20.0, "v": 10})
            return httpx.Response(500)

        state = ProviderState(name="finnhub")
        provider = FinnhubProvider(state, api_key="k", client=_client(handler))
        quote = await provider.fetch_one("FOO")
        assert quote["price"] == 20.0
        assert quote["market_cap"] is None
        assert state.failures == 0

    @pytest.mark.asyncio
    async def test_zero_price_is_no_data(self):
        def handler(request):
            return httpx.Response(200, json={"c": 0, "pc": 0})

        provider = FinnhubProvider(ProviderState(name="finnhub"), api_key="k", client=_client(handler))
        assert await provider.fetch_one("NOPE") is None

    @pytest.mark.asyncio
    async def test_persistent_429_becomes_failure(self):
        async def no_sleep(_):
            return None

        state = ProviderState(name="finnhub")
        limiter = SlidingWindowRateLimiter(state, 100, max_retries=1, sleep=no_sleep)
        provider = FinnhubProvider(
            state, api_key="k",
            client=_client(_json({}, status=429, headers={"Retry-After": "1"})),
            rate_limiter=limiter,
        )
        assert await provider.fetch_one("FOO") is None
        assert state.failures == 1


# ---------------------------------------------------------------------------
# FMP
# ---------------------------------------------------------------------------


class TestFmpProvider:
    @pytest.mark.asyncio
    async def test_parses_profiles(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, json=[
                {"symbol": "AAPL", "companyName": "Apple Inc.", "mktCap": 3e12, "floatShares": 1.5e10},
                {"symbol": "MSFT", "companyName": "Microsoft", "mktCap": 0},
            ])

        provider = FmpProvider(ProviderState(name="fmp"), api_key="k", client=_client(handler))
        results = await provider.fetch_batch(["AAPL", "MSFT"])
        assert seen["path"].endswith("/profile/AAPL,MSFT")
        assert results["AAPL"]["market_cap"] == 3e12
        assert results["AAPL"]["shares_float"] == 1.5e10
        assert results["MSFT"]["market_cap"] is None
        assert "price" not in results["AAPL"]

    @pytest.mark.asyncio
    async def test_error_object_is_malformed(self):
        state = ProviderState(name="fmp")
        provider = FmpProvider(
            state, api_key="k", client=_client(_json({"Error Message": "Invalid API KEY"})),
        )
        assert await provider.fetch_batch(["AAPL"]) == {}
        assert state.failures == 1


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestBuildProviders:
    @pytest.mark.asyncio
    async def test_order_and_shared_state(self):
        registry = ProviderRegistry()
        providers = build_providers(registry, ("yahoo", "fmp"))
        try:
            assert [p.name for p in providers] == ["yahoo", "fmp"]
            assert providers[0].state is registry.state("yahoo")
            assert providers[1].kind == "fundamentals"
        finally:
            for p in providers:
                await p.close()

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            build_providers(ProviderRegistry(), ("bloomberg",))
