"""Tests for candidate discovery and refresh-mode symbol selection."""

from __future__ import annotations

import random

import pytest
from fakes import insert_stock, insert_tickers, iso_ago

from screener.errors import CandidateDiscoveryFailure
from screener.services import discovery


class TestNormalizeSymbols:
    def test_upper_strip_dedupe(self):
        assert discovery.normalize_symbols([" aapl", "MSFT", "aapl", "", None, "msft "]) == ["AAPL", "MSFT"]


class TestSampleCandidates:
    def test_respects_max(self):
        universe = [f"S{i}" for i in range(50)]
        picked = discovery.sample_candidates(universe, 10, random.Random(0))
        assert len(picked) == 10
        assert len(set(picked)) == 10
        assert set(picked) <= set(universe)

    def test_hard_cap(self):
        universe = [f"S{i}" for i in range(500)]
        assert len(discovery.sample_candidates(universe, 1000, random.Random(0))) == 200

    def test_small_universe(self):
        assert sorted(discovery.sample_candidates(["A", "B"], 10)) == ["A", "B"]


@pytest.mark.usefixtures("db")
class TestUniverse:
    @pytest.mark.asyncio
    async def test_exchange_filter(self):
        await insert_tickers([("AAA", "NASDAQ"), ("BBB", "NYSE"), ("CCC", "NASDAQ")])
        assert await discovery.fetch_ticker_universe("nasdaq") == ["AAA", "CCC"]
        assert await discovery.fetch_ticker_universe("ALL") == ["AAA", "BBB", "CCC"]

    @pytest.mark.asyncio
    async def test_unknown_exchange(self):
        with pytest.raises(ValueError):
            await discovery.fetch_ticker_universe("LSE")

    @pytest.mark.asyncio
    async def test_falls_back_to_cached_symbols(self):
        await insert_stock("OLD", iso_ago(100), price=1.0, volume=1.0)
        assert await discovery.discover_candidates("ALL", 10) == ["OLD"]

    @pytest.mark.asyncio
    async def test_empty_everywhere_raises(self):
        with pytest.raises(CandidateDiscoveryFailure):
            await discovery.discover_candidates()


@pytest.mark.usefixtures("db")
class TestDeltaSymbols:
    @pytest.mark.asyncio
    async def test_mixes_movers_volume_and_new_tickers(self):
        await insert_stock("VOL", iso_ago(10), price=1.0, volume=1e9, change_percent=0.0)
        await insert_stock("UP", iso_ago(10), price=1.0, volume=10.0, change_percent=50.0)
        await insert_stock("DOWN", iso_ago(10), price=1.0, volume=5.0, change_percent=-40.0)
        await insert_stock("MEH", iso_ago(10), price=1.0, volume=1.0, change_percent=0.1)
        await insert_tickers([("VOL", "NYSE"), ("FRESH", "NASDAQ")])

        picked = await discovery.get_delta_symbols(top_n=4)

        # 2 by volume, 1 gainer, 0 losers at this size, plus new listings
        assert picked[:2] == ["VOL", "UP"]
        assert "FRESH" in picked
        assert len(picked) <= 4

    @pytest.mark.asyncio
    async def test_losers_included_at_larger_size(self):
        await insert_stock("DOWN", iso_ago(10), price=1.0, volume=5.0, change_percent=-40.0)
        picked = await discovery.get_delta_symbols(top_n=10)
        assert "DOWN" in picked

    @pytest.mark.asyncio
    async def test_full_is_whole_universe(self):
        await insert_tickers([("AAA", "NASDAQ"), ("BBB", "NYSE")])
        assert await discovery.get_full_symbols() == ["AAA", "BBB"]
