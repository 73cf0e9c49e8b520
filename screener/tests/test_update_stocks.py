"""Tests for the refresh job, market-hours gate and scheduler wiring."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from fakes import FakeBatchProvider, insert_stock, insert_tickers, iso_ago, read_stocks

from screener.config import PipelineSettings
from screener.jobs import update_stocks
from screener.jobs.scheduler import create_scheduler
from screener.jobs.update_stocks import is_market_open, resolve_symbols, run_update, scheduled_delta_update
from screener.services.enrichment import EnrichmentPipeline
from screener.services.provider_state import ProviderRegistry

_ET = ZoneInfo("US/Eastern")


def _pipeline(data: dict[str, dict]) -> tuple[EnrichmentPipeline, FakeBatchProvider]:
    registry = ProviderRegistry()
    provider = FakeBatchProvider("yahoo", data, state=registry.state("yahoo"))
    settings = PipelineSettings(batch_throttle_seconds=0)
    return EnrichmentPipeline([provider], registry, settings), provider


# ---------------------------------------------------------------------------
# is_market_open
# ---------------------------------------------------------------------------


class TestIsMarketOpen:
    def test_us_during_hours(self):
        assert is_market_open("US", datetime(2025, 1, 6, 10, 0, tzinfo=_ET))

    def test_us_at_open(self):
        assert is_market_open("US", datetime(2025, 1, 6, 9, 30, tzinfo=_ET))

    def test_us_before_open(self):
        assert not is_market_open("US", datetime(2025, 1, 6, 9, 29, tzinfo=_ET))

    def test_us_after_close(self):
        assert not is_market_open("US", datetime(2025, 1, 6, 16, 1, tzinfo=_ET))

    def test_weekend(self):
        assert not is_market_open("US", datetime(2025, 1, 4, 12, 0, tzinfo=_ET))

    def test_unknown_market_returns_false(self):
        assert not is_market_open("MARS", datetime(2025, 1, 6, 12, 0, tzinfo=_ET))


# ---------------------------------------------------------------------------
# run_update
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("db")
class TestRunUpdate:
    @pytest.mark.asyncio
    async def test_manual_mode_forces_refresh(self):
        await insert_stock("AAA", iso_ago(5), price=1.0, volume=1.0)
        pipeline, provider = _pipeline({"AAA": {"price": 2.0, "volume": 2.0}})

        summary = await run_update(pipeline, mode="manual", symbols=["aaa", "ZZZ"])

        assert provider.requested == ["AAA", "ZZZ"]
        assert summary["success"] is True
        assert summary["mode"] == "manual"
        assert summary["requested"] == 2
        assert summary["updated"] == 1
        assert summary["failed"] == 1
        assert summary["stats"]["batches_processed"] == 1
        assert summary["provider_status"]["yahoo"]["failures"] == 0
        assert (await read_stocks())["AAA"]["price"] == 2.0

    @pytest.mark.asyncio
    async def test_full_mode_uses_universe(self):
        await insert_tickers([("AAA", "NASDAQ"), ("BBB", "NYSE")])
        pipeline, provider = _pipeline({"AAA": {"price": 2.0, "volume": 2.0}})
        summary = await run_update(pipeline, mode="full")
        assert provider.requested == ["AAA", "BBB"]
        assert summary["updated"] == 1

    @pytest.mark.asyncio
    async def test_nothing_to_refresh(self):
        pipeline, provider = _pipeline({})
        summary = await run_update(pipeline, mode="delta")
        assert summary["requested"] == 0
        assert summary["success"] is True
        assert provider.requested == []

    @pytest.mark.asyncio
    async def test_all_failed_is_not_success(self):
        pipeline, _ = _pipeline({})
        summary = await run_update(pipeline, mode="manual", symbols=["AAA"])
        assert summary["success"] is False

    @pytest.mark.asyncio
    async def test_unknown_mode(self):
        with pytest.raises(ValueError):
            await resolve_symbols("weekly")


class TestScheduledDeltaUpdate:
    @pytest.mark.asyncio
    async def test_skips_outside_market_hours(self, monkeypatch):
        fixed_time = datetime(2025, 1, 6, 20, 0, tzinfo=_ET)
        monkeypatch.setattr(
            "screener.jobs.update_stocks.datetime",
            type("MockDatetime", (), {"now": staticmethod(lambda tz: fixed_time), "strptime": datetime.strptime})(),
        )
        mock_run = AsyncMock()
        monkeypatch.setattr(update_stocks, "run_update", mock_run)

        await scheduled_delta_update(pipeline=object())
        mock_run.assert_not_called()

    @pytest.mark.asyncio
    async def test_runs_delta_during_hours(self, monkeypatch):
        fixed_time = datetime(2025, 1, 6, 11, 0, tzinfo=_ET)
        monkeypatch.setattr(
            "screener.jobs.update_stocks.datetime",
            type("MockDatetime", (), {"now": staticmethod(lambda tz: fixed_time), "strptime": datetime.strptime})(),
        )
        mock_run = AsyncMock()
        monkeypatch.setattr(update_stocks, "run_update", mock_run)
        sentinel = object()

        await scheduled_delta_update(pipeline=sentinel)
        mock_run.assert_awaited_once_with(sentinel, mode="delta")


class TestScheduler:
    def test_delta_job_registered(self):
        scheduler = create_scheduler(pipeline=object(), interval_minutes=15)
        [job] = scheduler.get_jobs()
        assert job.id == "delta_update"
        assert job.kwargs["pipeline"] is not None
