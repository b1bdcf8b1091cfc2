"""Tests for the hourly check job, the cleanup job and run_job."""

from unittest.mock import patch

import pytest

from alerts_hub.config import CLEANUP_AGE_MS
from alerts_hub.jobs import JobResult, _log_snapshot_lag, run_check_job, run_cleanup_job, run_job
from alerts_hub.models import CoinMarketData, MarketSnapshot
from alerts_hub.monitor import run_once

from conftest import ANCHOR_MS, HOUR_MS, make_candle, make_line_alert, make_snapshot


def _snapshot_fetcher(snapshot):
    def fetch(settings, timeframe):
        return snapshot

    return fetch


def _coins(n):
    return lambda settings: [{"symbol": f"C{i}"} for i in range(n)]


class TestRunCheckJob:
    def test_runs_checks_and_closes_storage(self, settings, storage, notifier):
        storage.add_alert("line", "working", make_line_alert(100))
        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})

        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=_coins(1),
        )

        assert result.success
        assert result.total_coins == 1
        assert result.successful_coins == 1
        assert result.failed_coins == 0
        assert result.report.stage("line").triggered == 1
        assert len(notifier.calls) == 1
        assert storage.opened == 1 and storage.closed == 1

    def test_missing_coins_counted_as_failed(self, settings, storage, notifier):
        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=_coins(3),
        )
        assert result.failed_coins == 2
        assert any("missing for 2 coins" in e for e in result.errors)

    def test_snapshot_failure_fails_job(self, settings, storage, notifier):
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(None),
            coins_fetcher=_coins(5),
        )
        assert not result.success
        assert result.failed_coins == 5
        assert "snapshot fetch failed" in result.errors[0]
        assert storage.closed == 1

    def test_coin_list_failure_is_not_fatal(self, settings, storage, notifier):
        def broken(settings):
            raise RuntimeError("sifter down")

        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=broken,
        )
        assert result.success
        assert result.total_coins == 1
        assert any("sifter down" in e for e in result.errors)

    def test_empty_snapshot_skips_checks(self, settings, storage, notifier):
        snapshot = MarketSnapshot(coins_number=0, data=[CoinMarketData(symbol="BTCUSDT")])
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=_coins(1),
        )
        assert result.success
        assert result.report is None

    def test_checks_run_without_coins_number(self, settings, storage, notifier):
        """A snapshot with candles is checked even when coinsNumber is missing."""
        storage.add_alert("line", "working", make_line_alert(100))
        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        snapshot.coins_number = 0
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=_coins(1),
        )
        assert result.success
        assert result.report is not None
        assert result.report.stage("line").triggered == 1
        assert len(storage.partitions[("line", "triggered")]) == 1

    def test_invalid_coins_counted_as_failed(self, settings, storage, notifier):
        def broken(settings):
            raise RuntimeError("sifter down")

        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        snapshot.coins_number = 0
        snapshot.invalid_symbols = ["BADUSDT"]
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=broken,
        )
        assert result.success
        assert result.total_coins == 2
        assert result.successful_coins == 1
        assert result.failed_coins == 1
        assert any("BADUSDT" in e for e in result.errors)

    def test_stage_failure_marks_job_failed(self, settings, storage, notifier):
        storage.fail_get.add("vwap")
        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        result = run_check_job(
            settings,
            storage=storage,
            notifier=notifier,
            snapshot_fetcher=_snapshot_fetcher(snapshot),
            coins_fetcher=_coins(1),
        )
        assert not result.success
        assert any(e.startswith("vwap stage failed") for e in result.errors)


class TestRunCleanupJob:
    def test_cleans_both_kinds(self, settings, storage):
        result = run_cleanup_job(settings, storage=storage)
        assert result.success
        assert result.deleted == 3
        assert result.deleted_by_kind == {"line": 2, "vwap": 1}
        assert storage.cleaned == {"line": CLEANUP_AGE_MS, "vwap": CLEANUP_AGE_MS}
        assert storage.closed == 1

    def test_open_failure(self, settings, storage, monkeypatch):
        def refuse():
            raise ConnectionError("db down")

        monkeypatch.setattr(storage, "open", refuse)
        result = run_cleanup_job(settings, storage=storage)
        assert not result.success
        assert result.error == "db down"


class TestRunJob:
    def test_returns_result(self):
        result = JobResult(success=True, timeframe="1h", total_coins=3, successful_coins=3)
        assert run_job("1h", lambda: result) is result

    def test_failed_result_returned(self):
        result = JobResult(success=False, timeframe="1h", errors=["boom"])
        assert run_job("1h", lambda: result) is result

    def test_crash_is_reraised(self):
        def crash():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            run_job("1h", crash)


class TestMonitor:
    def test_run_once_wraps_check_job(self, settings):
        result = JobResult(success=True, timeframe="1h")
        with patch("alerts_hub.monitor.run_check_job", return_value=result) as job:
            assert run_once(settings) is result
        job.assert_called_once_with(settings, "1h")


class TestSnapshotLag:
    def test_fresh_snapshot(self):
        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        with patch("alerts_hub.config.now_ms", return_value=ANCHOR_MS + HOUR_MS + 60_000):
            assert _log_snapshot_lag(snapshot, "1h") == 0

    def test_stale_snapshot_warns(self, caplog):
        snapshot = make_snapshot({"BTCUSDT": [make_candle(90, 110, 85, 105, ANCHOR_MS)]})
        with patch("alerts_hub.config.now_ms", return_value=ANCHOR_MS + 4 * HOUR_MS + 60_000):
            assert _log_snapshot_lag(snapshot, "1h") == 3
        assert "3 candle(s) behind" in caplog.text

    def test_missing_open_time(self):
        assert _log_snapshot_lag(MarketSnapshot(), "1h") == 0
