"""
Scheduled jobs: the hourly alert check and the triggered-alert cleanup,
plus run_job() which logs a summary around either of them.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .alerts.checker import CheckReport, run_alert_checks
from .config import TIMEFRAME_MS, Settings, format_ms_for_display, get_current_candle_time
from .db import AlertStorage
from .kline_client import fetch_coins, fetch_market_snapshot
from .models import ALERT_KINDS, MarketSnapshot
from .notifier.notifier import TelegramNotifier

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    success: bool
    timeframe: str
    total_coins: int = 0
    successful_coins: int = 0
    failed_coins: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time_ms: int = 0
    report: Optional[CheckReport] = None


@dataclass
class CleanupResult:
    success: bool
    deleted: int = 0
    deleted_by_kind: dict = field(default_factory=dict)
    error: Optional[str] = None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _log_snapshot_lag(snapshot: MarketSnapshot, timeframe: str) -> int:
    """Warn when the snapshot is older than the last closed candle. Returns the lag in candles."""
    if not snapshot.open_time:
        return 0
    last_closed = get_current_candle_time(timeframe) - TIMEFRAME_MS[timeframe]
    lag = max((last_closed - snapshot.open_time) // TIMEFRAME_MS[timeframe], 0)
    if lag:
        logger.warning(
            f"[JOB {timeframe}] Snapshot is {lag} candle(s) behind "
            f"(openTime {format_ms_for_display(snapshot.open_time)})"
        )
    return lag


def run_check_job(
    settings: Settings,
    timeframe: str = "1h",
    storage: Optional[AlertStorage] = None,
    notifier: Optional[TelegramNotifier] = None,
    snapshot_fetcher: Callable = fetch_market_snapshot,
    coins_fetcher: Callable = fetch_coins,
) -> JobResult:
    """Fetch the snapshot for a timeframe and run the alert checks against it."""
    start = time.monotonic()
    errors: List[str] = []
    storage = storage or AlertStorage(settings)
    notifier = notifier or TelegramNotifier(settings, timeframe)

    total_coins = None
    try:
        total_coins = len(coins_fetcher(settings))
        logger.info(f"[JOB {timeframe}] Starting job for {total_coins} coins")
    except Exception as e:
        logger.warning(f"[JOB {timeframe}] Coin list unavailable: {e}")
        errors.append(f"Coin list fetch failed: {e}")

    try:
        storage.open()
        snapshot = snapshot_fetcher(settings, timeframe)
        if snapshot is None:
            raise RuntimeError(f"{timeframe} kline snapshot fetch failed")

        _log_snapshot_lag(snapshot, timeframe)

        successful = len([c for c in snapshot.data if c.candles])
        if total_coins is None:
            total_coins = max(snapshot.coins_number, len(snapshot.data) + len(snapshot.invalid_symbols))
        if snapshot.invalid_symbols:
            errors.append(f"Invalid kline data for: {', '.join(snapshot.invalid_symbols)}")
        failed = max(total_coins - successful, 0)
        if failed:
            errors.append(f"{timeframe} kline data missing for {failed} coins")

        report = None
        if successful:
            logger.info(f"[JOB {timeframe}] Data received. Running alert checks...")
            report = run_alert_checks(snapshot, storage, notifier, settings)
            for stage in report.stages:
                if not stage.success:
                    errors.append(f"{stage.name} stage failed: {stage.error}")
        else:
            logger.warning(f"[JOB {timeframe}] Data is empty. Alert check skipped.")

        execution_time = _elapsed_ms(start)
        logger.info(
            f"[JOB {timeframe}] Completed in {execution_time}ms | Checked {successful} coins"
        )
        return JobResult(
            success=report.success if report else True,
            timeframe=timeframe,
            total_coins=total_coins,
            successful_coins=successful,
            failed_coins=failed,
            errors=errors,
            execution_time_ms=execution_time,
            report=report,
        )
    except Exception as e:
        logger.error(f"[JOB {timeframe}] Failed: {e}")
        total = total_coins or 0
        return JobResult(
            success=False,
            timeframe=timeframe,
            total_coins=total,
            successful_coins=0,
            failed_coins=total,
            errors=[str(e)] + errors,
            execution_time_ms=_elapsed_ms(start),
        )
    finally:
        storage.close()


def run_cleanup_job(settings: Settings, storage: Optional[AlertStorage] = None) -> CleanupResult:
    """Remove triggered alerts older than settings.cleanup_age_ms."""
    start = time.monotonic()
    logger.info("[JOB Cleanup] Starting cleanup")
    storage = storage or AlertStorage(settings)
    try:
        storage.open()
        deleted = {
            kind: storage.clean_old_triggered_alerts(kind, settings.cleanup_age_ms)
            for kind in ALERT_KINDS
        }
        total = sum(deleted.values())
        logger.info(
            f"[JOB Cleanup] Done in {_elapsed_ms(start)}ms. Deleted {total} "
            f"(line: {deleted['line']}, vwap: {deleted['vwap']})"
        )
        return CleanupResult(success=True, deleted=total, deleted_by_kind=deleted)
    except Exception as e:
        logger.error(f"[JOB Cleanup] Error: {e}")
        return CleanupResult(success=False, error=str(e))
    finally:
        storage.close()


def run_job(job_name: str, job_fn: Callable[[], JobResult]) -> JobResult:
    """Run a job and log its summary. Re-raises if the job itself crashes."""
    logger.info("=" * 60)
    logger.info(f"Starting {job_name} Job")
    logger.info("=" * 60)
    try:
        result = job_fn()
    except Exception as e:
        logger.error(f"{job_name} Job crashed: {e}")
        raise
    if result.success:
        logger.info(f"{job_name} Job completed successfully")
        logger.info(f"  - Total coins: {result.total_coins}")
        logger.info(f"  - Successful: {result.successful_coins}")
        logger.info(f"  - Failed: {result.failed_coins}")
        logger.info(f"  - Execution time: {result.execution_time_ms}ms")
    else:
        logger.error(f"{job_name} Job failed")
        logger.error(f"  - Errors: {', '.join(result.errors)}")
    return result
