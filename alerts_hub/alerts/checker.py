"""
Runs one alert-check pass over a market snapshot:
line alerts -> store triggered, VWAP alerts -> store triggered, one combined report.
Each stage is isolated; a failure is logged and recorded in the returned report.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import DEFAULT_QUOTE_ASSET, Settings
from ..models import LineAlert, MarketSnapshot, VwapAlert
from .rules import KlinesMap, check_line_alerts, check_vwap_alerts

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    name: str
    success: bool = True
    checked: int = 0
    triggered: int = 0
    stored: int = 0
    error: Optional[str] = None


@dataclass
class CheckReport:
    """Outcome of one pass. `skipped` means the snapshot had no usable candles."""

    timeframe: str
    skipped: bool = False
    stages: List[StageResult] = field(default_factory=list)
    line_alerts: List[LineAlert] = field(default_factory=list)
    vwap_alerts: List[VwapAlert] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(s.success for s in self.stages)

    def stage(self, name: str) -> Optional[StageResult]:
        for s in self.stages:
            if s.name == name:
                return s
        return None


def build_klines_map(snapshot: MarketSnapshot) -> KlinesMap:
    """symbol -> candles for every entry with a symbol and at least one candle. Last entry wins."""
    klines_map: KlinesMap = {}
    for coin in snapshot.data:
        if coin.symbol and coin.candles:
            klines_map[coin.symbol] = coin.candles
    return klines_map


def _run_kind(kind, checker, klines_map, storage, quote_asset) -> tuple:
    stage = StageResult(name=kind)
    triggered = []
    try:
        alerts = storage.get_alerts(kind, "working", is_active=True)
        stage.checked = len(alerts)
        if alerts:
            triggered = checker(klines_map, alerts, quote_asset)
            stage.triggered = len(triggered)
            if triggered:
                logger.info(f"[ALERT_CHECKER] {len(triggered)} {kind} alert(s) triggered.")
                for alert in triggered:
                    if storage.add_alert(kind, "triggered", alert):
                        stage.stored += 1
                if stage.stored < len(triggered):
                    logger.warning(
                        f"[ALERT_CHECKER] Stored {stage.stored}/{len(triggered)} triggered {kind} alert(s)"
                    )
            else:
                logger.info(f"[ALERT_CHECKER] No {kind} alert matches.")
    except Exception as e:
        logger.error(f"[ALERT_CHECKER] Error checking {kind} alerts: {e}")
        stage.success = False
        stage.error = str(e)
    return stage, triggered


def run_alert_checks(
    snapshot: MarketSnapshot,
    storage,
    notifier,
    settings: Optional[Settings] = None,
) -> CheckReport:
    """
    Check all working, active alerts against the snapshot.

    storage needs get_alerts(kind, status, is_active) and add_alert(kind, status, alert);
    notifier needs send_combined_report(line_alerts, vwap_alerts). Neither is opened
    or closed here.
    """
    quote_asset = settings.quote_asset if settings else DEFAULT_QUOTE_ASSET
    report = CheckReport(timeframe=snapshot.timeframe)
    logger.info(f"[ALERT_CHECKER] Checking alerts for {snapshot.timeframe}...")

    klines_map = build_klines_map(snapshot)
    if not klines_map:
        logger.warning("[ALERT_CHECKER] Kline data is empty. Alert check skipped.")
        report.skipped = True
        return report

    line_stage, report.line_alerts = _run_kind(
        "line", check_line_alerts, klines_map, storage, quote_asset
    )
    report.stages.append(line_stage)

    vwap_stage, report.vwap_alerts = _run_kind(
        "vwap", check_vwap_alerts, klines_map, storage, quote_asset
    )
    report.stages.append(vwap_stage)

    report_stage = StageResult(name="report")
    if report.line_alerts or report.vwap_alerts:
        try:
            notifier.send_combined_report(report.line_alerts, report.vwap_alerts)
        except Exception as e:
            logger.error(f"[ALERT_CHECKER] Error sending report: {e}")
            report_stage.success = False
            report_stage.error = str(e)
    report.stages.append(report_stage)
    return report
