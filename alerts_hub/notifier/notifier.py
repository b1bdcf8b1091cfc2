import html
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import requests
from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import InvalidToken

from ..config import Settings, format_ms_for_display, format_utc_for_display
from ..models import LineAlert, VwapAlert

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
REQUEST_TIMEOUT = 15

# Preferred exchanges for TradingView links, first match wins
TV_EXCHANGE_PRIORITY = ("BYBIT", "BINANCE")
TV_FALLBACK_EXCHANGE = "BINANCE"


def get_tradingview_link(symbol: str, exchanges: Optional[Sequence[str]] = None) -> str:
    if not exchanges:
        return f"https://www.tradingview.com/chart/?symbol={symbol}"
    best = TV_FALLBACK_EXCHANGE
    for ex in TV_EXCHANGE_PRIORITY:
        if ex in exchanges:
            best = ex
            break
    return f"https://www.tradingview.com/chart/?symbol={best}:{symbol}"


def short_symbol(symbol: str) -> str:
    return symbol.replace("USDT", "").replace("PERP", "")


def _format_line_item(i: int, alert: LineAlert) -> str:
    link = html.escape(get_tradingview_link(alert.symbol, alert.exchanges), quote=True)
    name = html.escape(alert.alert_name or "N/A")
    return f'<a href="{link}"><b>{i}. {html.escape(alert.symbol)} <i>{name}</i></b></a>'


def _format_vwap_item(i: int, alert: VwapAlert) -> str:
    symbol = alert.symbol or "N/A"
    link = html.escape(get_tradingview_link(symbol, alert.exchanges), quote=True)
    anchor = alert.anchor_time_str
    if not anchor and alert.anchor_time:
        anchor = format_ms_for_display(alert.anchor_time)
    return f'<a href="{link}"><b>{i}. {html.escape(short_symbol(symbol))}/<i>{html.escape(anchor or "N/A")}</i></b></a>'


def format_combined_report(
    line_alerts: Sequence[LineAlert],
    vwap_alerts: Sequence[VwapAlert],
    timeframe: str = "1h",
    now: Optional[datetime] = None,
) -> str:
    """HTML report with a section per non-empty alert kind, each sorted by symbol. Time shown in UTC+3."""
    sections = []
    if line_alerts:
        items = [
            _format_line_item(i, a)
            for i, a in enumerate(sorted(line_alerts, key=lambda a: a.symbol or ""), 1)
        ]
        sections.append(f"<b>✴️ LINE ALERTS ({timeframe})</b>\n" + "\n".join(items))
    if vwap_alerts:
        items = [
            _format_vwap_item(i, a)
            for i, a in enumerate(sorted(vwap_alerts, key=lambda a: a.symbol or ""), 1)
        ]
        sections.append(f"<b>💹 VWAP ALERTS ({timeframe})</b>\n" + "\n".join(items))
    report_time = format_utc_for_display(now or datetime.now(timezone.utc))
    sections.append(f"🕐 {report_time}")
    return "\n\n".join(sections)


class TelegramNotifier:
    """Sends alert reports to one Telegram chat. Without credentials, reports are only logged."""

    def __init__(self, settings: Settings, timeframe: str = "1h"):
        self.bot_token = settings.telegram_bot_token
        self.chat_id = settings.telegram_chat_id
        self.timeframe = timeframe
        self.enabled = False
        try:
            if self.bot_token and self.chat_id:
                # Bot() only rejects an empty token; a wrong one surfaces on the first send
                Bot(token=self.bot_token)
                self.enabled = True
                logger.info("Telegram bot initialized successfully")
            else:
                logger.warning("Telegram credentials not found. Alerts will be logged only.")
        except InvalidToken as e:
            logger.warning(f"Invalid Telegram token: {e}. Alerts will be logged only.")

    def send_message(self, text: str) -> bool:
        """Send text to Telegram via HTTP. Returns True on success, False on failure."""
        if not self.enabled:
            logger.info(f"Alert (Telegram not configured): {text}")
            return False
        url = TELEGRAM_API_URL.format(token=self.bot_token)
        try:
            r = requests.post(
                url,
                json={
                    "chat_id": self.chat_id,
                    "text": text,
                    "parse_mode": ParseMode.HTML,
                    "disable_web_page_preview": True,
                },
                timeout=REQUEST_TIMEOUT,
            )
            if r.status_code == 200:
                return True
            logger.error(f"Telegram send failed: HTTP {r.status_code} - {r.text[:200]}")
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send Telegram message: {e}")
            return False

    def send_combined_report(
        self, line_alerts: List[LineAlert], vwap_alerts: List[VwapAlert]
    ) -> bool:
        """One message for all triggered alerts of a run. Nothing is sent when both lists are empty."""
        if not line_alerts and not vwap_alerts:
            return False
        message = format_combined_report(line_alerts, vwap_alerts, self.timeframe)
        ok = self.send_message(message)
        if ok:
            logger.info(
                f"Report sent to Telegram: {len(line_alerts)} line, {len(vwap_alerts)} VWAP alert(s)"
            )
        elif self.enabled:
            logger.error(
                f"Report NOT sent: {len(line_alerts)} line, {len(vwap_alerts)} VWAP alert(s) (send failed)"
            )
        return ok
