import logging
import time
from typing import Optional

from .config import RETRY_INTERVAL, CLEANUP_INTERVAL, Settings, seconds_until_next_check
from .db import AlertStorage
from .jobs import run_check_job, run_cleanup_job, run_job

logger = logging.getLogger(__name__)


def run_once(settings: Settings, timeframe: str = "1h"):
    """One hourly pass: fetch snapshot, check alerts, report."""
    return run_job(
        f"{timeframe} Alert Check",
        lambda: run_check_job(settings, timeframe),
    )


def main(settings: Optional[Settings] = None):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    settings = settings or Settings.from_env()
    timeframe = settings.timeframes[0]

    logger.info("Starting alerts hub...")
    logger.info(f"Timeframe: {timeframe}. Check runs {settings.check_delay_after_close}s after each close.")
    logger.info(f"Kline service: {settings.kline_fetcher_url or '?'}")
    logger.info(f"DB host: {settings.db_host}")

    with AlertStorage(settings) as storage:
        if not storage.check_connection():
            logger.error("Database connection failed. Check DB_* env vars.")
            return
        storage.init_schema()

    last_cleanup = 0.0
    while True:
        try:
            wait = seconds_until_next_check(timeframe, settings.check_delay_after_close)
            logger.info(f"Next check in {int(wait)}s")
            time.sleep(wait)
            run_once(settings, timeframe)
            if time.time() - last_cleanup >= CLEANUP_INTERVAL:
                last_cleanup = time.time()
                run_cleanup_job(settings)
        except KeyboardInterrupt:
            logger.info("Service stopped by user")
            break
        except Exception as e:
            logger.error(f"Unexpected error: {e}")
            logger.info(f"Retrying in {RETRY_INTERVAL}s...")
            time.sleep(RETRY_INTERVAL)


if __name__ == "__main__":
    main()
