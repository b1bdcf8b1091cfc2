"""
PostgreSQL storage for alerts.

Each alert kind (line, vwap) has three partition tables: working, triggered and
archived. A record lives in exactly one of them; moving it is a single
transaction. The full alert document is kept as JSONB next to a few columns
used for filtering.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor, execute_values

from .config import Settings, now_ms
from .models import ALERT_KINDS, ALERT_MODELS, ALERT_STATUSES, AlertBase

logger = logging.getLogger(__name__)

_COLUMNS = ("id", "symbol", "is_active", "activation_time", "document")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS {} (
    id TEXT PRIMARY KEY,
    symbol TEXT NOT NULL DEFAULT '',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    activation_time BIGINT,
    document JSONB NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT (now() AT TIME ZONE 'utc')
)
"""


def table_name(kind: str, status: str) -> str:
    """Partition table for (kind, status), e.g. working_line_alerts."""
    if kind not in ALERT_KINDS:
        raise ValueError(f"Unknown alert kind: {kind}")
    if status not in ALERT_STATUSES:
        raise ValueError(f"Unknown alert status: {status}")
    return f"{status}_{kind}_alerts"


def _row_values(alert: AlertBase) -> tuple:
    return (
        alert.id,
        alert.symbol or "",
        alert.is_active,
        alert.activation_time,
        Json(alert.to_document()),
    )


class AlertStorage:
    """Alert partitions in PostgreSQL. Call open() before use and close() when done."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._conn = None

    def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = psycopg2.connect(**self.settings.db_config())
            logger.info(f"AlertStorage connected to {self.settings.db_host}")
        except psycopg2.Error as e:
            logger.error(f"AlertStorage: could not connect to DB: {e}")
            raise

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("AlertStorage disconnected")

    def __enter__(self) -> "AlertStorage":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def _cursor(self):
        if self._conn is None:
            raise RuntimeError("AlertStorage is not open")
        try:
            with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            self._conn.commit()
        except Exception as e:
            self._conn.rollback()
            logger.error(f"DB error: {e}")
            raise

    def check_connection(self) -> bool:
        """Check DB connectivity. Returns True if a trivial query succeeds."""
        try:
            with self._cursor() as cur:
                cur.execute("SELECT 1")
            return True
        except Exception as e:
            logger.error(f"DB check failed: {e}")
            return False

    def init_schema(self) -> None:
        """Create the six partition tables if they do not exist."""
        with self._cursor() as cur:
            for kind in ALERT_KINDS:
                for status in ALERT_STATUSES:
                    cur.execute(sql.SQL(_SCHEMA).format(sql.Identifier(table_name(kind, status))))

    def _to_models(self, kind: str, rows) -> list:
        model = ALERT_MODELS[kind]
        alerts = []
        for row in rows:
            try:
                alerts.append(model.model_validate(row["document"]))
            except ValueError as e:
                logger.warning(f"Skipping malformed {kind} alert {row.get('id')}: {e}")
        return alerts

    # --- Used by the alert checker ---

    def get_alerts(self, kind: str, status: str = "working", is_active: Optional[bool] = True) -> list:
        """Alerts in one partition. is_active=None returns all of them."""
        table = sql.Identifier(table_name(kind, status))
        with self._cursor() as cur:
            if is_active is None:
                cur.execute(sql.SQL("SELECT id, document FROM {} ORDER BY created_at").format(table))
            else:
                cur.execute(
                    sql.SQL("SELECT id, document FROM {} WHERE is_active = %s ORDER BY created_at").format(table),
                    (is_active,),
                )
            rows = cur.fetchall()
        return self._to_models(kind, rows)

    def add_alert(self, kind: str, status: str, alert: AlertBase) -> bool:
        """Insert one alert. An existing id in that partition is left untouched and False is returned."""
        try:
            table = sql.Identifier(table_name(kind, status))
            with self._cursor() as cur:
                cur.execute(
                    sql.SQL(
                        "INSERT INTO {} (id, symbol, is_active, activation_time, document) "
                        "VALUES (%s, %s, %s, %s, %s) ON CONFLICT (id) DO NOTHING"
                    ).format(table),
                    _row_values(alert),
                )
                inserted = cur.rowcount
        except Exception as e:
            logger.error(f"Could not add {kind} alert (id={alert.id}) to {status}: {e}")
            return False
        if not inserted:
            logger.warning(f"{kind} alert (id={alert.id}) already exists in {status}")
            return False
        return True

    def move_alert(self, kind: str, alert_id: str, from_status: str, to_status: str) -> bool:
        """
        Relocate one alert between partitions in a single transaction.
        Returns False if the id is not in from_status; DB errors (including an
        id clash in to_status) roll back and are re-raised.
        """
        src = sql.Identifier(table_name(kind, from_status))
        dst = sql.Identifier(table_name(kind, to_status))
        with self._cursor() as cur:
            cur.execute(
                sql.SQL(
                    "DELETE FROM {} WHERE id = %s "
                    "RETURNING id, symbol, is_active, activation_time, document"
                ).format(src),
                (alert_id,),
            )
            row = cur.fetchone()
            if row is None:
                return False
            cur.execute(
                sql.SQL(
                    "INSERT INTO {} (id, symbol, is_active, activation_time, document) "
                    "VALUES (%s, %s, %s, %s, %s)"
                ).format(dst),
                tuple(Json(row[c]) if c == "document" else row[c] for c in _COLUMNS),
            )
        logger.info(f"Moved {kind} alert {alert_id}: {from_status} -> {to_status}")
        return True

    def clean_old_triggered_alerts(self, kind: str, max_age_ms: int) -> int:
        """Delete triggered alerts activated more than max_age_ms ago. Returns the count removed."""
        cutoff = now_ms() - max_age_ms
        table = sql.Identifier(table_name(kind, "triggered"))
        try:
            with self._cursor() as cur:
                cur.execute(
                    sql.SQL("DELETE FROM {} WHERE activation_time < %s").format(table),
                    (cutoff,),
                )
                return cur.rowcount
        except Exception as e:
            logger.error(f"Could not clean triggered {kind} alerts: {e}")
            return 0

    # --- Working alerts CRUD (API layer) ---

    def get_working_alerts(self, kind: str) -> list:
        return self.get_alerts(kind, "working", is_active=None)

    def add_working_alert(self, kind: str, alert: AlertBase) -> bool:
        if not alert.id:
            logger.error(f"{kind} alert without id rejected")
            return False
        return self.add_alert(kind, "working", alert)

    def add_working_alerts(self, kind: str, alerts: Iterable[AlertBase]) -> bool:
        """Bulk insert; ids already present are ignored."""
        values = [_row_values(a) for a in alerts]
        if not values:
            return True
        table = sql.Identifier(table_name(kind, "working"))
        try:
            with self._cursor() as cur:
                execute_values(
                    cur,
                    sql.SQL(
                        "INSERT INTO {} (id, symbol, is_active, activation_time, document) "
                        "VALUES %s ON CONFLICT (id) DO NOTHING"
                    ).format(table),
                    values,
                )
            return True
        except Exception as e:
            logger.error(f"Could not add {kind} alerts: {e}")
            return False

    def remove_working_alert(self, kind: str, alert_id: str) -> bool:
        return self.remove_working_alerts_by_ids(kind, [alert_id]) > 0

    def remove_working_alerts_by_ids(self, kind: str, ids: List[str]) -> int:
        if not ids:
            return 0
        table = sql.Identifier(table_name(kind, "working"))
        try:
            with self._cursor() as cur:
                cur.execute(sql.SQL("DELETE FROM {} WHERE id = ANY(%s)").format(table), (list(ids),))
                return cur.rowcount
        except Exception as e:
            logger.error(f"Could not remove {kind} alerts {ids}: {e}")
            return 0

    def remove_all_alerts(self, kind: str, status: str) -> int:
        table = sql.Identifier(table_name(kind, status))
        try:
            with self._cursor() as cur:
                cur.execute(sql.SQL("DELETE FROM {}").format(table))
                return cur.rowcount
        except Exception as e:
            logger.error(f"Could not clear {status} {kind} alerts: {e}")
            return 0

    def get_triggered_alerts(self, kind: str) -> list:
        return self.get_alerts(kind, "triggered", is_active=None)
