"""SQLite audit store for metric snapshots, alerts, decision executions and workflow runs."""
import json
import sqlite3
import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

logger = logging.getLogger("opswatch.db")


class AuditStore:
    def __init__(self, db_path="data/opswatch.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.Lock()

    def connect(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        return self

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS metric_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                metric_id TEXT NOT NULL,
                value REAL NOT NULL,
                trend TEXT,
                recorded_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_metric
                ON metric_snapshots(metric_id, recorded_at);

            CREATE TABLE IF NOT EXISTS alert_records (
                id TEXT PRIMARY KEY,
                severity TEXT NOT NULL,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                entity_id TEXT,
                status TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_alerts_created
                ON alert_records(created_at);

            CREATE TABLE IF NOT EXISTS decision_executions (
                id TEXT PRIMARY KEY,
                rule_id TEXT NOT NULL,
                outcome TEXT NOT NULL,
                impact REAL,
                payload TEXT NOT NULL,
                triggered_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                state TEXT NOT NULL,
                payload TEXT NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT
            );
        """)
        self.conn.commit()

    def _write(self, sql, params):
        with self._lock:
            self.conn.execute(sql, params)
            self.conn.commit()

    # --- Metric Snapshots ---

    def save_metric_snapshot(self, metric):
        self._write("""
            INSERT INTO metric_snapshots (metric_id, value, trend, recorded_at)
            VALUES (?, ?, ?, ?)
        """, (metric.id, metric.current_value, metric.trend.direction.value,
              metric.last_updated.isoformat()))

    def get_metric_history(self, metric_id, limit=100):
        rows = self.conn.execute("""
            SELECT recorded_at, value FROM metric_snapshots
            WHERE metric_id = ? ORDER BY recorded_at DESC LIMIT ?
        """, (metric_id, limit)).fetchall()
        return [(r["recorded_at"], r["value"]) for r in reversed(rows)]

    # --- Alerts ---

    def save_alert(self, alert):
        """Insert or update an alert record (one row per alert id)."""
        if alert.expired:
            status = "expired"
        elif alert.resolution.resolved:
            status = "resolved"
        elif alert.acknowledgement.acknowledged:
            status = "acknowledged"
        else:
            status = "open"
        self._write("""
            INSERT OR REPLACE INTO alert_records
            (id, severity, type, title, entity_id, status, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            alert.id, alert.severity.value, alert.kind.value, alert.title,
            alert.source.entity_id, status, json.dumps(alert.to_dict()),
            alert.created_at.isoformat(), alert.updated_at.isoformat(),
        ))

    def get_recent_alerts(self, limit=50):
        rows = self.conn.execute("""
            SELECT id, severity, type, title, entity_id, status, created_at, updated_at
            FROM alert_records ORDER BY created_at DESC LIMIT ?
        """, (limit,)).fetchall()
        return [dict(r) for r in rows]

    def get_alert(self, alert_id):
        row = self.conn.execute(
            "SELECT payload FROM alert_records WHERE id = ?", (alert_id,)
        ).fetchone()
        return json.loads(row["payload"]) if row else None

    def get_alert_stats(self, days=30):
        rows = self.conn.execute("""
            SELECT severity, COUNT(*) as count
            FROM alert_records
            WHERE created_at >= ?
            GROUP BY severity
        """, (_days_ago(days),)).fetchall()
        return {r["severity"]: r["count"] for r in rows}

    # --- Decision Executions ---

    def save_execution(self, execution):
        self._write("""
            INSERT OR REPLACE INTO decision_executions
            (id, rule_id, outcome, impact, payload, triggered_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            execution.id, execution.rule_id, execution.outcome.value,
            execution.impact.overall, json.dumps(execution.to_dict(), default=str),
            execution.triggered_at.isoformat(),
        ))

    def get_recent_executions(self, limit=20):
        rows = self.conn.execute("""
            SELECT id, rule_id, outcome, impact, triggered_at
            FROM decision_executions ORDER BY triggered_at DESC LIMIT ?
        """, (limit,)).fetchall()
        return [dict(r) for r in rows]

    # --- Workflow Runs ---

    def save_workflow_run(self, run):
        self._write("""
            INSERT OR REPLACE INTO workflow_runs
            (id, workflow_id, state, payload, started_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            run.id, run.workflow_id, run.state.value, json.dumps(run.to_dict(), default=str),
            run.started_at.isoformat(),
            run.finished_at.isoformat() if run.finished_at else None,
        ))

    def get_workflow_runs(self, workflow_id=None, limit=50):
        query = "SELECT id, workflow_id, state, started_at, finished_at FROM workflow_runs WHERE 1=1"
        params = []
        if workflow_id:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        query += " ORDER BY started_at DESC LIMIT ?"
        params.append(limit)
        rows = self.conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]


def _days_ago(days):
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
