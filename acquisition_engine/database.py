"""Database manager for the acquisition analysis engine."""

import sqlite3
import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Any

from .errors import RecordStoreError
from .models import BusinessRecord, CompositeAssessment, DomainKind


RUN_STATUSES = ("pending", "processing", "completed", "failed")


class DatabaseManager:
    """Manages SQLite storage for businesses, assessments and analysis runs."""

    def __init__(self, db_path: str = "acquisition_analysis.db"):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections; store failures surface as RecordStoreError."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise RecordStoreError(f"Cannot open record store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RecordStoreError(f"Record store operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize_database(self):
        """Create database schema if it doesn't exist."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            # Candidate businesses from the upstream discovery step
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS businesses (
                    business_id TEXT PRIMARY KEY,
                    business_name TEXT NOT NULL,
                    sector TEXT,
                    location TEXT,
                    asking_price REAL NOT NULL DEFAULT 0,
                    annual_revenue REAL NOT NULL DEFAULT 0,
                    annual_net_profit REAL NOT NULL DEFAULT 0,
                    description TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Fused assessments; a re-analysis inserts a new row
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS assessments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    assessment_id TEXT NOT NULL UNIQUE,
                    business_id TEXT NOT NULL,
                    composite_score REAL NOT NULL,
                    cap_rate REAL NOT NULL,
                    payback_years REAL NOT NULL,
                    ownership_model TEXT,
                    automation_opportunity_score REAL,
                    resilience_factors TEXT,
                    confidence_level TEXT,
                    fallback_count INTEGER NOT NULL DEFAULT 0,
                    confidence TEXT,
                    financial TEXT NOT NULL,
                    strategic TEXT NOT NULL,
                    market TEXT NOT NULL,
                    risk TEXT NOT NULL,
                    investment_thesis TEXT NOT NULL,
                    executive_summary TEXT NOT NULL,
                    narrative TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(business_id) REFERENCES businesses(business_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS analysis_runs (
                    id TEXT PRIMARY KEY,
                    action TEXT NOT NULL,
                    status TEXT NOT NULL CHECK(status IN ('pending', 'processing', 'completed', 'failed')),
                    options TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    businesses_processed INTEGER NOT NULL DEFAULT 0,
                    businesses_added INTEGER NOT NULL DEFAULT 0,
                    businesses_updated INTEGER NOT NULL DEFAULT 0,
                    execution_time_seconds REAL,
                    error_message TEXT
                )
            """)

            # Columns added after the first schema version
            self._ensure_column(cursor, "assessments", "automation_opportunity_score", "REAL")
            self._ensure_column(cursor, "assessments", "resilience_factors", "TEXT")

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_assessments_business
                ON assessments(business_id, id DESC)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started
                ON analysis_runs(started_at DESC)
            """)

    def _ensure_column(self, cursor: sqlite3.Cursor, table_name: str, column_name: str, column_def: str):
        """Add a column if it does not already exist."""
        cursor.execute(f"PRAGMA table_info({table_name})")
        existing = {row[1] for row in cursor.fetchall()}
        if column_name not in existing:
            cursor.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_def}")

    def _deserialize_json_fields(self, record: Dict[str, Any], fields: List[str]):
        """Best-effort JSON decoding for selected record fields."""
        for field in fields:
            value = record.get(field)
            if value is None or isinstance(value, (dict, list)):
                continue
            try:
                record[field] = json.loads(value)
            except (json.JSONDecodeError, TypeError):
                # Keep original value when not valid JSON
                continue

    def _row_to_business(self, row: sqlite3.Row) -> BusinessRecord:
        data = dict(row)
        data.pop("created_at", None)
        data.pop("updated_at", None)
        data["sector"] = data.get("sector") or ""
        data["location"] = data.get("location") or ""
        data["description"] = data.get("description") or ""
        data["is_active"] = bool(data.get("is_active"))
        return BusinessRecord(**data)

    # ─── Business Methods ──────────────────────────────────────────

    def upsert_business(self, record: BusinessRecord) -> bool:
        """
        Insert or replace a business record.

        Returns:
            True if the business was new, False if it already existed
        """
        now = datetime.utcnow().isoformat()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT business_id FROM businesses WHERE business_id = ?", (record.business_id,))
            existed = cursor.fetchone() is not None

            cursor.execute("""
                INSERT INTO businesses (
                    business_id, business_name, sector, location, asking_price,
                    annual_revenue, annual_net_profit, description, is_active,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(business_id) DO UPDATE SET
                    business_name = excluded.business_name,
                    sector = excluded.sector,
                    location = excluded.location,
                    asking_price = excluded.asking_price,
                    annual_revenue = excluded.annual_revenue,
                    annual_net_profit = excluded.annual_net_profit,
                    description = excluded.description,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
            """, (
                record.business_id,
                record.business_name,
                record.sector,
                record.location,
                record.asking_price,
                record.annual_revenue,
                record.annual_net_profit,
                record.description,
                1 if record.is_active else 0,
                now,
                now,
            ))
            return not existed

    def get_business(self, business_id: str) -> Optional[BusinessRecord]:
        """Get a single business by ID."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM businesses WHERE business_id = ?", (business_id,))
            row = cursor.fetchone()
            return self._row_to_business(row) if row else None

    def list_businesses(self, active_only: bool = True) -> List[BusinessRecord]:
        """List businesses in insertion order."""
        query = "SELECT * FROM businesses"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at, business_id"
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query)
            return [self._row_to_business(row) for row in cursor.fetchall()]

    # ─── Assessment Methods ────────────────────────────────────────

    def insert_assessment(self, assessment: CompositeAssessment) -> int:
        """
        Persist a fused assessment.

        Args:
            assessment: Assessment with narrative attached

        Returns:
            Row ID of the inserted assessment

        Raises:
            ValueError: If the assessment has no narrative
        """
        if assessment.narrative is None:
            raise ValueError(f"Assessment {assessment.assessment_id} has no narrative; refusing to persist")

        record = assessment.to_record()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO assessments (
                    assessment_id, business_id, composite_score, cap_rate, payback_years,
                    ownership_model, automation_opportunity_score, resilience_factors,
                    confidence_level, fallback_count, confidence,
                    financial, strategic, market, risk,
                    investment_thesis, executive_summary, narrative, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                assessment.assessment_id,
                assessment.business_id,
                assessment.composite_score,
                assessment.cap_rate,
                assessment.payback_years,
                assessment.ownership_model,
                assessment.automation_opportunity_score,
                json.dumps(record["resilience_factors"]),
                assessment.confidence.level,
                assessment.confidence.fallback_sourced,
                json.dumps(record["confidence"]),
                json.dumps(record[DomainKind.FINANCIAL.value]),
                json.dumps(record[DomainKind.STRATEGIC.value]),
                json.dumps(record[DomainKind.MARKET.value]),
                json.dumps(record[DomainKind.RISK.value]),
                assessment.narrative.thesis,
                assessment.narrative.summary,
                json.dumps(record["narrative"]),
                assessment.created_at,
            ))
            return cursor.lastrowid

    def _hydrate_assessment(self, row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        self._deserialize_json_fields(
            record,
            ["confidence", "narrative", "resilience_factors"] + [kind.value for kind in DomainKind],
        )
        return record

    def get_latest_assessment(self, business_id: str) -> Optional[Dict[str, Any]]:
        """
        Get most recent assessment for a business.

        Args:
            business_id: Business ID

        Returns:
            Assessment record as dict, or None if not found
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM assessments
                WHERE business_id = ?
                ORDER BY id DESC
                LIMIT 1
            """, (business_id,))
            row = cursor.fetchone()
            return self._hydrate_assessment(row) if row else None

    def get_assessment_history(self, business_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Get assessments for a business, newest first."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM assessments
                WHERE business_id = ?
                ORDER BY id DESC
                LIMIT ?
            """, (business_id, limit))
            return [self._hydrate_assessment(row) for row in cursor.fetchall()]

    def has_assessment(self, business_id: str) -> bool:
        """True if the business has been assessed before."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM assessments WHERE business_id = ? LIMIT 1", (business_id,))
            return cursor.fetchone() is not None

    # ─── Run Methods ───────────────────────────────────────────────

    def create_run(self, action: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Create a pending analysis run. Returns the run ID."""
        run_id = uuid.uuid4().hex
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """INSERT INTO analysis_runs (id, action, status, options, started_at)
                   VALUES (?, ?, 'pending', ?, ?)""",
                (run_id, action, json.dumps(options or {}), datetime.utcnow().isoformat()),
            )
        return run_id

    def update_run(self, run_id: str, **kwargs) -> bool:
        """Update run fields (status, counts, completed_at, execution_time_seconds, error_message). Returns False if not found."""
        allowed = {
            "status",
            "completed_at",
            "businesses_processed",
            "businesses_added",
            "businesses_updated",
            "execution_time_seconds",
            "error_message",
        }
        updates = {k: v for k, v in kwargs.items() if k in allowed}
        if "status" in updates and updates["status"] not in RUN_STATUSES:
            raise ValueError(f"Invalid run status: {updates['status']}")

        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id FROM analysis_runs WHERE id = ?", (run_id,))
            if not cursor.fetchone():
                return False
            if not updates:
                return True

            set_clause = ", ".join(f"{k} = ?" for k in updates)
            values = list(updates.values()) + [run_id]
            cursor.execute(f"UPDATE analysis_runs SET {set_clause} WHERE id = ?", values)
            return True

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Get a single run by ID."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM analysis_runs WHERE id = ?", (run_id,))
            row = cursor.fetchone()
            if not row:
                return None
            record = dict(row)
            self._deserialize_json_fields(record, ["options"])
            return record

    def get_recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get recent runs, newest first."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM analysis_runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
                (limit,),
            )
            runs = [dict(row) for row in cursor.fetchall()]
            for record in runs:
                self._deserialize_json_fields(record, ["options"])
            return runs
