# src/speedsnapshot/database.py
"""Report storage supporting local SQLite and remote Turso backends."""

import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
import logging

from speedsnapshot.config import settings

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 100
REQUIRED_FIELDS = ('url', 'device', 'group_id')

# SQL schema shared between backends
CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    group_id TEXT NOT NULL,
    case_id TEXT,
    url TEXT NOT NULL,
    device TEXT NOT NULL,

    -- Performance score (0-100)
    perf_with INTEGER,
    perf_without INTEGER,

    -- Timings
    fcp_with_s REAL,
    fcp_without_s REAL,
    lcp_with_s REAL,
    lcp_without_s REAL,
    tbt_with_ms REAL,
    tbt_without_ms REAL,
    cls_with REAL,
    cls_without REAL,

    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,

    UNIQUE(group_id, device)
);
"""

CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_reports_case_id ON reports (case_id);"

INTEGER_FIELDS = ('perf_with', 'perf_without')
REAL_FIELDS = (
    'fcp_with_s', 'fcp_without_s', 'lcp_with_s', 'lcp_without_s',
    'tbt_with_ms', 'tbt_without_ms', 'cls_with', 'cls_without',
)
LIST_COLUMNS = "id, group_id, url, case_id, device, perf_with, perf_without, created_at"


def _coerce_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Validate required fields and coerce numeric columns."""
    for key in REQUIRED_FIELDS:
        if row.get(key) in (None, ''):
            raise ValueError(f"Missing field: {key}")

    values: Dict[str, Any] = {
        'group_id': str(row['group_id']),
        'case_id': row.get('case_id') or None,
        'url': row['url'],
        'device': row['device'],
    }
    for key in INTEGER_FIELDS:
        values[key] = int(row[key]) if row.get(key) is not None else None
    for key in REAL_FIELDS:
        values[key] = float(row[key]) if row.get(key) is not None else None
    return values


def _build_query(
    id: Optional[int] = None,
    url: Optional[str] = None,
    case_id: Optional[str] = None,
    group_id: Optional[str] = None,
    limit: int = 10,
) -> tuple:
    """SELECT statement and parameters for a report lookup.

    Precedence: group_id, id, url, case_id, then latest reports.
    """
    limit = max(1, min(int(limit), MAX_QUERY_LIMIT))

    if group_id:
        return "SELECT * FROM reports WHERE group_id = ? ORDER BY device", [group_id]
    if id is not None:
        return "SELECT * FROM reports WHERE id = ?", [int(id)]
    if url:
        return (
            f"SELECT * FROM reports WHERE url = ? ORDER BY created_at DESC, id DESC LIMIT {limit}",
            [url],
        )
    if case_id:
        return (
            f"SELECT * FROM reports WHERE case_id = ? ORDER BY created_at DESC, id DESC LIMIT {limit}",
            [case_id],
        )
    return f"SELECT {LIST_COLUMNS} FROM reports ORDER BY created_at DESC, id DESC LIMIT {limit}", []


INSERT_SQL = """
INSERT OR IGNORE INTO reports
  (group_id, case_id, url, device,
   perf_with, perf_without,
   fcp_with_s, fcp_without_s,
   lcp_with_s, lcp_without_s,
   tbt_with_ms, tbt_without_ms,
   cls_with, cls_without)
VALUES
  (:group_id, :case_id, :url, :device,
   :perf_with, :perf_without,
   :fcp_with_s, :fcp_without_s,
   :lcp_with_s, :lcp_without_s,
   :tbt_with_ms, :tbt_without_ms,
   :cls_with, :cls_without)
"""

SELECT_ID_SQL = "SELECT id FROM reports WHERE group_id = ? AND device = ?"


class AbstractReportStore(ABC):
    """Abstract base class defining the report store interface."""

    @abstractmethod
    def connect(self) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    def create_schema(self) -> None:
        """Create the necessary database tables."""
        pass

    @abstractmethod
    def save_report(self, row: Dict[str, Any]) -> int:
        """Save one summary row.

        Rows are unique per (group_id, device); saving the same pair again
        leaves the stored row untouched and returns its id.

        Args:
            row: Summary row. Must include 'url', 'device' and 'group_id'.

        Returns:
            The row id.
        """
        pass

    @abstractmethod
    def query_reports(
        self,
        id: Optional[int] = None,
        url: Optional[str] = None,
        case_id: Optional[str] = None,
        group_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Look up reports. Never raises on "not found"; returns [].

        Args:
            id: Exact row id.
            url: Reports for a URL, newest first.
            case_id: Reports for a case id, newest first.
            group_id: All device rows of one submission.
            limit: Maximum rows (capped at 100).

        Returns:
            List of report dictionaries.
        """
        pass


class LocalSqliteDatabase(AbstractReportStore):
    """SQLite database implementation for local storage."""

    def __init__(self, db_url: Optional[str] = None):
        """Initialize local SQLite database.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db). Defaults to settings.DATABASE_URL.
        """
        self.db_url = db_url or settings.DATABASE_URL
        self.db_path = self.db_url.replace("sqlite:///", "")
        self.conn: Optional[sqlite3.Connection] = None
        # Writes arrive from worker threads (asyncio.to_thread)
        self._lock = threading.Lock()
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish SQLite connection."""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to local SQLite database: {self.db_path}")

    def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed local SQLite connection")

    def create_schema(self) -> None:
        """Create the reports table if it doesn't exist."""
        with self._lock, self.conn:
            self.conn.execute(CREATE_TABLE_SQL)
            self.conn.execute(CREATE_INDEX_SQL)
        logger.debug("Schema verified/created for local SQLite")

    def save_report(self, row: Dict[str, Any]) -> int:
        """Save a summary row to SQLite."""
        values = _coerce_row(row)

        with self._lock, self.conn:
            self.conn.execute(INSERT_SQL, values)
            report_id = self.conn.execute(
                SELECT_ID_SQL, (values['group_id'], values['device'])
            ).fetchone()['id']
        logger.debug(f"Saved report {report_id} for {values['url']} ({values['device']})")
        return report_id

    def query_reports(
        self,
        id: Optional[int] = None,
        url: Optional[str] = None,
        case_id: Optional[str] = None,
        group_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Retrieve reports from SQLite."""
        query_sql, params = _build_query(id, url, case_id, group_id, limit)
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(query_sql, params)
            return [dict(row) for row in cursor.fetchall()]


class TursoDatabase(AbstractReportStore):
    """Turso (libSQL) database implementation for remote storage."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        auth_token: Optional[str] = None,
    ):
        """Initialize Turso database connection.

        Args:
            database_url: Turso database URL (libsql://...). Defaults to settings.TURSO_DATABASE_URL.
            auth_token: Turso auth token. Defaults to settings.TURSO_AUTH_TOKEN.
        """
        self.database_url = database_url or settings.TURSO_DATABASE_URL
        self.auth_token = auth_token or settings.TURSO_AUTH_TOKEN
        self.client = None

        if not self.database_url:
            raise ValueError("TURSO_DATABASE_URL is required for Turso backend")
        if not self.auth_token:
            raise ValueError("TURSO_AUTH_TOKEN is required for Turso backend")

        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish Turso connection using libsql-client."""
        try:
            import libsql_client
        except ImportError:
            raise ImportError(
                "libsql-client is required for Turso backend. "
                "Install it with: pip install 'speedsnapshot[turso]'"
            )
        self.client = libsql_client.create_client_sync(
            url=self.database_url,
            auth_token=self.auth_token,
        )
        logger.info(f"Connected to Turso database: {self.database_url}")

    def close(self) -> None:
        """Close Turso connection."""
        if self.client:
            self.client.close()
            self.client = None
            logger.debug("Closed Turso connection")

    def create_schema(self) -> None:
        """Create the reports table in Turso if it doesn't exist."""
        self.client.execute(CREATE_TABLE_SQL)
        self.client.execute(CREATE_INDEX_SQL)
        logger.debug("Schema verified/created for Turso database")

    def save_report(self, row: Dict[str, Any]) -> int:
        """Save a summary row to Turso."""
        values = _coerce_row(row)

        self.client.execute(INSERT_SQL, values)
        result = self.client.execute(SELECT_ID_SQL, [values['group_id'], values['device']])
        report_id = result.rows[0]['id']
        logger.debug(f"Saved report {report_id} to Turso for {values['url']} ({values['device']})")
        return report_id

    def query_reports(
        self,
        id: Optional[int] = None,
        url: Optional[str] = None,
        case_id: Optional[str] = None,
        group_id: Optional[str] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Retrieve reports from Turso."""
        query_sql, params = _build_query(id, url, case_id, group_id, limit)
        result = self.client.execute(query_sql, params)
        return [row.asdict() for row in result.rows]


def get_db_client(
    backend: Optional[str] = None,
    **kwargs,
) -> AbstractReportStore:
    """Factory function to create the appropriate report store.

    Args:
        backend: Database backend ('local' or 'turso'). Defaults to settings.DB_BACKEND.
        **kwargs: Additional arguments passed to the database constructor.

    Returns:
        An instance of AbstractReportStore (either LocalSqliteDatabase or TursoDatabase).

    Raises:
        ValueError: If an unknown backend is specified.
    """
    backend = backend or settings.DB_BACKEND

    if backend == "local":
        logger.info("Using local SQLite database backend")
        return LocalSqliteDatabase(**kwargs)
    elif backend == "turso":
        logger.info("Using Turso database backend")
        return TursoDatabase(**kwargs)
    else:
        raise ValueError(
            f"Unknown database backend: '{backend}'. "
            "Supported backends: 'local', 'turso'"
        )
