# src/scrapture/database.py
"""Storage abstraction for sessions, frontier entries, jobs, results and logs."""

import json
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from scrapture.config import SessionConfig, settings
from scrapture.models import (
    CrawlJob,
    CrawlLog,
    CrawlResult,
    CrawlSession,
    EntryStatus,
    FrontierEntry,
    JobStatus,
    LogLevel,
    SessionStatus,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS crawl_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    seed_url TEXT NOT NULL,
    max_depth INTEGER NOT NULL,
    max_pages INTEGER NOT NULL,
    same_domain_only INTEGER NOT NULL,
    follow_sitemap INTEGER NOT NULL,
    respect_robots INTEGER NOT NULL,
    status TEXT NOT NULL,
    config TEXT,
    error TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS frontier_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES crawl_sessions(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    normalized_url TEXT NOT NULL,
    url_hash TEXT NOT NULL,
    status TEXT NOT NULL,
    depth INTEGER NOT NULL,
    parent_url TEXT,
    content_hash TEXT,
    canonical_url TEXT,
    error TEXT,
    discovered_at TEXT NOT NULL,
    crawled_at TEXT,
    UNIQUE(session_id, normalized_url)
);

CREATE INDEX IF NOT EXISTS idx_frontier_selection
    ON frontier_entries (session_id, status, depth, id);

CREATE INDEX IF NOT EXISTS idx_frontier_hash
    ON frontier_entries (session_id, url_hash);

CREATE TABLE IF NOT EXISTS crawl_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES crawl_sessions(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    depth INTEGER NOT NULL,
    status TEXT NOT NULL,
    error TEXT,
    started_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS crawl_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL UNIQUE REFERENCES crawl_jobs(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    html_content TEXT,
    screenshot_path TEXT,
    api_responses TEXT,
    structured_data TEXT,
    metadata TEXT,
    extracted_text TEXT,
    content_hash TEXT,
    classification TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS crawl_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES crawl_sessions(id) ON DELETE CASCADE,
    job_id INTEGER REFERENCES crawl_jobs(id) ON DELETE CASCADE,
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""

# Columns callers may change after insert
SESSION_UPDATABLE = {"status", "error", "started_at", "completed_at"}
ENTRY_UPDATABLE = {"status", "content_hash", "canonical_url", "error", "crawled_at"}
JOB_UPDATABLE = {"status", "error", "completed_at"}


class StoreError(Exception):
    """Raised when the store is used with unknown ids or bad fields."""


class AbstractCrawlStore(ABC):
    """Abstract base class defining the storage interface the crawler needs."""

    @abstractmethod
    def close(self) -> None:
        """Close the underlying connection."""
        pass

    # --- Sessions ---

    @abstractmethod
    def create_session(self, config: SessionConfig) -> CrawlSession:
        """Persist a new session in the queued state.

        Args:
            config: Validated session configuration

        Returns:
            The stored session
        """
        pass

    @abstractmethod
    def get_session(self, session_id: int) -> Optional[CrawlSession]:
        pass

    @abstractmethod
    def update_session(self, session_id: int, **fields: Any) -> None:
        pass

    @abstractmethod
    def list_sessions(self) -> List[CrawlSession]:
        pass

    # --- Frontier ---

    @abstractmethod
    def create_frontier_entry(
        self,
        session_id: int,
        url: str,
        normalized_url: str,
        url_hash: str,
        depth: int,
        parent_url: Optional[str] = None,
    ) -> Optional[FrontierEntry]:
        """Insert a queued entry.

        Returns:
            The new entry, or None if (session_id, normalized_url) already exists
        """
        pass

    @abstractmethod
    def find_frontier_entry(self, session_id: int, normalized_url: str) -> Optional[FrontierEntry]:
        pass

    @abstractmethod
    def get_frontier_entry(self, entry_id: int) -> Optional[FrontierEntry]:
        pass

    @abstractmethod
    def next_queued_entry(self, session_id: int) -> Optional[FrontierEntry]:
        """Return the queued entry with the smallest depth, oldest first."""
        pass

    @abstractmethod
    def update_frontier_entry(self, entry_id: int, **fields: Any) -> None:
        pass

    @abstractmethod
    def list_frontier_entries(
        self, session_id: int, status: Optional[EntryStatus] = None
    ) -> List[FrontierEntry]:
        pass

    @abstractmethod
    def count_entries_by_status(self, session_id: int) -> Dict[str, int]:
        pass

    # --- Jobs, results, logs ---

    @abstractmethod
    def create_job(self, session_id: int, url: str, depth: int) -> CrawlJob:
        pass

    @abstractmethod
    def update_job(self, job_id: int, **fields: Any) -> None:
        pass

    @abstractmethod
    def list_jobs(self, session_id: int) -> List[CrawlJob]:
        pass

    @abstractmethod
    def create_result(self, job_id: int, url: str, **payload: Any) -> CrawlResult:
        pass

    @abstractmethod
    def get_result(self, job_id: int) -> Optional[CrawlResult]:
        pass

    @abstractmethod
    def append_log(
        self,
        session_id: int,
        level: LogLevel,
        message: str,
        job_id: Optional[int] = None,
    ) -> CrawlLog:
        pass

    @abstractmethod
    def list_logs(self, session_id: int, job_id: Optional[int] = None) -> List[CrawlLog]:
        pass


def _to_db(value: Any) -> Any:
    """Convert Python values to sqlite-friendly column values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _parse_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    return json.loads(value)


class SqliteCrawlStore(AbstractCrawlStore):
    """SQLite implementation of the crawl store."""

    def __init__(self, db_url: Optional[str] = None):
        """Initialize SQLite storage.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db or ":memory:").
                Defaults to settings.DATABASE_URL.
        """
        self.db_url = db_url or settings.DATABASE_URL
        self.db_path = self.db_url.replace("sqlite:///", "")
        self.conn: Optional[sqlite3.Connection] = None
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        logger.debug(f"Connected to SQLite crawl store: {self.db_path}")

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQLite crawl store")

    def create_schema(self) -> None:
        with self.conn:
            self.conn.executescript(SCHEMA_SQL)
        logger.debug("Schema verified/created for SQLite crawl store")

    def _update(self, table: str, row_id: int, allowed: set, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - allowed
        if unknown:
            raise StoreError(f"Cannot update {table} columns: {sorted(unknown)}")
        if not fields:
            return

        assignments = ', '.join(f"{column} = ?" for column in fields)
        values = [_to_db(v) for v in fields.values()]

        with self.conn:
            cursor = self.conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                (*values, row_id),
            )
        if cursor.rowcount == 0:
            raise StoreError(f"No row {row_id} in {table}")

    # --- Sessions ---

    def create_session(self, config: SessionConfig) -> CrawlSession:
        now = datetime.now()
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO crawl_sessions (
                    seed_url, max_depth, max_pages, same_domain_only,
                    follow_sitemap, respect_robots, status, config, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    config.seed_url,
                    config.max_depth,
                    config.max_pages,
                    _to_db(config.same_domain_only),
                    _to_db(config.follow_sitemap),
                    _to_db(config.respect_robots),
                    SessionStatus.QUEUED.value,
                    config.model_dump_json(),
                    now.isoformat(),
                ),
            )
        logger.debug(f"Created session {cursor.lastrowid} for {config.seed_url}")
        return self.get_session(cursor.lastrowid)

    def get_session(self, session_id: int) -> Optional[CrawlSession]:
        row = self.conn.execute(
            "SELECT * FROM crawl_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def update_session(self, session_id: int, **fields: Any) -> None:
        self._update("crawl_sessions", session_id, SESSION_UPDATABLE, fields)

    def list_sessions(self) -> List[CrawlSession]:
        rows = self.conn.execute("SELECT * FROM crawl_sessions ORDER BY id ASC").fetchall()
        return [self._row_to_session(row) for row in rows]

    # --- Frontier ---

    def create_frontier_entry(
        self,
        session_id: int,
        url: str,
        normalized_url: str,
        url_hash: str,
        depth: int,
        parent_url: Optional[str] = None,
    ) -> Optional[FrontierEntry]:
        try:
            with self.conn:
                cursor = self.conn.execute(
                    """
                    INSERT INTO frontier_entries (
                        session_id, url, normalized_url, url_hash, status,
                        depth, parent_url, discovered_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        session_id,
                        url,
                        normalized_url,
                        url_hash,
                        EntryStatus.QUEUED.value,
                        depth,
                        parent_url,
                        datetime.now().isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                return None
            raise StoreError(f"Cannot add frontier entry for session {session_id}: {e}") from e

        return self.get_frontier_entry(cursor.lastrowid)

    def find_frontier_entry(self, session_id: int, normalized_url: str) -> Optional[FrontierEntry]:
        row = self.conn.execute(
            "SELECT * FROM frontier_entries WHERE session_id = ? AND normalized_url = ?",
            (session_id, normalized_url),
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_frontier_entry(self, entry_id: int) -> Optional[FrontierEntry]:
        row = self.conn.execute(
            "SELECT * FROM frontier_entries WHERE id = ?", (entry_id,)
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def next_queued_entry(self, session_id: int) -> Optional[FrontierEntry]:
        row = self.conn.execute(
            """
            SELECT * FROM frontier_entries
            WHERE session_id = ? AND status = ?
            ORDER BY depth ASC, id ASC
            LIMIT 1
            """,
            (session_id, EntryStatus.QUEUED.value),
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def update_frontier_entry(self, entry_id: int, **fields: Any) -> None:
        self._update("frontier_entries", entry_id, ENTRY_UPDATABLE, fields)

    def list_frontier_entries(
        self, session_id: int, status: Optional[EntryStatus] = None
    ) -> List[FrontierEntry]:
        if status is None:
            rows = self.conn.execute(
                "SELECT * FROM frontier_entries WHERE session_id = ? ORDER BY id ASC",
                (session_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM frontier_entries WHERE session_id = ? AND status = ? ORDER BY id ASC",
                (session_id, _to_db(status)),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_entries_by_status(self, session_id: int) -> Dict[str, int]:
        counts = {status.value: 0 for status in EntryStatus}
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM frontier_entries WHERE session_id = ? GROUP BY status",
            (session_id,),
        ).fetchall()
        for row in rows:
            counts[row['status']] = row['n']
        return counts

    # --- Jobs ---

    def create_job(self, session_id: int, url: str, depth: int) -> CrawlJob:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO crawl_jobs (session_id, url, depth, status, started_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (session_id, url, depth, JobStatus.RUNNING.value, datetime.now().isoformat()),
            )
        row = self.conn.execute(
            "SELECT * FROM crawl_jobs WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
        return self._row_to_job(row)

    def update_job(self, job_id: int, **fields: Any) -> None:
        self._update("crawl_jobs", job_id, JOB_UPDATABLE, fields)

    def list_jobs(self, session_id: int) -> List[CrawlJob]:
        rows = self.conn.execute(
            "SELECT * FROM crawl_jobs WHERE session_id = ? ORDER BY id ASC", (session_id,)
        ).fetchall()
        return [self._row_to_job(row) for row in rows]

    # --- Results ---

    def create_result(self, job_id: int, url: str, **payload: Any) -> CrawlResult:
        columns = {
            "html_content", "screenshot_path", "api_responses", "structured_data",
            "metadata", "extracted_text", "content_hash", "classification",
        }
        unknown = set(payload) - columns
        if unknown:
            raise StoreError(f"Unknown result fields: {sorted(unknown)}")

        values = {"job_id": job_id, "url": url, "created_at": datetime.now()}
        values.update(payload)

        names = ', '.join(values)
        placeholders = ', '.join('?' for _ in values)
        try:
            with self.conn:
                self.conn.execute(
                    f"INSERT INTO crawl_results ({names}) VALUES ({placeholders})",
                    tuple(_to_db(v) for v in values.values()),
                )
        except sqlite3.IntegrityError as e:
            raise StoreError(f"Cannot store result for job {job_id}: {e}") from e

        return self.get_result(job_id)

    def get_result(self, job_id: int) -> Optional[CrawlResult]:
        row = self.conn.execute(
            "SELECT * FROM crawl_results WHERE job_id = ?", (job_id,)
        ).fetchone()
        if not row:
            return None
        return CrawlResult(
            id=row['id'],
            job_id=row['job_id'],
            url=row['url'],
            html_content=row['html_content'] or "",
            screenshot_path=row['screenshot_path'],
            api_responses=_parse_json(row['api_responses'], []),
            structured_data=_parse_json(row['structured_data'], []),
            metadata=_parse_json(row['metadata'], {}),
            extracted_text=row['extracted_text'] or "",
            content_hash=row['content_hash'],
            classification=row['classification'],
            created_at=_parse_dt(row['created_at']),
        )

    # --- Logs ---

    def append_log(
        self,
        session_id: int,
        level: LogLevel,
        message: str,
        job_id: Optional[int] = None,
    ) -> CrawlLog:
        now = datetime.now()
        with self.conn:
            cursor = self.conn.execute(
                "INSERT INTO crawl_logs (session_id, job_id, level, message, created_at) VALUES (?, ?, ?, ?, ?)",
                (session_id, job_id, _to_db(level), message, now.isoformat()),
            )
        return CrawlLog(
            id=cursor.lastrowid,
            session_id=session_id,
            job_id=job_id,
            level=LogLevel(level),
            message=message,
            created_at=now,
        )

    def list_logs(self, session_id: int, job_id: Optional[int] = None) -> List[CrawlLog]:
        query = "SELECT * FROM crawl_logs WHERE session_id = ?"
        params: tuple = (session_id,)
        if job_id is not None:
            query += " AND job_id = ?"
            params = (session_id, job_id)
        rows = self.conn.execute(query + " ORDER BY id ASC", params).fetchall()
        return [
            CrawlLog(
                id=row['id'],
                session_id=row['session_id'],
                job_id=row['job_id'],
                level=LogLevel(row['level']),
                message=row['message'],
                created_at=_parse_dt(row['created_at']),
            )
            for row in rows
        ]

    # --- Row mapping ---

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> CrawlSession:
        return CrawlSession(
            id=row['id'],
            seed_url=row['seed_url'],
            max_depth=row['max_depth'],
            max_pages=row['max_pages'],
            same_domain_only=bool(row['same_domain_only']),
            follow_sitemap=bool(row['follow_sitemap']),
            respect_robots=bool(row['respect_robots']),
            status=SessionStatus(row['status']),
            config=_parse_json(row['config'], {}),
            error=row['error'],
            created_at=_parse_dt(row['created_at']),
            started_at=_parse_dt(row['started_at']),
            completed_at=_parse_dt(row['completed_at']),
        )

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> FrontierEntry:
        return FrontierEntry(
            id=row['id'],
            session_id=row['session_id'],
            url=row['url'],
            normalized_url=row['normalized_url'],
            url_hash=row['url_hash'],
            depth=row['depth'],
            status=EntryStatus(row['status']),
            parent_url=row['parent_url'],
            content_hash=row['content_hash'],
            canonical_url=row['canonical_url'],
            error=row['error'],
            discovered_at=_parse_dt(row['discovered_at']),
            crawled_at=_parse_dt(row['crawled_at']),
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> CrawlJob:
        return CrawlJob(
            id=row['id'],
            session_id=row['session_id'],
            url=row['url'],
            depth=row['depth'],
            status=JobStatus(row['status']),
            error=row['error'],
            started_at=_parse_dt(row['started_at']),
            completed_at=_parse_dt(row['completed_at']),
        )


def get_store(db_url: Optional[str] = None) -> AbstractCrawlStore:
    """Factory function to create the crawl store.

    Args:
        db_url: Database URL. Defaults to settings.DATABASE_URL.

    Returns:
        An AbstractCrawlStore implementation

    Raises:
        ValueError: If the URL scheme is not supported
    """
    db_url = db_url or settings.DATABASE_URL

    if db_url == ":memory:" or db_url.startswith("sqlite:///"):
        logger.info(f"Using SQLite crawl store at {db_url}")
        return SqliteCrawlStore(db_url)

    raise ValueError(
        f"Unknown database URL: '{db_url}'. "
        "Supported: 'sqlite:///path/to/file.db', ':memory:'"
    )
