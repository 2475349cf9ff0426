"""
Database access for stories, pages, jobs, assets and logs.
Supports PostgreSQL and MySQL, plus SQLite for local development,
with the backend picked from the DATABASE_URL scheme.
"""

import json
import logging
import os
import sqlite3
import urllib.parse
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Iterable

from models import Story, Page, Job, Asset, JobStatus, StoryStatus, ImageStatus

# Try to import database adapters
try:
    import pymysql
    from pymysql.cursors import DictCursor
    MYSQL_AVAILABLE = True
except ImportError:
    MYSQL_AVAILABLE = False
    pymysql = None
    DictCursor = None

try:
    import psycopg2
    from psycopg2.extras import RealDictCursor
    POSTGRESQL_AVAILABLE = True
except ImportError:
    POSTGRESQL_AVAILABLE = False
    psycopg2 = None
    RealDictCursor = None

logger = logging.getLogger("db")

TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)

# Story fields that a partial update may touch (API name -> column)
STORY_UPDATE_COLUMNS = {
    "title": "title",
    "outline": "outline",
    "reading_level": "reading_level",
    "status": "status",
    "page_count": "page_count",
    "style_preset_id": "style_preset_id",
    "generation_job_id": "generation_job_id",
    "raw_ai_response": "raw_ai_response",
    "metadata": "metadata_json",
}

PAGE_UPDATE_COLUMNS = {
    "current_text": "current_text",
    "is_locked": "is_locked",
    "image_id": "image_id",
    "image_status": "image_status",
    "image_url": "image_url",
    "visual_notes": "visual_notes",
}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS stories (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(128) NOT NULL,
        title VARCHAR(200) NOT NULL,
        outline TEXT NOT NULL,
        reading_level VARCHAR(32) NOT NULL,
        status VARCHAR(32) NOT NULL,
        page_count INTEGER NOT NULL DEFAULT 0,
        style_preset_id VARCHAR(64) NOT NULL DEFAULT 'default',
        generation_job_id VARCHAR(64),
        raw_ai_response TEXT,
        metadata_json TEXT,
        created_at VARCHAR(32) NOT NULL,
        updated_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pages (
        id VARCHAR(64) PRIMARY KEY,
        story_id VARCHAR(64) NOT NULL REFERENCES stories(id),
        page_number INTEGER NOT NULL,
        original_text TEXT NOT NULL,
        current_text TEXT NOT NULL,
        is_locked BOOLEAN NOT NULL DEFAULT FALSE,
        image_id VARCHAR(64),
        image_status VARCHAR(32) NOT NULL DEFAULT 'none',
        image_url TEXT,
        visual_notes TEXT,
        created_at VARCHAR(32) NOT NULL,
        updated_at VARCHAR(32) NOT NULL,
        UNIQUE (story_id, page_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id VARCHAR(64) PRIMARY KEY,
        type VARCHAR(32) NOT NULL,
        status VARCHAR(32) NOT NULL,
        user_id VARCHAR(128) NOT NULL,
        story_id VARCHAR(64) NOT NULL,
        page_id VARCHAR(64),
        input_json TEXT,
        output_json TEXT,
        error TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0,
        max_retries INTEGER NOT NULL DEFAULT 3,
        created_at VARCHAR(32) NOT NULL,
        started_at VARCHAR(32),
        completed_at VARCHAR(32)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assets (
        id VARCHAR(64) PRIMARY KEY,
        story_id VARCHAR(64) NOT NULL,
        page_id VARCHAR(64),
        type VARCHAR(16) NOT NULL,
        source VARCHAR(16) NOT NULL,
        storage_path TEXT NOT NULL,
        storage_url TEXT NOT NULL,
        public_url TEXT NOT NULL,
        thumbnail_url TEXT,
        mime_type VARCHAR(64) NOT NULL,
        size_bytes INTEGER NOT NULL,
        generation_job_id VARCHAR(64),
        created_at VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS logs (
        log_id {autoinc},
        user_id VARCHAR(128),
        level VARCHAR(16) NOT NULL,
        message TEXT NOT NULL,
        timestamp VARCHAR(32) NOT NULL
    )
    """,
]

# MySQL has no CREATE INDEX IF NOT EXISTS; indexes there are left to migrations
INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_stories_user ON stories (user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_story ON jobs (story_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_assets_page ON assets (story_id, page_id)",
]

AUTOINCREMENT = {
    "postgresql": "SERIAL PRIMARY KEY",
    "mysql": "INTEGER AUTO_INCREMENT PRIMARY KEY",
    "sqlite": "INTEGER PRIMARY KEY AUTOINCREMENT",
}


def detect_database_type(database_url: str) -> str:
    """Detect database type from a DATABASE_URL."""
    if database_url.startswith("postgresql://") or database_url.startswith("postgres://"):
        return "postgresql"
    if database_url.startswith("mysql://"):
        return "mysql"
    if database_url.startswith("sqlite://"):
        return "sqlite"
    raise ValueError(f"Unsupported DATABASE_URL scheme: {database_url.split('://')[0]}")


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> str:
    """Fixed-width ISO-8601 timestamp; sorts lexicographically."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Database:
    """Connection factory plus the queries the service needs."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.db_type = detect_database_type(database_url)

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def _connect(self):
        dsn = self.database_url
        if self.db_type == "postgresql":
            if not POSTGRESQL_AVAILABLE:
                raise ImportError("psycopg2-binary is required for PostgreSQL. Install with: pip install psycopg2-binary")
            return psycopg2.connect(dsn)
        if self.db_type == "mysql":
            if not MYSQL_AVAILABLE:
                raise ImportError("PyMySQL is required for MySQL. Install with: pip install PyMySQL")
            parsed = urllib.parse.urlparse(dsn.replace("mysql://", "http://", 1))
            return pymysql.connect(
                host=parsed.hostname or "localhost",
                port=parsed.port or 3306,
                user=urllib.parse.unquote(parsed.username or "root"),
                password=urllib.parse.unquote(parsed.password or ""),
                database=parsed.path.lstrip("/") if parsed.path else "storybook",
                charset="utf8mb4",
                cursorclass=DictCursor,
                autocommit=False,
            )
        path = dsn[len("sqlite:///"):] if dsn.startswith("sqlite:///") else dsn[len("sqlite://"):]
        if path and path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        conn = sqlite3.connect(path or ":memory:", timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self):
        """Get a database connection (context manager). Commits on success."""
        conn = None
        try:
            conn = self._connect()
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"[db] Database error: {e}")
            raise
        finally:
            if conn:
                conn.close()

    @contextmanager
    def cursor(self):
        """Get a cursor whose rows can be turned into dicts."""
        with self.connection() as conn:
            if self.db_type == "postgresql":
                cursor = conn.cursor(cursor_factory=RealDictCursor)
            else:
                cursor = conn.cursor()
            try:
                yield _Cursor(cursor, self.db_type)
            finally:
                cursor.close()

    def init_schema(self) -> None:
        """Create all tables (idempotent)."""
        with self.cursor() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement.replace("{autoinc}", AUTOINCREMENT[self.db_type]))
            if self.db_type != "mysql":
                for statement in INDEX_STATEMENTS:
                    cursor.execute(statement)
        logger.info(f"[db] Schema initialized ({self.db_type})")

    # -------------------------------------------------------------------------
    # Stories
    # -------------------------------------------------------------------------

    def create_story(self, user_id: str, title: str, outline: str, reading_level: str,
                     metadata: Optional[Dict[str, Any]] = None) -> Story:
        story_id = new_id()
        now = utc_now()
        with self.cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO stories (id, user_id, title, outline, reading_level, status, page_count,
                                     style_preset_id, generation_job_id, raw_ai_response, metadata_json,
                                     created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, 0, 'default', NULL, NULL, %s, %s, %s)
                """,
                (story_id, user_id, title, outline, reading_level, StoryStatus.DRAFT.value,
                 json.dumps(metadata or {}), now, now),
            )
        return self.get_story(story_id)

    def get_story(self, story_id: str) -> Optional[Story]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM stories WHERE id = %s", (story_id,))
            row = cursor.fetchone()
        return Story.from_row(row) if row else None

    def get_user_stories(self, user_id: str, limit: int = 100) -> List[Story]:
        """Get all stories for a user, most recent first."""
        with self.cursor() as cursor:
            cursor.execute(
                "SELECT * FROM stories WHERE user_id = %s ORDER BY created_at DESC LIMIT %s",
                (user_id, limit),
            )
            rows = cursor.fetchall()
        return [Story.from_row(row) for row in rows]

    def update_story(self, story_id: str, **fields: Any) -> bool:
        """Partial update. Returns False when the story does not exist."""
        assignments, params = _assignments(fields, STORY_UPDATE_COLUMNS)
        assignments.append("updated_at = %s")
        params.extend([utc_now(), story_id])
        with self.cursor() as cursor:
            cursor.execute(f"UPDATE stories SET {', '.join(assignments)} WHERE id = %s", params)
            return cursor.rowcount > 0

    def claim_story_for_generation(self, story_id: str) -> bool:
        """Move a story to ``generating`` unless it is already there.

        The status check and the write happen in one statement, so two
        concurrent callers cannot both win.
        """
        with self.cursor() as cursor:
            cursor.execute(
                "UPDATE stories SET status = %s, updated_at = %s WHERE id = %s AND status <> %s",
                (StoryStatus.GENERATING.value, utc_now(), story_id, StoryStatus.GENERATING.value),
            )
            return cursor.rowcount == 1

    def delete_story(self, story_id: str) -> bool:
        """Delete a story with its pages and asset records in one transaction."""
        with self.cursor() as cursor:
            cursor.execute("DELETE FROM assets WHERE story_id = %s", (story_id,))
            cursor.execute("DELETE FROM pages WHERE story_id = %s", (story_id,))
            cursor.execute("DELETE FROM stories WHERE id = %s", (story_id,))
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    def replace_pages(self, story_id: str, page_texts: Iterable[str]) -> List[Page]:
        """Batch-create pages numbered 1..N, dropping any previous set."""
        now = utc_now()
        with self.cursor() as cursor:
            cursor.execute("DELETE FROM pages WHERE story_id = %s", (story_id,))
            for number, text in enumerate(page_texts, start=1):
                cursor.execute(
                    """
                    INSERT INTO pages (id, story_id, page_number, original_text, current_text, is_locked,
                                       image_id, image_status, image_url, visual_notes, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, NULL, %s, NULL, NULL, %s, %s)
                    """,
                    (new_id(), story_id, number, text, text, False, ImageStatus.NONE.value, now, now),
                )
        return self.get_pages(story_id)

    def get_pages(self, story_id: str) -> List[Page]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM pages WHERE story_id = %s ORDER BY page_number ASC", (story_id,))
            rows = cursor.fetchall()
        return [Page.from_row(row) for row in rows]

    def get_page(self, story_id: str, page_id: str) -> Optional[Page]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM pages WHERE story_id = %s AND id = %s", (story_id, page_id))
            row = cursor.fetchone()
        return Page.from_row(row) if row else None

    def update_page(self, story_id: str, page_id: str, **fields: Any) -> bool:
        assignments, params = _assignments(fields, PAGE_UPDATE_COLUMNS)
        assignments.append("updated_at = %s")
        params.extend([utc_now(), story_id, page_id])
        with self.cursor() as cursor:
            cursor.execute(
                f"UPDATE pages SET {', '.join(assignments)} WHERE story_id = %s AND id = %s",
                params,
            )
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    def create_job(self, job_type: str, user_id: str, story_id: str, input_data: Dict[str, Any],
                   page_id: Optional[str] = None, max_retries: int = 3) -> Job:
        job_id = new_id()
        with self.cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO jobs (id, type, status, user_id, story_id, page_id, input_json, output_json,
                                  error, retry_count, max_retries, created_at, started_at, completed_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, NULL, NULL, 0, %s, %s, NULL, NULL)
                """,
                (job_id, job_type, JobStatus.PENDING.value, user_id, story_id, page_id,
                 json.dumps(input_data), max_retries, utc_now()),
            )
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM jobs WHERE id = %s", (job_id,))
            row = cursor.fetchone()
        return Job.from_row(row) if row else None

    def get_story_jobs(self, story_id: str) -> List[Job]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM jobs WHERE story_id = %s ORDER BY created_at ASC", (story_id,))
            rows = cursor.fetchall()
        return [Job.from_row(row) for row in rows]

    def update_job_status(self, job_id: str, status: str, output: Optional[Dict[str, Any]] = None,
                          error: Optional[str] = None, retry_count: Optional[int] = None) -> bool:
        """Advance a job. Never touches a job that is already completed or failed."""
        assignments = ["status = %s"]
        params: List[Any] = [status]
        now = utc_now()
        if status == JobStatus.PROCESSING.value:
            assignments.append("started_at = %s")
            params.append(now)
        if status in TERMINAL_JOB_STATUSES:
            assignments.append("completed_at = %s")
            params.append(now)
        if output is not None:
            assignments.append("output_json = %s")
            params.append(json.dumps(output))
        if error is not None:
            assignments.append("error = %s")
            params.append(error)
        if retry_count is not None:
            assignments.append("retry_count = %s")
            params.append(retry_count)
        params.extend([job_id, *TERMINAL_JOB_STATUSES])
        with self.cursor() as cursor:
            cursor.execute(
                f"UPDATE jobs SET {', '.join(assignments)} WHERE id = %s AND status NOT IN (%s, %s)",
                params,
            )
            return cursor.rowcount == 1

    # -------------------------------------------------------------------------
    # Assets
    # -------------------------------------------------------------------------

    def create_asset(self, story_id: str, page_id: Optional[str], asset_type: str, source: str,
                     storage_path: str, storage_url: str, public_url: str, mime_type: str,
                     size_bytes: int, generation_job_id: Optional[str] = None) -> Asset:
        asset_id = new_id()
        with self.cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO assets (id, story_id, page_id, type, source, storage_path, storage_url,
                                    public_url, thumbnail_url, mime_type, size_bytes, generation_job_id,
                                    created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NULL, %s, %s, %s, %s)
                """,
                (asset_id, story_id, page_id, asset_type, source, storage_path, storage_url,
                 public_url, mime_type, size_bytes, generation_job_id, utc_now()),
            )
        return self.get_asset(asset_id)

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM assets WHERE id = %s", (asset_id,))
            row = cursor.fetchone()
        return Asset.from_row(row) if row else None

    def get_story_assets(self, story_id: str) -> List[Asset]:
        with self.cursor() as cursor:
            cursor.execute("SELECT * FROM assets WHERE story_id = %s ORDER BY created_at ASC", (story_id,))
            rows = cursor.fetchall()
        return [Asset.from_row(row) for row in rows]

    def get_page_assets(self, story_id: str, page_id: str) -> List[Asset]:
        with self.cursor() as cursor:
            cursor.execute(
                "SELECT * FROM assets WHERE story_id = %s AND page_id = %s ORDER BY created_at ASC",
                (story_id, page_id),
            )
            rows = cursor.fetchall()
        return [Asset.from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------

    def create_log(self, user_id: Optional[str], level: str, message: str) -> bool:
        """Create a log entry."""
        try:
            with self.cursor() as cursor:
                cursor.execute(
                    "INSERT INTO logs (user_id, level, message, timestamp) VALUES (%s, %s, %s, %s)",
                    (user_id, level.upper(), message, utc_now()),
                )
            return True
        except Exception as e:
            # Plain print: logging from here would recurse into the database handler
            print(f"[db] Failed to create log: {e}")
            return False


class _Cursor:
    """Thin wrapper so queries can be written once with %s placeholders."""

    def __init__(self, cursor, db_type: str):
        self._cursor = cursor
        self._db_type = db_type

    def execute(self, query: str, params: Iterable[Any] = ()):
        if self._db_type == "sqlite":
            query = query.replace("%s", "?")
        return self._cursor.execute(query, tuple(params))

    def fetchone(self) -> Optional[Dict[str, Any]]:
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._cursor.fetchall()]

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


def _assignments(fields: Dict[str, Any], columns: Dict[str, str]):
    assignments = []
    params: List[Any] = []
    for name, value in fields.items():
        if name not in columns:
            raise ValueError(f"Unknown field: {name}")
        column = columns[name]
        if column == "metadata_json":
            value = json.dumps(value or {})
        elif hasattr(value, "value"):
            value = value.value
        assignments.append(f"{column} = %s")
        params.append(value)
    return assignments, params
