"""Repositories holding resolutions and command watermarks.

ResolutionRepository is the persistence seam. InMemoryResolutionRepository backs
tests and single-shot CLI runs; SQLiteResolutionRepository keeps state across
processes.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pr_merge_resolver.core.exceptions import ResolutionStoreError
from pr_merge_resolver.core.models import CommandWatermark, Resolution

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ResolutionRepository(Protocol):
    """Storage operations the resolution store needs."""

    def upsert(self, resolution: Resolution) -> Resolution:
        """Insert or replace the row with the same (repo_id, pr_number, filename)."""
        ...

    def get(self, repo_id: str, pr_number: int, filename: str) -> Resolution | None:
        """Fetch one resolution."""
        ...

    def list_for_pull_request(self, repo_id: str, pr_number: int) -> list[Resolution]:
        """All resolutions of a pull request, ordered by filename."""
        ...

    def get_watermark(self, repo_id: str, pr_number: int) -> CommandWatermark | None:
        """Fetch the command watermark of a pull request."""
        ...

    def put_watermark(self, watermark: CommandWatermark) -> None:
        """Insert or replace a command watermark."""
        ...


class InMemoryResolutionRepository:
    """Dictionary-backed repository. Thread-safe; state lives as long as the instance."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, int, str], Resolution] = {}
        self._watermarks: dict[tuple[str, int], CommandWatermark] = {}
        self._lock = threading.Lock()

    def upsert(self, resolution: Resolution) -> Resolution:
        now = utcnow()
        with self._lock:
            existing = self._rows.get(resolution.key)
            created = existing.created_at if existing else (resolution.created_at or now)
            stored = replace(resolution, created_at=created, updated_at=now)
            self._rows[resolution.key] = stored
        return stored

    def get(self, repo_id: str, pr_number: int, filename: str) -> Resolution | None:
        with self._lock:
            return self._rows.get((repo_id, pr_number, filename))

    def list_for_pull_request(self, repo_id: str, pr_number: int) -> list[Resolution]:
        with self._lock:
            rows = [
                row
                for (rid, number, _), row in self._rows.items()
                if rid == repo_id and number == pr_number
            ]
        return sorted(rows, key=lambda row: row.filename)

    def get_watermark(self, repo_id: str, pr_number: int) -> CommandWatermark | None:
        with self._lock:
            return self._watermarks.get((repo_id, pr_number))

    def put_watermark(self, watermark: CommandWatermark) -> None:
        with self._lock:
            self._watermarks[(watermark.repo_id, watermark.pr_number)] = watermark


RESOLUTIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS resolutions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_id TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    filename TEXT NOT NULL,
    resolved_code TEXT NOT NULL,
    confirmed INTEGER NOT NULL DEFAULT 0,
    applied INTEGER NOT NULL DEFAULT 0,
    applied_commit_sha TEXT,
    base_content TEXT,
    ours_content TEXT,
    theirs_content TEXT,
    ours_branch TEXT,
    theirs_branch TEXT,
    comment_id INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (repo_id, pr_number, filename)
)
"""

WATERMARKS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS command_watermarks (
    repo_id TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    last_processed TEXT NOT NULL,
    PRIMARY KEY (repo_id, pr_number)
)
"""

UPSERT_SQL = """
INSERT INTO resolutions (
    repo_id, pr_number, filename, resolved_code, confirmed, applied, applied_commit_sha,
    base_content, ours_content, theirs_content, ours_branch, theirs_branch, comment_id,
    created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (repo_id, pr_number, filename) DO UPDATE SET
    resolved_code = excluded.resolved_code,
    confirmed = excluded.confirmed,
    applied = excluded.applied,
    applied_commit_sha = excluded.applied_commit_sha,
    base_content = excluded.base_content,
    ours_content = excluded.ours_content,
    theirs_content = excluded.theirs_content,
    ours_branch = excluded.ours_branch,
    theirs_branch = excluded.theirs_branch,
    comment_id = excluded.comment_id,
    updated_at = excluded.updated_at
"""

SELECT_COLUMNS = (
    "repo_id, pr_number, filename, resolved_code, confirmed, applied, applied_commit_sha, "
    "base_content, ours_content, theirs_content, ours_branch, theirs_branch, comment_id, "
    "created_at, updated_at"
)


class SQLiteResolutionRepository:
    """SQLite-backed repository.

    A single connection is shared and guarded by a lock, so the repository can
    be used from worker threads and with ``:memory:`` databases.

    Example:
        >>> repo = SQLiteResolutionRepository(Path("resolutions.db"))
        >>> repo.upsert(resolution)
        >>> repo.close()
    """

    def __init__(self, database_path: Path | str | None = None) -> None:
        """Open (and initialize) the database.

        Args:
            database_path: SQLite file. None or ``":memory:"`` for an in-memory database.

        Raises:
            ResolutionStoreError: If the database cannot be opened or initialized.
        """
        self.database_path = str(database_path) if database_path else ":memory:"
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.database_path, check_same_thread=False)
            if self.database_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(RESOLUTIONS_TABLE_SQL)
            self._conn.execute(WATERMARKS_TABLE_SQL)
            self._conn.commit()
        except sqlite3.Error as e:
            raise ResolutionStoreError(
                f"Failed to open resolution database: {e}",
                details={"database_path": self.database_path},
            ) from e
        logger.debug(f"Opened resolution database at {self.database_path}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise ResolutionStoreError(f"Resolution database error: {e}") from e

    @staticmethod
    def _to_row(resolution: Resolution) -> tuple:
        return (
            resolution.repo_id,
            resolution.pr_number,
            resolution.filename,
            resolution.resolved_code,
            int(resolution.confirmed),
            int(resolution.applied),
            resolution.applied_commit_sha,
            resolution.base_content,
            resolution.ours_content,
            resolution.theirs_content,
            resolution.ours_branch,
            resolution.theirs_branch,
            resolution.comment_id,
            (resolution.created_at or utcnow()).isoformat(),
            (resolution.updated_at or utcnow()).isoformat(),
        )

    @staticmethod
    def _from_row(row: tuple) -> Resolution:
        return Resolution(
            repo_id=row[0],
            pr_number=row[1],
            filename=row[2],
            resolved_code=row[3],
            confirmed=bool(row[4]),
            applied=bool(row[5]),
            applied_commit_sha=row[6],
            base_content=row[7],
            ours_content=row[8],
            theirs_content=row[9],
            ours_branch=row[10],
            theirs_branch=row[11],
            comment_id=row[12],
            created_at=datetime.fromisoformat(row[13]),
            updated_at=datetime.fromisoformat(row[14]),
        )

    def upsert(self, resolution: Resolution) -> Resolution:
        stored = replace(resolution, updated_at=utcnow())
        with self._transaction() as conn:
            conn.execute(UPSERT_SQL, self._to_row(stored))
        result = self.get(resolution.repo_id, resolution.pr_number, resolution.filename)
        if result is None:
            raise ResolutionStoreError(f"Upsert of {resolution.filename} did not persist")
        return result

    def get(self, repo_id: str, pr_number: int, filename: str) -> Resolution | None:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {SELECT_COLUMNS} FROM resolutions "  # nosec B608  # constant columns
                "WHERE repo_id = ? AND pr_number = ? AND filename = ?",
                (repo_id, pr_number, filename),
            ).fetchone()
        return self._from_row(row) if row else None

    def list_for_pull_request(self, repo_id: str, pr_number: int) -> list[Resolution]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {SELECT_COLUMNS} FROM resolutions "  # nosec B608  # constant columns
                "WHERE repo_id = ? AND pr_number = ? ORDER BY filename",
                (repo_id, pr_number),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def get_watermark(self, repo_id: str, pr_number: int) -> CommandWatermark | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT last_processed FROM command_watermarks "
                "WHERE repo_id = ? AND pr_number = ?",
                (repo_id, pr_number),
            ).fetchone()
        if row is None:
            return None
        return CommandWatermark(
            repo_id=repo_id, pr_number=pr_number, last_processed=datetime.fromisoformat(row[0])
        )

    def put_watermark(self, watermark: CommandWatermark) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO command_watermarks (repo_id, pr_number, last_processed) "
                "VALUES (?, ?, ?) ON CONFLICT (repo_id, pr_number) "
                "DO UPDATE SET last_processed = excluded.last_processed",
                (watermark.repo_id, watermark.pr_number, watermark.last_processed.isoformat()),
            )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
