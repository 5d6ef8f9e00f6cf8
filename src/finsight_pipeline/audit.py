# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Audit store for pipeline runs.

Each pipeline run may leave a write-once audit record: who uploaded what,
the resulting confidence and validity, and the issues and suggestions that
were produced. Records are keyed by (user_id, session_id, file_name) and
are never updated afterwards.

------------------------------------------------------------------------------
Schema
------------------------------------------------------------------------------

pipeline_runs
   - id           INTEGER PRIMARY KEY AUTOINCREMENT
   - user_id      TEXT    NOT NULL
   - session_id   TEXT    NOT NULL
   - file_name    TEXT    NOT NULL
   - created_at   TEXT    NOT NULL  -- ISO datetime, UTC
   - confidence   REAL    NOT NULL
   - is_valid     INTEGER NOT NULL  -- 0 / 1
   - issues       TEXT    NOT NULL  -- JSON array of ValidationIssue dicts
   - suggestions  TEXT    NOT NULL  -- JSON array of ValidationSuggestion dicts
   UNIQUE (user_id, session_id, file_name)

The store uses the standard library ``sqlite3`` module; the file and its
parent directory are created on first use.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd

_COLUMNS = [
    "id",
    "user_id",
    "session_id",
    "file_name",
    "created_at",
    "confidence",
    "is_valid",
]


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class AuditRecord:
    """
    One pipeline run, as persisted in the audit store.

    ``issues`` and ``suggestions`` hold plain dicts (``to_dict()`` output of
    ValidationIssue / ValidationSuggestion) so a record can be rebuilt from
    the database without the original objects.
    """

    user_id: str
    session_id: str
    file_name: str
    confidence: float
    is_valid: bool
    issues: list[dict[str, Any]] = field(default_factory=list)
    suggestions: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_now_utc_iso)
    id: Optional[int] = None


class SQLiteAuditStore:
    """Write-once store of AuditRecord rows in a SQLite file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            self._create_schema_if_needed(conn)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        """Open a connection. The caller is responsible for closing it."""
        return sqlite3.connect(self.path)

    @staticmethod
    def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
        """Idempotent schema creation."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS pipeline_runs (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id     TEXT    NOT NULL,
                session_id  TEXT    NOT NULL,
                file_name   TEXT    NOT NULL,
                created_at  TEXT    NOT NULL,
                confidence  REAL    NOT NULL,
                is_valid    INTEGER NOT NULL,
                issues      TEXT    NOT NULL,
                suggestions TEXT    NOT NULL,
                UNIQUE (user_id, session_id, file_name)
            );
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_pipeline_runs_user
                ON pipeline_runs(user_id, created_at);
            """
        )
        conn.commit()

    def write(self, record: AuditRecord) -> AuditRecord:
        """
        Persist ``record`` and return it with its database id.

        Raises
        ------
        ValueError
            If a record already exists for the same user, session and file.
        """
        conn = self._connect()
        try:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO pipeline_runs (
                        user_id, session_id, file_name, created_at,
                        confidence, is_valid, issues, suggestions
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        record.user_id,
                        record.session_id,
                        record.file_name,
                        record.created_at,
                        float(record.confidence),
                        1 if record.is_valid else 0,
                        json.dumps(record.issues, default=str),
                        json.dumps(record.suggestions, default=str),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(
                    "An audit record already exists for "
                    f"user={record.user_id!r} session={record.session_id!r} "
                    f"file={record.file_name!r}."
                ) from exc
            conn.commit()
            record_id = cur.lastrowid
        finally:
            conn.close()

        return AuditRecord(
            user_id=record.user_id,
            session_id=record.session_id,
            file_name=record.file_name,
            confidence=record.confidence,
            is_valid=record.is_valid,
            issues=list(record.issues),
            suggestions=list(record.suggestions),
            created_at=record.created_at,
            id=record_id,
        )

    def get(self, record_id: int) -> Optional[AuditRecord]:
        """Return the record with id ``record_id``, or None."""
        conn = self._connect()
        try:
            row = conn.execute(
                """
                SELECT id, user_id, session_id, file_name, created_at,
                       confidence, is_valid, issues, suggestions
                  FROM pipeline_runs
                 WHERE id = ?;
                """,
                (record_id,),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return AuditRecord(
            id=row[0],
            user_id=row[1],
            session_id=row[2],
            file_name=row[3],
            created_at=row[4],
            confidence=float(row[5]),
            is_valid=bool(row[6]),
            issues=json.loads(row[7]),
            suggestions=json.loads(row[8]),
        )

    def list_runs(self, user_id: Optional[str] = None) -> pd.DataFrame:
        """
        Return stored runs, most recent first.

        Columns: id, user_id, session_id, file_name, created_at, confidence,
        is_valid.
        """
        query = f"SELECT {', '.join(_COLUMNS)} FROM pipeline_runs"
        params: tuple[Any, ...] = ()
        if user_id is not None:
            query += " WHERE user_id = ?"
            params = (user_id,)
        query += " ORDER BY id DESC;"

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()

        df = pd.DataFrame(rows, columns=_COLUMNS)
        if not df.empty:
            df["is_valid"] = df["is_valid"].astype(bool)
        return df
