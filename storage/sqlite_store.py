"""
SQLite store client: the narrow upsert/select primitives the worklog repository depends on.

List and tuple values are stored as JSON text. Errors surface as StoreError carrying SQLite's message, which names
the missing column or table (e.g. "table jira_worklogs has no column named comment", "no such table: ...").
"""

import json
import re
import sqlite3
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence

from errors import StoreError


_IDENT = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

WORKLOG_TABLE = 'jira_worklogs'
TARGET_TABLE = 'jira_contributor_targets'

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS jira_worklogs (
    id TEXT PRIMARY KEY,
    issue_id TEXT NOT NULL,
    issue_key TEXT NOT NULL,
    issue_summary TEXT NOT NULL,
    project_key TEXT NOT NULL,
    project_name TEXT NOT NULL,
    author TEXT NOT NULL,
    author_account_id TEXT NOT NULL DEFAULT 'unknown-account',
    team_names TEXT NOT NULL DEFAULT '[]',
    started TEXT NOT NULL,
    seconds INTEGER NOT NULL CHECK (seconds >= 0),
    comment TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
CREATE INDEX IF NOT EXISTS jira_worklogs_started_idx ON jira_worklogs (started);
CREATE INDEX IF NOT EXISTS jira_worklogs_author_idx ON jira_worklogs (author);
CREATE INDEX IF NOT EXISTS jira_worklogs_issue_key_idx ON jira_worklogs (issue_key);

CREATE TABLE IF NOT EXISTS jira_contributor_targets (
    author TEXT PRIMARY KEY,
    target_hours REAL NOT NULL DEFAULT 40,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

# columns added to jira_worklogs after the first release, with their ALTER TABLE definitions
MIGRATION_COLUMNS = {
    'author_account_id': "TEXT NOT NULL DEFAULT 'unknown-account'",
    'team_names': "TEXT NOT NULL DEFAULT '[]'",
    'comment': "TEXT NOT NULL DEFAULT ''",
}


def _quote(name: str) -> str:
    # bare identifiers only: SQLite reads an unknown "quoted" name as a string literal
    if not _IDENT.match(name or ''):
        raise StoreError(f"Invalid identifier: {name!r}")
    return name


def _encode(value: Any) -> Any:
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(list(value) if isinstance(value, tuple) else value)
    return value


class SqliteStore:
    def __init__(self, path: Optional[str] = None, create_schema: bool = True):
        """Open (or create) a store.

        :param path: SQLite file path or None for in-memory.
        :param create_schema: create the current schema if the tables do not exist yet.
        """
        self.path = path or ':memory:'
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        if create_schema:
            self.ensure_schema()

    def ensure_schema(self):
        with self._lock:
            self.conn.executescript(SQL_CREATE)
            self.conn.commit()

    def columns(self, table: str) -> List[str]:
        with self._lock:
            rows = self.conn.execute(f'PRAGMA table_info({_quote(table)})').fetchall()
        return [r['name'] for r in rows]

    def migrate(self) -> List[str]:
        """Add columns missing from an older jira_worklogs table. Returns the columns added."""
        self.ensure_schema()
        existing = set(self.columns(WORKLOG_TABLE))
        added = []
        with self._lock:
            for name, ddl in MIGRATION_COLUMNS.items():
                if name not in existing:
                    self.conn.execute(f'ALTER TABLE {WORKLOG_TABLE} ADD COLUMN {name} {ddl}')
                    added.append(name)
            self.conn.commit()
        return added

    def close(self):
        with self._lock:
            if self.conn is not None:
                try:
                    self.conn.close()
                finally:
                    self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def upsert(self, table: str, rows: Sequence[Dict[str, Any]], on_conflict: str):
        """Insert rows, overwriting the columns present in each row when ``on_conflict`` matches."""
        if not rows:
            return
        columns = list(rows[0].keys())
        updates = ', '.join(f'{_quote(c)} = excluded.{_quote(c)}' for c in columns if c != on_conflict)
        sql = (
            f'INSERT INTO {_quote(table)} ({", ".join(_quote(c) for c in columns)}) '
            f'VALUES ({", ".join("?" for _ in columns)}) '
            f'ON CONFLICT ({_quote(on_conflict)}) DO '
            + (f'UPDATE SET {updates}' if updates else 'NOTHING')
        )
        values = [tuple(_encode(row.get(c)) for c in columns) for row in rows]
        with self._lock:
            try:
                self.conn.executemany(sql, values)
                self.conn.commit()
            except sqlite3.Error as ex:
                self.conn.rollback()
                raise StoreError(str(ex)) from ex

    def select(
        self,
        table: str,
        columns: Iterable[str],
        order_by: Optional[str] = None,
        ascending: bool = True,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return rows as dicts; ``offset``/``limit`` select an inclusive-exclusive range."""
        sql = f'SELECT {", ".join(_quote(c) for c in columns)} FROM {_quote(table)}'
        params: List[Any] = []
        if order_by:
            sql += f' ORDER BY {_quote(order_by)} {"ASC" if ascending else "DESC"}'
        if limit is not None:
            sql += ' LIMIT ? OFFSET ?'
            params.extend([int(limit), int(offset)])
        with self._lock:
            try:
                rows = self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as ex:
                raise StoreError(str(ex)) from ex
        return [dict(r) for r in rows]


__all__ = ["SqliteStore", "WORKLOG_TABLE", "TARGET_TABLE"]
