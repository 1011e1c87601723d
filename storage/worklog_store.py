"""
Worklog repository on top of a store client (see storage.sqlite_store).

The jira_worklogs table gained author_account_id, team_names and comment over time and a deployed table may not
have been migrated yet. Writes and reads therefore walk a chain of progressively smaller row shapes, advancing only
when the store's error names one of the optional columns; any other failure propagates unchanged.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from errors import SchemaMismatchError, StoreError
from normalize.models import UNKNOWN_ACCOUNT, ContributorTarget, WorkLogRecord
from storage.sqlite_store import TARGET_TABLE, WORKLOG_TABLE

logger = logging.getLogger(__name__)

T = TypeVar('T')

CHUNK_SIZE = 500
PAGE_SIZE = 1000

BASE_COLUMNS = ('id', 'issue_id', 'issue_key', 'issue_summary', 'project_key', 'project_name', 'author', 'started', 'seconds')
# newest first
OPTIONAL_COLUMNS = ('comment', 'team_names', 'author_account_id')

ROW_SHAPES: Tuple[Tuple[str, ...], ...] = (
    BASE_COLUMNS + ('author_account_id', 'team_names', 'comment'),
    BASE_COLUMNS + ('author_account_id', 'team_names'),
    BASE_COLUMNS + ('author_account_id',),
    BASE_COLUMNS,
)


def named_columns(message: str, candidates: Iterable[str]) -> List[str]:
    """Return the candidate columns a store error message names as missing."""
    text = (message or '').lower()
    if 'column' not in text:
        return []
    return [c for c in candidates if re.search(r'(?<![a-z0-9_])' + re.escape(c) + r'(?![a-z0-9_])', text)]


def _next_shape(index: int, missing: Sequence[str]) -> Optional[int]:
    for j in range(index + 1, len(ROW_SHAPES)):
        if not set(missing).intersection(ROW_SHAPES[j]):
            return j
    return None


def to_row(record: WorkLogRecord) -> Dict[str, object]:
    return {
        'id': record.id,
        'issue_id': record.issue_id,
        'issue_key': record.issue_key,
        'issue_summary': record.issue_summary,
        'project_key': record.project_key,
        'project_name': record.project_name,
        'author': record.author,
        'author_account_id': record.author_account_id,
        'team_names': list(record.team_names),
        'started': record.started,
        'seconds': record.seconds,
        'comment': record.comment,
    }


def _decode_team_names(value) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v)
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except ValueError:
            logger.warning("Ignoring malformed team_names value: %r", value[:80])
            return ()
        if isinstance(parsed, list):
            return tuple(str(v) for v in parsed if v)
    return ()


def from_row(row: Dict[str, object]) -> WorkLogRecord:
    """Build a record from a row of any shape, filling defaults for columns the shape lacks."""
    return WorkLogRecord(
        id=str(row['id']),
        issue_id=str(row.get('issue_id') or ''),
        issue_key=str(row.get('issue_key') or ''),
        issue_summary=str(row.get('issue_summary') or ''),
        project_key=str(row.get('project_key') or ''),
        project_name=str(row.get('project_name') or ''),
        author=str(row.get('author') or ''),
        author_account_id=str(row.get('author_account_id') or UNKNOWN_ACCOUNT),
        team_names=_decode_team_names(row.get('team_names')),
        started=str(row.get('started') or ''),
        seconds=int(row.get('seconds') or 0),
        comment=str(row.get('comment') or ''),
    )


def dedupe_by_id(records: Iterable[WorkLogRecord]) -> List[WorkLogRecord]:
    """Keep the last record for each id."""
    latest: Dict[str, WorkLogRecord] = {}
    for record in records:
        latest.pop(record.id, None)
        latest[record.id] = record
    return list(latest.values())


class WorklogStore:
    """Repository for worklog records and contributor targets."""

    def __init__(self, client, chunk_size: int = CHUNK_SIZE, page_size: int = PAGE_SIZE):
        self.client = client
        self.chunk_size = chunk_size
        self.page_size = page_size

    def _with_fallback(self, attempt: Callable[[Tuple[str, ...]], T], what: str) -> T:
        index = 0
        while True:
            shape = ROW_SHAPES[index]
            try:
                return attempt(shape)
            except StoreError as ex:
                missing = named_columns(str(ex), [c for c in OPTIONAL_COLUMNS if c in shape])
                if not missing:
                    # the legacy shape is the last one; a column error there exhausts the chain
                    if index == len(ROW_SHAPES) - 1 and 'column' in str(ex).lower():
                        raise SchemaMismatchError(f"{what} failed for every row shape: {ex}") from ex
                    raise
                nxt = _next_shape(index, missing)
                if nxt is None:
                    raise SchemaMismatchError(f"{what} failed for every row shape: {ex}") from ex
                logger.warning("%s: store lacks column(s) %s, retrying without them", what, ', '.join(missing))
                index = nxt

    def upsert_worklogs(self, records: Iterable[WorkLogRecord]) -> int:
        """Upsert records keyed on id, in sequential chunks. Returns the number of distinct records written."""
        unique = dedupe_by_id(records)
        rows = [to_row(r) for r in unique]
        for start in range(0, len(rows), self.chunk_size):
            chunk = rows[start:start + self.chunk_size]

            def write(shape: Tuple[str, ...], chunk=chunk):
                self.client.upsert(WORKLOG_TABLE, [{c: row[c] for c in shape} for row in chunk], on_conflict='id')

            self._with_fallback(write, f"upsert chunk {start // self.chunk_size + 1}")
            logger.debug("Upserted %d worklog row(s)", len(chunk))
        if rows:
            logger.info("Upserted %d worklog record(s)", len(rows))
        return len(rows)

    def read_all_worklogs(self) -> List[WorkLogRecord]:
        """Read the whole table ordered by started ascending, page by page."""
        records: List[WorkLogRecord] = []
        offset = 0
        while True:
            def read(shape: Tuple[str, ...], offset=offset):
                return self.client.select(WORKLOG_TABLE, shape, order_by='started', ascending=True, offset=offset, limit=self.page_size)

            page = self._with_fallback(read, f"read page at offset {offset}")
            records.extend(from_row(r) for r in page)
            if len(page) < self.page_size:
                break
            offset += self.page_size
        return records

    def upsert_contributor_target(self, author: str, target_hours: float) -> ContributorTarget:
        target = ContributorTarget(author=author, target_hours=float(target_hours), updated_at=datetime.now(timezone.utc).isoformat())
        self.client.upsert(
            TARGET_TABLE,
            [{'author': target.author, 'target_hours': target.target_hours, 'updated_at': target.updated_at}],
            on_conflict='author',
        )
        return target

    def list_contributor_targets(self) -> List[ContributorTarget]:
        """All configured targets; an absent target table means none are configured."""
        try:
            rows = self.client.select(TARGET_TABLE, ('author', 'target_hours', 'updated_at'), order_by='author')
        except StoreError as ex:
            if TARGET_TABLE in str(ex):
                logger.info("Target table unavailable (%s); treating as no targets", ex)
                return []
            raise
        return [
            ContributorTarget(author=str(r['author']), target_hours=float(r.get('target_hours') or 0), updated_at=r.get('updated_at'))
            for r in rows
        ]

    def read_contributor_targets(self) -> Dict[str, float]:
        return {t.author: t.target_hours for t in self.list_contributor_targets()}
