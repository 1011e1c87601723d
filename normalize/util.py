"""
Normalization utility helpers.
Map raw Jira issue/worklog payloads onto normalize.models records, plus the timestamp helpers shared by the
sync and suggestion code.
"""
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from errors import ValidationError
from normalize.adf import to_plain_text
from normalize.models import (
    UNKNOWN_ACCOUNT,
    UNKNOWN_PROJECT_KEY,
    UNKNOWN_PROJECT_NAME,
    UNKNOWN_USER,
    WorkLogRecord,
)

_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")
_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Jira/ISO-8601 timestamp into an aware UTC datetime, or None if it cannot be parsed.
    Accepts ``Z``, ``+00:00`` and Jira's compact ``+0000`` offsets; naive values are taken as UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text[-1] in 'Zz':
        text = text[:-1] + '+00:00'
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    # fromisoformat only accepts 3 or 6 fractional digits on older interpreters
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def day_key(value: Any) -> Optional[str]:
    """UTC calendar day (YYYY-MM-DD) of a timestamp string."""
    parsed = parse_timestamp(value)
    return parsed.date().isoformat() if parsed else None


def to_iso_utc(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + f".{dt.microsecond // 1000:03d}Z"


def to_jira_started(value: str) -> str:
    """Format a timestamp the way the Jira worklog endpoint requires (``...mmm+0000``)."""
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError('started', 'Invalid started datetime')
    return to_iso_utc(parsed)[:-1] + '+0000'


def normalize_person_name(value: Optional[str]) -> str:
    return (value or '').strip().lower()


def author_matches(author: Optional[Dict[str, Any]], member_name: str, account_id: Optional[str] = None) -> bool:
    """True when a Jira author object refers to the given actor.
    Account ids are compared when both sides carry one; otherwise names (or email) case-insensitively.
    """
    author = author or {}
    author_account = author.get('accountId') or ''
    if account_id and author_account and author_account == account_id:
        return True
    name = normalize_person_name(author.get('displayName') or author.get('emailAddress'))
    return bool(name) and name == normalize_person_name(member_name)


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for v in values:
        if v and v not in seen:
            seen[v] = None
    return tuple(seen)


def _option_name(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        name = value.get('value') or value.get('name') or value.get('title') or ''
        return name.strip() if isinstance(name, str) else ''
    return ''


def extract_field_names(value: Any) -> Tuple[str, ...]:
    """Flatten a single- or multi-valued Jira custom field (strings, option dicts, or lists of either)."""
    if value is None:
        return ()
    items = value if isinstance(value, list) else [value]
    return _unique(_option_name(v) for v in items)


def issue_team_names(issue: Dict[str, Any], team_field: str = '') -> Tuple[str, ...]:
    if not team_field:
        return ()
    fields = issue.get('fields') or {}
    return extract_field_names(fields.get(team_field))


def _project(issue: Dict[str, Any]) -> Tuple[str, str]:
    project = (issue.get('fields') or {}).get('project') or {}
    return project.get('key') or UNKNOWN_PROJECT_KEY, project.get('name') or UNKNOWN_PROJECT_NAME


def issue_metadata(issue: Dict[str, Any]) -> Dict[str, str]:
    """The issue columns every record and suggestion carries."""
    project_key, project_name = _project(issue)
    return {
        'issue_id': str(issue.get('id') or ''),
        'issue_key': issue.get('key') or '',
        'issue_summary': (issue.get('fields') or {}).get('summary') or '',
        'project_key': project_key,
        'project_name': project_name,
    }


def worklog_seconds(worklog: Dict[str, Any]) -> int:
    try:
        return int(worklog.get('timeSpentSeconds') or 0)
    except (TypeError, ValueError):
        return 0


def normalize_worklog(issue: Dict[str, Any], worklog: Dict[str, Any], team_names: Iterable[str] = ()) -> WorkLogRecord:
    """Create a WorkLogRecord from a raw Jira issue and one of its raw worklogs."""
    author = worklog.get('author') or {}
    meta = issue_metadata(issue)
    return WorkLogRecord(
        id=f"{meta['issue_id']}:{worklog.get('id')}",
        author=author.get('displayName') or author.get('emailAddress') or UNKNOWN_USER,
        author_account_id=author.get('accountId') or UNKNOWN_ACCOUNT,
        team_names=_unique(team_names),
        started=worklog.get('started') or '',
        seconds=max(0, worklog_seconds(worklog)),
        comment=to_plain_text(worklog.get('comment')),
        **meta,
    )


def canonicalize_issue(
    issue: Dict[str, Any],
    worklogs: Iterable[Dict[str, Any]],
    resolve_teams: Optional[Callable[[str], Iterable[str]]] = None,
    team_field: str = '',
) -> List[WorkLogRecord]:
    """Canonicalize all worklogs of one issue.

    Worklogs with no logged time are dropped. Issue-level team names (from ``team_field``) win over the
    author's resolved group teams.
    """
    tagged_teams = issue_team_names(issue, team_field)
    records: List[WorkLogRecord] = []
    for wl in worklogs:
        if worklog_seconds(wl) <= 0:
            continue
        if tagged_teams:
            teams: Iterable[str] = tagged_teams
        elif resolve_teams is not None:
            teams = resolve_teams((wl.get('author') or {}).get('accountId') or '')
        else:
            teams = ()
        records.append(normalize_worklog(issue, wl, teams))
    return records
