"""
Worklog suggestions: correlate one person's same-day issue activity (changelog entries and comments) with issues
they have not logged time on, and turn each such issue into a reviewable WorklogSuggestion.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date as date_cls, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from errors import ValidationError
from normalize.models import WorklogSuggestion
from normalize.util import author_matches, day_key, issue_metadata, parse_timestamp, to_iso_utc
from scoring.estimate import estimate_suggestion_hours, hours_to_seconds

logger = logging.getLogger(__name__)

FALLBACK_TIME = "T10:00:00.000Z"
UNTITLED_ISSUE = "Untitled issue"
MIN_SUGGESTION_SECONDS = 900
MAX_PHRASES = 4

DEFAULT_PHRASE = "ticket content edited"
COMMENT_PHRASE = "comments documented"
# changelog field name (lower-case) -> justification phrase
FIELD_PHRASES = {
    "status": "status updated",
    "resolution": "status updated",
    "assignee": "assignment changed",
    "summary": "ticket description refined",
    "description": "ticket description refined",
    "priority": "priority adjusted",
    "labels": "labels updated",
    "sprint": "sprint planning updated",
    "fix version": "release scope updated",
    "version": "release scope updated",
    "component": "components updated",
    "attachment": "attachments added",
    "link": "issue links updated",
    "timeestimate": "estimate revised",
    "timeoriginalestimate": "estimate revised",
    "duedate": "due date changed",
    "rank": "backlog ranking adjusted",
}


@dataclass(frozen=True)
class SuggestionQuery:
    member_name: str
    date: str
    account_id: Optional[str] = None
    project_key: Optional[str] = None
    exclude_issue_keys: Tuple[str, ...] = ()


def parse_day(value: str) -> date_cls:
    """Parse a zero-padded YYYY-MM-DD day; the raw string is compared against UTC day keys later."""
    try:
        parsed = datetime.strptime(value or "", "%Y-%m-%d").date()
    except ValueError:
        parsed = None
    # strptime also accepts "2024-5-2"
    if parsed is None or parsed.isoformat() != value:
        raise ValidationError("date", f"Invalid date '{value}', expected YYYY-MM-DD")
    return parsed


def build_day_jql(day: str, project_key: Optional[str] = None) -> str:
    """JQL for issues updated within ``[day 00:00, day+1 00:00)``, newest first."""
    start = parse_day(day)
    end = start + timedelta(days=1)
    project_filter = ""
    if project_key:
        project_filter = ' AND project = "{}"'.format(project_key.replace('"', ""))
    return f'updated >= "{start.isoformat()} 00:00" AND updated < "{end.isoformat()} 00:00"{project_filter} ORDER BY updated DESC'


def _on_day_by_member(events: Iterable[Dict[str, Any]], query: SuggestionQuery, stamp_key: str) -> List[Dict[str, Any]]:
    return [
        e for e in events
        if day_key(e.get(stamp_key)) == query.date and author_matches(e.get("author"), query.member_name, query.account_id)
    ]


def changed_fields_of(histories: Iterable[Dict[str, Any]]) -> Tuple[str, ...]:
    fields: Dict[str, None] = {}
    for history in histories:
        for item in history.get("items") or []:
            name = (item.get("field") or "").strip()
            if name:
                fields.setdefault(name, None)
    return tuple(fields)


def describe_changes(changed_fields: Iterable[str], has_comments: bool) -> str:
    """Join up to four de-duplicated phrases describing the activity."""
    phrases: Dict[str, None] = {}
    for name in changed_fields:
        phrases.setdefault(FIELD_PHRASES.get(name.strip().lower(), DEFAULT_PHRASE), None)
    if has_comments:
        phrases.setdefault(COMMENT_PHRASE, None)
    return "; ".join(list(phrases)[:MAX_PHRASES]) or DEFAULT_PHRASE


def _earliest_started(events: Iterable[Dict[str, Any]], day: str) -> str:
    stamps = [ts for ts in (parse_timestamp(e.get("created")) for e in events) if ts is not None]
    return to_iso_utc(min(stamps)) if stamps else f"{day}{FALLBACK_TIME}"


def _already_logged(client, issue: Dict[str, Any], query: SuggestionQuery) -> bool:
    return bool(_on_day_by_member(client.issue_worklogs(issue), query, "started"))


def suggest_for_issue(client, issue: Dict[str, Any], query: SuggestionQuery) -> Optional[WorklogSuggestion]:
    """Build the suggestion for one issue, or None when there is no matching activity or time is already logged."""
    histories = _on_day_by_member((issue.get("changelog") or {}).get("histories") or [], query, "created")
    comments = _on_day_by_member(client.issue_comments(issue.get("id")), query, "created")
    if not histories and not comments:
        return None
    if _already_logged(client, issue, query):
        logger.debug("%s already has time logged on %s", issue.get("key"), query.date)
        return None

    meta = issue_metadata(issue)
    meta["issue_summary"] = meta["issue_summary"] or UNTITLED_ISSUE
    changed = changed_fields_of(histories)
    hours = estimate_suggestion_hours(len(histories), changed, len(comments))
    change_summary = describe_changes(changed, bool(comments))
    source = histories[0] if histories else comments[0]

    return WorklogSuggestion(
        id=f"{meta['issue_key']}:{source.get('id')}",
        started=_earliest_started(histories + comments, query.date),
        seconds=max(MIN_SUGGESTION_SECONDS, hours_to_seconds(hours)),
        comment=f"Work on {meta['issue_key']} ({meta['issue_summary']}): {change_summary}.",
        change_summary=change_summary,
        changed_fields=changed,
        **meta,
    )


def generate_suggestions(client, query: SuggestionQuery, max_workers: int = 1) -> List[WorklogSuggestion]:
    """Suggest worklogs for ``query.member_name`` on ``query.date``, sorted by start time.

    With ``max_workers > 1`` issues are analysed on a bounded thread pool; ordering comes from the final sort.
    ``JiraClient`` opens one HTTP session per worker thread unless a session was injected into it.
    """
    jql = build_day_jql(query.date, query.project_key)
    excluded = set(query.exclude_issue_keys)
    issues = [i for i in client.search_issues_with_changelog(jql) if i.get("key") not in excluded]
    logger.info("Analysing %d issue(s) updated on %s", len(issues), query.date)

    if max_workers > 1 and len(issues) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(lambda issue: suggest_for_issue(client, issue, query), issues))
    else:
        results = [suggest_for_issue(client, issue, query) for issue in issues]

    return sorted((s for s in results if s is not None), key=lambda s: (s.started, s.id))
