"""
Service entry points wiring the pipeline: Jira ingest -> canonical records -> store, plus suggestions, worklog
creation and contributor targets.

Every public method checks the authorization gate before doing any work, and validates its input before any remote
or store call.
"""

import hmac
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Optional

from correlate.suggestions import SuggestionQuery, generate_suggestions, parse_day
from errors import AuthorizationError, ConfigError, ValidationError
from ingest.jira import ISSUE_FIELDS, JiraClient
from ingest.teams import TeamResolver
from normalize.models import UNKNOWN_ACCOUNT, CreatedWorklog, ContributorTarget, WorkLogRecord, WorklogSuggestion
from normalize.util import canonicalize_issue, normalize_person_name, parse_timestamp
from settings import Settings
from storage.sqlite_store import SqliteStore
from storage.worklog_store import WorklogStore

logger = logging.getLogger(__name__)

MAX_TARGET_HOURS = 400
ISSUE_METADATA_FIELDS = ('issueKey', 'issueId', 'issueSummary', 'projectKey', 'projectName')
SELF_ONLY_MESSAGE = "Suggestion generation is restricted: only the Jira API user can generate own worklog suggestions."


def password_gate(supplied: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time password check; an unset expected password never authorizes."""
    if not expected or not isinstance(supplied, str):
        return False
    return hmac.compare_digest(supplied.encode('utf-8'), expected.encode('utf-8'))


def _require_text(payload: Dict[str, Any], field: str, message: Optional[str] = None) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, message or f"Missing {field}")
    return value


def _optional_text(payload: Dict[str, Any], field: str) -> Optional[str]:
    value = payload.get(field)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _require_number(payload: Dict[str, Any], field: str, low: float, high: Optional[float] = None, low_inclusive: bool = True) -> float:
    value = payload.get(field)
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            raise ValidationError(field, f"Invalid {field}: not a number")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(field, f"Invalid {field}: not a finite number")
    too_low = value < low if low_inclusive else value <= low
    if too_low or (high is not None and value > high):
        raise ValidationError(field, f"Invalid {field}: out of range")
    return float(value)


class WorklogService:
    """Facade used by the CLI (and any HTTP layer) to run sync, suggestion and target operations."""

    def __init__(self, settings: Settings, gate: Callable[[], bool], client: Optional[JiraClient] = None, store: Optional[WorklogStore] = None):
        self.settings = settings
        self.gate = gate
        self._client = client
        self.store = store

    @classmethod
    def from_settings(cls, settings: Settings, gate: Callable[[], bool]) -> 'WorklogService':
        store = WorklogStore(SqliteStore(settings.db_path)) if settings.store_enabled else None
        return cls(settings, gate, store=store)

    @property
    def client(self) -> JiraClient:
        if self._client is None:
            self._client = JiraClient.from_settings(self.settings)
        return self._client

    def _authorize(self):
        if not self.gate():
            raise AuthorizationError("Unauthorized")

    def _require_store(self) -> WorklogStore:
        if self.store is None:
            raise ConfigError("Persistence is disabled; set WORKLOG_DB_PATH to enable it")
        return self.store

    # --- sync ---

    def fetch_worklogs(self) -> List[WorkLogRecord]:
        """Fetch and canonicalize every worklog matched by the configured JQL, sorted by started."""
        fields = ISSUE_FIELDS + (f",{self.settings.team_field}" if self.settings.team_field else "")
        issues = self.client.search_issues(self.settings.jql, self.settings.max_issues, fields=fields)
        resolver = TeamResolver(self.client, self.settings.team_group_prefix)
        records: List[WorkLogRecord] = []
        for issue in issues:
            worklogs = self.client.issue_worklogs(issue)
            records.extend(canonicalize_issue(issue, worklogs, resolver, self.settings.team_field))
        logger.info("Fetched %d worklog(s) from %d issue(s); %d team lookup(s)", len(records), len(issues), resolver.cache_size)
        return sorted(records, key=lambda r: r.started)

    def sync(self) -> List[WorkLogRecord]:
        """Full resync: fetch from Jira and, when a store is configured, upsert everything."""
        self._authorize()
        records = self.fetch_worklogs()
        if self.store is not None:
            self.store.upsert_worklogs(records)
        return records

    def load_records(self) -> List[WorkLogRecord]:
        """Records for analytics: the store's copy (seeded by one sync when empty), or a live fetch without a store."""
        self._authorize()
        if self.store is None:
            return self.fetch_worklogs()
        records = self.store.read_all_worklogs()
        if not records:
            records = self.fetch_worklogs()
            self.store.upsert_worklogs(records)
        return records

    def upsert_records(self, records: Iterable[WorkLogRecord]) -> int:
        self._authorize()
        return self._require_store().upsert_worklogs(records)

    # --- targets ---

    def read_targets(self) -> Dict[str, float]:
        self._authorize()
        if self.store is None:
            return {}
        return self.store.read_contributor_targets()

    def list_targets(self) -> List[ContributorTarget]:
        self._authorize()
        if self.store is None:
            return []
        return self.store.list_contributor_targets()

    def set_target(self, author: Any, target_hours: Any) -> ContributorTarget:
        self._authorize()
        payload = {'author': author, 'targetHours': target_hours}
        name = _require_text(payload, 'author').strip()
        hours = _require_number(payload, 'targetHours', 0, MAX_TARGET_HOURS)
        return self._require_store().upsert_contributor_target(name, hours)

    # --- suggestions ---

    def _check_self_only(self, member: str, account_id: Optional[str]):
        me = self.client.get_current_user()
        requested = normalize_person_name(member)
        expected_name = normalize_person_name(me.get('displayName'))
        expected_email = normalize_person_name(me.get('emailAddress'))
        expected_account = (me.get('accountId') or '').strip()
        if expected_name and requested == expected_name:
            return
        if expected_email and requested == expected_email:
            return
        if expected_account and account_id and account_id == expected_account:
            return
        raise AuthorizationError(SELF_ONLY_MESSAGE)

    def suggest(self, payload: Dict[str, Any]) -> List[WorklogSuggestion]:
        """Generate suggestions for ``{member, accountId?, date, projectKey?, existingIssueKeys[]}``."""
        self._authorize()
        member = _require_text(payload, 'member', "Missing member")
        day = _require_text(payload, 'date', "Missing date")
        parse_day(day)
        account_id = _optional_text(payload, 'accountId')
        project_key = _optional_text(payload, 'projectKey')
        if project_key == 'all':
            project_key = None
        existing = payload.get('existingIssueKeys') or []
        if not isinstance(existing, (list, tuple)):
            raise ValidationError('existingIssueKeys', "existingIssueKeys must be a list")

        self._check_self_only(member, account_id)
        query = SuggestionQuery(
            member_name=member,
            date=day,
            account_id=account_id,
            project_key=project_key,
            exclude_issue_keys=tuple(k for k in existing if isinstance(k, str)),
        )
        return generate_suggestions(self.client, query, max_workers=self.settings.suggestion_workers)

    # --- worklog creation ---

    def create_worklog(self, payload: Dict[str, Any]) -> CreatedWorklog:
        """Post one worklog to Jira and mirror it into the store when persistence is enabled."""
        self._authorize()
        meta = {f: _require_text(payload, f, "Missing issue metadata") for f in ISSUE_METADATA_FIELDS}
        member = _require_text(payload, 'member', "Missing member")
        started = _require_text(payload, 'started', "Missing started datetime")
        if parse_timestamp(started) is None:
            raise ValidationError('started', "Invalid started datetime")
        seconds = _require_number(payload, 'seconds', 0, low_inclusive=False)
        comment = payload.get('comment') if isinstance(payload.get('comment'), str) else ''

        created = self.client.create_worklog(meta['issueKey'], started, seconds, comment)
        result = CreatedWorklog(
            remote_id=created.remote_id,
            started=created.started,
            seconds=created.seconds,
            comment=created.comment or comment,
        )
        if self.store is not None:
            record = WorkLogRecord(
                id=f"{meta['issueId']}:{created.remote_id}",
                issue_id=meta['issueId'],
                issue_key=meta['issueKey'],
                issue_summary=meta['issueSummary'],
                project_key=meta['projectKey'],
                project_name=meta['projectName'],
                author=member,
                author_account_id=_optional_text(payload, 'memberAccountId') or UNKNOWN_ACCOUNT,
                started=result.started,
                seconds=result.seconds,
                comment=result.comment,
            )
            self.store.upsert_worklogs([record])
        return result
