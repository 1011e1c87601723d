"""
Canonical value records produced by the sync and suggestion pipelines.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

UNKNOWN_ACCOUNT = 'unknown-account'
UNKNOWN_USER = 'Unknown user'
UNKNOWN_PROJECT_KEY = 'UNKNOWN'
UNKNOWN_PROJECT_NAME = 'Unknown project'


@dataclass(frozen=True)
class WorkLogRecord:
    """
    Normalized Jira worklog, denormalized with its issue metadata.
    ``id`` is ``{issue_id}:{raw worklog id}`` since raw worklog ids are only unique per issue.
    """
    id: str
    issue_id: str
    issue_key: str
    issue_summary: str
    project_key: str
    project_name: str
    author: str
    started: str
    seconds: int
    author_account_id: str = UNKNOWN_ACCOUNT
    team_names: Tuple[str, ...] = ()
    comment: str = ''

    @property
    def hours(self) -> float:
        return self.seconds / 3600.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'issueId': self.issue_id,
            'issueKey': self.issue_key,
            'issueSummary': self.issue_summary,
            'projectKey': self.project_key,
            'projectName': self.project_name,
            'author': self.author,
            'authorAccountId': self.author_account_id,
            'teamNames': list(self.team_names),
            'started': self.started,
            'seconds': self.seconds,
            'comment': self.comment,
        }


@dataclass(frozen=True)
class ContributorTarget:
    """Monthly hour target for one author. A missing target means "not configured", not zero."""
    author: str
    target_hours: float
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'author': self.author, 'targetHours': self.target_hours, 'updatedAt': self.updated_at}


@dataclass(frozen=True)
class WorklogSuggestion:
    """Unpersisted candidate worklog inferred from issue activity."""
    id: str
    issue_id: str
    issue_key: str
    issue_summary: str
    project_key: str
    project_name: str
    started: str
    seconds: int
    comment: str
    change_summary: str
    changed_fields: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'issueId': self.issue_id,
            'issueKey': self.issue_key,
            'issueSummary': self.issue_summary,
            'projectKey': self.project_key,
            'projectName': self.project_name,
            'started': self.started,
            'seconds': self.seconds,
            'comment': self.comment,
            'changeSummary': self.change_summary,
            'changedFields': list(self.changed_fields),
        }


@dataclass(frozen=True)
class CreatedWorklog:
    """Result of posting a worklog to Jira."""
    remote_id: str
    started: str
    seconds: int
    comment: str

    def to_dict(self) -> Dict[str, Any]:
        return {'remoteId': self.remote_id, 'started': self.started, 'seconds': self.seconds, 'normalizedComment': self.comment}
