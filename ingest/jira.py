"""
Jira REST v3 client: authenticated GET/POST plus the pagination drivers used by sync and suggestions.

GETs go through storage.retry (backoff on rate limits); POSTs are sent once. Any non-2xx response raises
RemoteRequestError so callers never see a partial payload.
"""

import base64
import logging
import threading
from typing import List, Dict, Any, Optional
from urllib.parse import quote, urljoin

import requests

from errors import RemoteRequestError
from normalize.adf import to_plain_text, to_rich_document
from normalize.models import CreatedWorklog
from normalize.util import to_jira_started, worklog_seconds
from settings import Settings
from storage.retry import perform_request_with_retries

logger = logging.getLogger(__name__)

SEARCH_PATH = "/rest/api/3/search/jql"
ISSUE_FIELDS = "summary,project,worklog,status"

ISSUE_PAGE_SIZE = 100
WORKLOG_PAGE_SIZE = 100
CHANGELOG_PAGE_SIZE = 50
CHANGELOG_MAX_PAGES = 6
COMMENT_PAGE_SIZE = 100
COMMENT_MAX_PAGES = 20
MIN_WORKLOG_SECONDS = 60


def basic_auth_header(email: str, token: str) -> str:
    raw = f"{email}:{token}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


class JiraClient:
    """Client for the Jira endpoints the worklog sync needs."""

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.max_retries = max_retries
        self._shared_session = session
        self._local = threading.local()
        self.headers = {
            "Accept": "application/json",
            "Authorization": basic_auth_header(email, api_token),
            "Cache-Control": "no-cache",
        }

    @property
    def session(self) -> requests.Session:
        """The injected session, else one session per thread (a Session must not be shared across threads)."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    @classmethod
    def from_settings(cls, settings: Settings) -> "JiraClient":
        settings.require_jira()
        return cls(
            settings.jira_base_url,
            settings.jira_email,
            settings.jira_api_token,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
        )

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    @staticmethod
    def _parse(resp: requests.Response) -> Any:
        if not 200 <= resp.status_code < 300:
            raise RemoteRequestError(resp.status_code, resp.text)
        if not resp.content:
            return {}
        return resp.json()

    def get(self, path: str, query: Optional[Dict[str, Any]] = None) -> Any:
        params = {k: str(v) for k, v in (query or {}).items()}
        resp = perform_request_with_retries(
            self.session, self._url(path), self.headers, params, self.timeout, self.max_retries
        )
        return self._parse(resp)

    def post(self, path: str, body: Any, query: Optional[Dict[str, Any]] = None) -> Any:
        params = {k: str(v) for k, v in (query or {}).items()}
        headers = dict(self.headers, **{"Content-Type": "application/json"})
        resp = self.session.post(self._url(path), headers=headers, params=params, json=body, timeout=self.timeout)
        return self._parse(resp)

    # --- pagination drivers ---

    def search_issues(self, jql: str, max_issues: int, fields: str = ISSUE_FIELDS) -> List[Dict[str, Any]]:
        """Return up to ``max_issues`` issues matching ``jql``.

        Stops when the cap is reached, the offset passes the reported total, or a page comes back empty
        (guards against servers that over-report totals).
        """
        issues: List[Dict[str, Any]] = []
        start_at = 0
        while len(issues) < max_issues:
            data = self.get(SEARCH_PATH, {"jql": jql, "fields": fields, "maxResults": ISSUE_PAGE_SIZE, "startAt": start_at})
            page = data.get("issues") or []
            issues.extend(page)
            start_at += int(data.get("maxResults") or len(page) or ISSUE_PAGE_SIZE)
            logger.debug("search page: %d issues (total %s)", len(page), data.get("total"))
            if not page or start_at >= int(data.get("total") or 0):
                break
        return issues[:max_issues]

    def issue_worklogs(self, issue: Dict[str, Any]) -> List[Dict[str, Any]]:
        """All worklogs of an issue, starting from the page embedded in the search response."""
        initial = (issue.get("fields") or {}).get("worklog")
        if not initial:
            return []
        worklogs = list(initial.get("worklogs") or [])
        total = int(initial.get("total") or 0)
        start_at = int(initial.get("startAt") or 0) + int(initial.get("maxResults") or len(worklogs))
        while len(worklogs) < total:
            data = self.get(f"/rest/api/3/issue/{issue.get('id')}/worklog", {"startAt": start_at, "maxResults": WORKLOG_PAGE_SIZE})
            page = data.get("worklogs") or []
            if not page:
                break
            worklogs.extend(page)
            start_at += int(data.get("maxResults") or len(page))
        return worklogs

    def _paginate_bounded(self, path: str, query: Dict[str, Any], items_key: str, page_size: int, max_pages: int) -> List[Dict[str, Any]]:
        """Offset pagination with a hard page ceiling for endpoints known to under-report totals."""
        items: List[Dict[str, Any]] = []
        start_at = 0
        for _ in range(max_pages):
            data = self.get(path, dict(query, maxResults=page_size, startAt=start_at))
            page = data.get(items_key) or []
            items.extend(page)
            start_at += int(data.get("maxResults") or len(page) or page_size)
            if not page or start_at >= int(data.get("total") or 0):
                break
        return items

    def search_issues_with_changelog(self, jql: str, fields: str = ISSUE_FIELDS) -> List[Dict[str, Any]]:
        return self._paginate_bounded(
            SEARCH_PATH, {"jql": jql, "fields": fields, "expand": "changelog"}, "issues", CHANGELOG_PAGE_SIZE, CHANGELOG_MAX_PAGES
        )

    def issue_comments(self, issue_id: str) -> List[Dict[str, Any]]:
        return self._paginate_bounded(f"/rest/api/3/issue/{issue_id}/comment", {}, "comments", COMMENT_PAGE_SIZE, COMMENT_MAX_PAGES)

    # --- single calls ---

    def get_user_groups(self, account_id: str) -> List[str]:
        data = self.get("/rest/api/3/user/groups", {"accountId": account_id})
        groups = data if isinstance(data, list) else (data.get("values") or [])
        return [g.get("name") for g in groups if isinstance(g, dict) and isinstance(g.get("name"), str)]

    def get_current_user(self) -> Dict[str, str]:
        data = self.get("/rest/api/3/myself")
        return {
            "accountId": data.get("accountId") or "",
            "displayName": data.get("displayName") or "",
            "emailAddress": data.get("emailAddress") or "",
        }

    def create_worklog(self, issue_key: str, started: str, seconds: float, comment: str) -> CreatedWorklog:
        """POST a worklog. Duration is floored to one minute and the comment is sent as ADF."""
        payload = {
            "timeSpentSeconds": max(MIN_WORKLOG_SECONDS, int(round(seconds))),
            "started": to_jira_started(started),
            "comment": to_rich_document(comment),
        }
        created = self.post(f"/rest/api/3/issue/{quote(issue_key, safe='')}/worklog", payload)
        logger.info("Created Jira worklog %s on %s (%ss)", created.get("id"), issue_key, payload["timeSpentSeconds"])
        return CreatedWorklog(
            remote_id=str(created.get("id") or ""),
            started=created.get("started") or payload["started"],
            seconds=worklog_seconds(created) or payload["timeSpentSeconds"],
            comment=to_plain_text(created.get("comment")),
        )
