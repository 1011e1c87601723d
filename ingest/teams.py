"""
Per-run team lookup: maps a Jira account id to the Jira groups that count as teams.
"""
import logging
from typing import Dict, Tuple

import requests

from errors import RemoteRequestError

logger = logging.getLogger(__name__)


class TeamResolver:
    """Memoizes group lookups for the lifetime of one sync run.

    Create one resolver per sync call; it is never shared across runs. A failed lookup is cached as "no teams"
    so it only costs that actor their team attribution.
    """

    def __init__(self, client, group_filter: str = ''):
        self.client = client
        self.group_filter = (group_filter or '').strip().lower()
        self._cache: Dict[str, Tuple[str, ...]] = {}

    def _matches(self, name: str) -> bool:
        return not self.group_filter or self.group_filter in name.lower()

    def resolve(self, account_id: str) -> Tuple[str, ...]:
        if not account_id:
            return ()
        if account_id in self._cache:
            return self._cache[account_id]
        try:
            names = self.client.get_user_groups(account_id)
        except (RemoteRequestError, requests.RequestException) as ex:
            logger.warning("Group lookup failed for %s: %s", account_id, ex)
            self._cache[account_id] = ()
            return ()
        teams: Dict[str, None] = {}
        for raw in names:
            name = (raw or '').strip()
            if name and self._matches(name):
                teams.setdefault(name, None)
        self._cache[account_id] = tuple(teams)
        return self._cache[account_id]

    __call__ = resolve

    @property
    def cache_size(self) -> int:
        return len(self._cache)
