"""
Runtime configuration.

Settings are resolved from (lowest to highest precedence): built-in defaults, an optional YAML file,
environment variables, and explicit overrides passed by the CLI.

Environment variables:
- JIRA_BASE_URL, JIRA_EMAIL, JIRA_API_TOKEN: Jira credentials (required for remote calls)
- JIRA_JQL: issue query used by a full sync
- JIRA_MAX_ISSUES: maximum number of issues fetched by a full sync
- JIRA_TEAM_GROUP_PREFIX: case-insensitive substring a Jira group must contain to count as a team
- JIRA_TEAM_FIELD: custom field id holding issue-level team names (e.g. customfield_10001)
- WORKLOG_DB_PATH: SQLite database path; empty disables persistence
- WORKLOG_APP_PASSWORD: password checked by the service gate
- WORKLOG_REQUEST_TIMEOUT, WORKLOG_MAX_RETRIES, WORKLOG_SUGGESTION_WORKERS
- WORKLOG_CONFIG: path to a YAML file with any of the keys above (lower-case setting names)
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from errors import ConfigError

DEFAULT_JQL = "worklogDate >= startOfMonth(-2)"

# setting name -> environment variable
ENV_VARS = {
    'jira_base_url': 'JIRA_BASE_URL',
    'jira_email': 'JIRA_EMAIL',
    'jira_api_token': 'JIRA_API_TOKEN',
    'jql': 'JIRA_JQL',
    'max_issues': 'JIRA_MAX_ISSUES',
    'team_group_prefix': 'JIRA_TEAM_GROUP_PREFIX',
    'team_field': 'JIRA_TEAM_FIELD',
    'db_path': 'WORKLOG_DB_PATH',
    'app_password': 'WORKLOG_APP_PASSWORD',
    'request_timeout': 'WORKLOG_REQUEST_TIMEOUT',
    'max_retries': 'WORKLOG_MAX_RETRIES',
    'suggestion_workers': 'WORKLOG_SUGGESTION_WORKERS',
}


@dataclass(frozen=True)
class Settings:
    jira_base_url: str = ''
    jira_email: str = ''
    jira_api_token: str = ''
    jql: str = DEFAULT_JQL
    max_issues: int = 100
    team_group_prefix: str = ''
    team_field: str = ''
    db_path: str = ''
    app_password: str = ''
    request_timeout: float = 30.0
    max_retries: int = 3
    suggestion_workers: int = 1

    def __post_init__(self):
        object.__setattr__(self, 'team_group_prefix', (self.team_group_prefix or '').strip().lower())
        object.__setattr__(self, 'team_field', (self.team_field or '').strip())
        if self.max_issues <= 0:
            raise ConfigError(f"max_issues must be positive, got {self.max_issues}")
        if self.suggestion_workers <= 0:
            raise ConfigError(f"suggestion_workers must be positive, got {self.suggestion_workers}")

    @property
    def store_enabled(self) -> bool:
        return bool(self.db_path)

    def require_jira(self) -> None:
        """Raise ConfigError naming every missing Jira credential."""
        missing = [ENV_VARS[name] for name in ('jira_base_url', 'jira_email', 'jira_api_token') if not getattr(self, name)]
        if missing:
            raise ConfigError('Missing required environment variable(s): ' + ', '.join(missing))

    def with_overrides(self, **overrides: Any) -> 'Settings':
        """Return a copy with non-None overrides applied (used for CLI flags)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(values)) if values else self


def _coerce(values: Mapping[str, Any]) -> Dict[str, Any]:
    types = {f.name: f.type for f in fields(Settings)}
    out: Dict[str, Any] = {}
    for key, raw in values.items():
        if key not in types:
            continue
        kind = types[key]
        try:
            if kind in (int, 'int'):
                out[key] = int(raw)
            elif kind in (float, 'float'):
                out[key] = float(raw)
            else:
                out[key] = '' if raw is None else str(raw)
        except (TypeError, ValueError) as ex:
            raise ConfigError(f"Invalid value for {key}: {raw!r} ({ex})")
    return out


def _load_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found at: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = yaml.safe_load(f) or {}
    except yaml.YAMLError as ex:
        raise ConfigError(f"Failed to parse config file {path}: {ex}")
    if not isinstance(doc, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return doc


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from defaults, an optional YAML file and the environment."""
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}

    config_path = path or env.get('WORKLOG_CONFIG')
    if config_path:
        values.update(_load_yaml(config_path))

    for name, var in ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw != '':
            values[name] = raw

    return Settings(**_coerce(values))


__all__ = ["Settings", "load_settings", "DEFAULT_JQL"]
