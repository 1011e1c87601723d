"""
Worklog analytics.
Aggregates canonical WorkLogRecords into the totals, trends, heatmaps and per-contributor drilldowns the dashboard
shows. All functions are pure; days are UTC calendar days.
"""
import calendar
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from errors import ValidationError
from normalize.models import WorkLogRecord
from normalize.util import day_key, parse_timestamp

DEFAULT_MONTHLY_TARGET_HOURS = 160.0
WORKING_DAYS_PER_MONTH = 20
MAX_PROGRESS = 1.5
HEATMAP_WEEKS = 12
WEEKDAY_LABELS = ('Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat')
DATE_PRESETS = ('30d', '90d', 'ytd', 'all')


def date_preset_start(preset: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of a dashboard date preset; None means no lower bound."""
    now = now or datetime.now(timezone.utc)
    if preset == 'all':
        return None
    if preset == '30d':
        return now - timedelta(days=30)
    if preset == '90d':
        return now - timedelta(days=90)
    if preset == 'ytd':
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    raise ValidationError('preset', f"Unknown date preset '{preset}', expected one of {', '.join(DATE_PRESETS)}")


def filter_records(
    records: Iterable[WorkLogRecord],
    since: Optional[datetime] = None,
    project: Optional[str] = None,
    author: Optional[str] = None,
    search: Optional[str] = None,
) -> List[WorkLogRecord]:
    """Apply the dashboard filters. ``project``/``author`` of None or 'all' match everything."""
    needle = (search or '').strip().lower()
    out = []
    for r in records:
        if since is not None:
            started = parse_timestamp(r.started)
            if started is None or started < since:
                continue
        if project and project != 'all' and r.project_name != project:
            continue
        if author and author != 'all' and r.author != author:
            continue
        if needle and needle not in f"{r.issue_key} {r.issue_summary}".lower():
            continue
        out.append(r)
    return out


def _hours_by(records: Iterable[WorkLogRecord], key) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for r in records:
        k = key(r)
        if k is None:
            continue
        totals[k] = totals.get(k, 0.0) + r.hours
    return totals


def summarize(records: List[WorkLogRecord]) -> Dict[str, Any]:
    total = sum(r.hours for r in records)
    days = {day_key(r.started) for r in records} - {None}
    return {
        'totalHours': total,
        'activeDays': len(days),
        'issueCount': len({r.issue_key for r in records}),
        'avgDailyHours': total / len(days) if days else 0.0,
    }


def trend_points(records: Iterable[WorkLogRecord]) -> List[Dict[str, Any]]:
    by_day = _hours_by(records, lambda r: day_key(r.started))
    return [{'day': d, 'hours': by_day[d]} for d in sorted(by_day)]


def heatmap(records: Iterable[WorkLogRecord], weeks: int = HEATMAP_WEEKS) -> List[Dict[str, Any]]:
    """Hours per (ISO week starting Monday, weekday Sun..Sat) for the most recent ``weeks`` weeks with data."""
    buckets: Dict[str, List[float]] = {}
    for r in records:
        started = parse_timestamp(r.started)
        if started is None:
            continue
        monday = (started - timedelta(days=started.weekday())).date().isoformat()
        sunday_based = (started.weekday() + 1) % 7
        buckets.setdefault(monday, [0.0] * 7)[sunday_based] += r.hours
    return [{'week': w, 'values': buckets[w]} for w in sorted(buckets)[-weeks:]]


def _top(totals: Dict[str, float], limit: int) -> List[Dict[str, Any]]:
    ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{'name': name, 'hours': hours} for name, hours in ranked[:limit]]


def top_projects(records: Iterable[WorkLogRecord], limit: int = 8) -> List[Dict[str, Any]]:
    return _top(_hours_by(records, lambda r: r.project_name), limit)


def top_authors(records: Iterable[WorkLogRecord], limit: int = 8) -> List[Dict[str, Any]]:
    return _top(_hours_by(records, lambda r: r.author), limit)


def top_teams(records: Iterable[WorkLogRecord], limit: int = 8) -> List[Dict[str, Any]]:
    """Hours per team label; a record with several teams counts toward each of them."""
    totals: Dict[str, float] = {}
    for r in records:
        for team in r.team_names:
            totals[team] = totals.get(team, 0.0) + r.hours
    return _top(totals, limit)


def top_issues(records: Iterable[WorkLogRecord], limit: int = 12) -> List[Dict[str, Any]]:
    issues: Dict[str, Dict[str, Any]] = OrderedDict()
    for r in records:
        entry = issues.setdefault(r.issue_key, {'key': r.issue_key, 'summary': r.issue_summary, 'project': r.project_name, 'hours': 0.0})
        entry['summary'] = r.issue_summary
        entry['hours'] += r.hours
    return sorted(issues.values(), key=lambda e: (-e['hours'], e['key']))[:limit]


def dashboard(records: List[WorkLogRecord]) -> Dict[str, Any]:
    """Everything the overview page shows, for an already filtered record list."""
    projects = top_projects(records)
    authors = top_authors(records)
    return {
        'metrics': summarize(records),
        'topProjects': projects,
        'topAuthors': authors,
        'topTeams': top_teams(records),
        'topIssues': top_issues(records),
        'trend': trend_points(records),
        'heatmap': heatmap(records),
        'strongestProject': projects[0]['name'] if projects else 'n/a',
        'strongestAuthor': authors[0]['name'] if authors else 'n/a',
        'teamMembers': sorted({r.author for r in records}),
    }


def _month_bounds(month: str):
    try:
        year, mon = (int(p) for p in month.split('-'))
        days = calendar.monthrange(year, mon)[1]
    except (ValueError, calendar.IllegalMonthError):
        raise ValidationError('month', f"Invalid month '{month}', expected YYYY-MM")
    return year, mon, days


def contributor_drilldown(
    records: Iterable[WorkLogRecord],
    author: str,
    month: Optional[str] = None,
    targets: Optional[Dict[str, float]] = None,
) -> Optional[Dict[str, Any]]:
    """Per-contributor view for one month; None when the author has no records at all."""
    mine = [r for r in records if r.author == author]
    if not mine:
        return None
    month = month or datetime.now(timezone.utc).strftime('%Y-%m')
    year, mon, days_in_month = _month_bounds(month)

    target = (targets or {}).get(author, DEFAULT_MONTHLY_TARGET_HOURS)
    day_hours = _hours_by(mine, lambda r: day_key(r.started))
    month_days = [f"{year:04d}-{mon:02d}-{d:02d}" for d in range(1, days_in_month + 1)]
    month_total = sum(day_hours.get(d, 0.0) for d in month_days)

    return {
        'author': author,
        'month': month,
        'totalHours': sum(r.hours for r in mine),
        'activeDays': len(day_hours),
        'projects': sorted({r.project_name for r in mine}),
        'topIssues': top_issues(mine, limit=20),
        'dailyHours': [{'day': d, 'hours': day_hours.get(d, 0.0)} for d in month_days],
        'targetHoursMonth': target,
        'targetConfigured': author in (targets or {}),
        'dailyTarget': target / WORKING_DAYS_PER_MONTH,
        'monthHours': month_total,
        'monthProgress': min(month_total / target, MAX_PROGRESS) if target > 0 else 0.0,
    }
