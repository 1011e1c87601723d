"""
CLI entry point for the worklog sync. Wires the pipeline: Jira ingest -> canonical records -> store -> analytics,
plus worklog suggestions, worklog creation and contributor targets. Results are printed as JSON.
"""

import argparse
import json
import logging
import os
import sys

from errors import WorklogError
from scoring.metrics import DATE_PRESETS, contributor_drilldown, dashboard, date_preset_start, filter_records
from service import WorklogService, password_gate
from settings import load_settings
from storage.retry import configure_retry
from storage.sqlite_store import SqliteStore

# failure messages are truncated the way the dashboard reports them
MAX_ERROR_CHARS = 220


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _build_gate(args, settings):
    """The CLI runs as the local operator; when an app password is configured it must be supplied."""
    if not settings.app_password:
        return lambda: True
    supplied = args.password or os.getenv('WORKLOG_PASSWORD')
    return lambda: password_gate(supplied, settings.app_password)


def _cmd_sync(service, args):
    records = service.sync()
    _print_json({'synced': len(records), 'persisted': service.store is not None})


def _cmd_records(service, args):
    records = service.load_records()
    if args.limit:
        records = records[-args.limit:]
    _print_json([r.to_dict() for r in records])


def _cmd_summary(service, args):
    records = filter_records(
        service.load_records(),
        since=date_preset_start(args.preset),
        project=args.project,
        author=args.author,
        search=args.search,
    )
    _print_json(dashboard(records))


def _cmd_member(service, args):
    records = service.load_records()
    view = contributor_drilldown(records, args.author, month=args.month, targets=service.read_targets())
    if view is None:
        print(f"No worklogs found for {args.author}", file=sys.stderr)
        return 1
    _print_json(view)


def _cmd_suggest(service, args):
    suggestions = service.suggest({
        'member': args.member,
        'accountId': args.account_id,
        'date': args.date,
        'projectKey': args.project,
        'existingIssueKeys': args.exclude or [],
    })
    _print_json([s.to_dict() for s in suggestions])


def _cmd_create_worklog(service, args):
    created = service.create_worklog({
        'issueId': args.issue_id,
        'issueKey': args.issue_key,
        'issueSummary': args.issue_summary,
        'projectKey': args.project_key,
        'projectName': args.project_name,
        'member': args.member,
        'memberAccountId': args.member_account_id,
        'started': args.started,
        'seconds': args.seconds,
        'comment': args.comment,
    })
    _print_json({'created': created.to_dict()})


def _cmd_targets(service, args):
    _print_json([t.to_dict() for t in service.list_targets()])


def _cmd_set_target(service, args):
    _print_json(service.set_target(args.author, args.hours).to_dict())


def _cmd_migrate(service, args):
    if not service.settings.db_path:
        print("Persistence is disabled; set WORKLOG_DB_PATH or --db", file=sys.stderr)
        return 1
    with SqliteStore(service.settings.db_path, create_schema=False) as store:
        added = store.migrate()
    _print_json({'addedColumns': added})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Jira worklog sync and analytics")
    parser.add_argument("--config", type=str, default=None, help="YAML config file (overrides WORKLOG_CONFIG env)")
    parser.add_argument("--db", type=str, default=None, help="SQLite database path (overrides WORKLOG_DB_PATH env)")
    parser.add_argument("--password", type=str, default=None, help="App password (or set WORKLOG_PASSWORD env)")
    parser.add_argument("--timeout", type=float, default=None, help="HTTP timeout in seconds")
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts for Jira GET requests")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds between retries")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent issue lookups when generating suggestions")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sync", help="Fetch all worklogs from Jira and upsert them into the store")
    p.set_defaults(handler=_cmd_sync)

    p = sub.add_parser("records", help="Print canonical worklog records")
    p.add_argument("--limit", type=int, default=0, help="Only print the most recent N records")
    p.set_defaults(handler=_cmd_records)

    p = sub.add_parser("summary", help="Print dashboard analytics")
    p.add_argument("--preset", choices=DATE_PRESETS, default="all")
    p.add_argument("--project", type=str, default=None, help="Project name filter")
    p.add_argument("--author", type=str, default=None, help="Author filter")
    p.add_argument("--search", type=str, default=None, help="Substring of issue key or summary")
    p.set_defaults(handler=_cmd_summary)

    p = sub.add_parser("member", help="Print a contributor drilldown")
    p.add_argument("author", type=str)
    p.add_argument("--month", type=str, default=None, help="Month (YYYY-MM), defaults to the current month")
    p.set_defaults(handler=_cmd_member)

    p = sub.add_parser("suggest", help="Suggest worklogs from same-day issue activity")
    p.add_argument("--member", type=str, required=True, help="Display name of the Jira API user")
    p.add_argument("--date", type=str, required=True, help="Day (YYYY-MM-DD)")
    p.add_argument("--account-id", type=str, default=None)
    p.add_argument("--project", type=str, default=None, help="Project key filter ('all' for none)")
    p.add_argument("--exclude", type=str, nargs="*", help="Issue keys to skip")
    p.set_defaults(handler=_cmd_suggest)

    p = sub.add_parser("create-worklog", help="Create a worklog in Jira")
    p.add_argument("--issue-id", type=str, required=True)
    p.add_argument("--issue-key", type=str, required=True)
    p.add_argument("--issue-summary", type=str, required=True)
    p.add_argument("--project-key", type=str, required=True)
    p.add_argument("--project-name", type=str, required=True)
    p.add_argument("--member", type=str, required=True)
    p.add_argument("--member-account-id", type=str, default=None)
    p.add_argument("--started", type=str, required=True, help="ISO-8601 start timestamp")
    p.add_argument("--seconds", type=float, required=True)
    p.add_argument("--comment", type=str, default="")
    p.set_defaults(handler=_cmd_create_worklog)

    p = sub.add_parser("targets", help="List contributor targets")
    p.set_defaults(handler=_cmd_targets)

    p = sub.add_parser("set-target", help="Set a contributor's monthly target hours")
    p.add_argument("author", type=str)
    p.add_argument("hours", type=float)
    p.set_defaults(handler=_cmd_set_target)

    p = sub.add_parser("migrate", help="Add missing columns to an older worklog table")
    p.set_defaults(handler=_cmd_migrate)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    configure_retry(backoff_base=args.backoff_base)

    try:
        settings = load_settings(args.config).with_overrides(
            db_path=args.db,
            request_timeout=args.timeout,
            max_retries=args.max_retries,
            suggestion_workers=args.workers,
        )
        service = WorklogService.from_settings(settings, _build_gate(args, settings))
        return args.handler(service, args) or 0
    except WorklogError as ex:
        print(f"Error: {str(ex)[:MAX_ERROR_CHARS]}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
