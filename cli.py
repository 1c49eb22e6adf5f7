"""
CLI entry point for worklog-synth. Wires the pipeline: collect -> match -> allocate -> normalize -> report/submit,
plus direct Tempo worklog management.
"""

import argparse
import json
import os
import sys
import webbrowser
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from errors import ConfigurationError, SubmissionFailure, TimesheetError
from ingest.git import GitCommitSource
from ingest.google import GoogleWorkspaceSource
from ingest.jira import JiraClient
from ingest.tempo import TempoClient
from report.renderer import format_hours, render
from settings import Settings
from storage.cache import Cache, configure_retry
from storage.retry import configure_retry_from_env
from timesheet import TimesheetOrchestrator

FILE_FORMATS = ("html", "md", "csv", "json")
CACHE_ONLY_COMMANDS = ("cache",)


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _confirm(prompt: str, force: bool) -> bool:
    if force:
        return True
    return input(f"{prompt} [y/N]: ").strip().lower() in ("y", "yes")


def _print_cache_get(cache: Cache, key: str):
    entry = cache.get(key)
    if entry is None:
        print(f"Cache key not found: {key}")
    else:
        _print_json(entry)


def _remove_cache_key(cache: Cache, key: str, force: bool):
    if not _confirm(f"Remove cache key '{key}' from {cache.path}?", force):
        print("Aborted cache key removal.")
        return
    removed = cache.delete_key(key)
    if removed:
        print(f"Removed {removed} row(s) for key: {key}")
    else:
        print(f"Cache key not found: {key}")


def _clear_cache(cache: Cache, force: bool):
    if not _confirm(f"Clear the cache at {cache.path}? This cannot be undone.", force):
        print("Aborted cache clear.")
        return
    cache.clear()
    print(f"Cleared cache at {cache.path}")


def cmd_cache(args) -> int:
    """Inspect or manage a persistent response cache."""
    with Cache(args.cache or "cache.db") as cache:
        flag_actions = [
            (args.info, lambda: _print_json(cache.stats())),
            (args.clear, lambda: _clear_cache(cache, args.force)),
            (args.list, lambda: _print_json(cache.list_keys(limit=1000))),
            (bool(args.get), lambda: _print_cache_get(cache, args.get)),
            (bool(args.remove), lambda: _remove_cache_key(cache, args.remove, args.force)),
        ]
        for enabled, handler in flag_actions:
            if enabled:
                handler()
                return 0
    print("Nothing to do: pass --info, --list, --get, --remove or --clear")
    return 1


def _open_file_in_browser(path: str):
    """Open a file URL in the system default web browser."""
    webbrowser.open("file://" + os.path.abspath(path))


def write_output(fmt: str, rendered: str, args, week_start: str = ""):
    """Write file formats to disk (optionally opening HTML in a browser); print everything else."""
    if fmt not in FILE_FORMATS:
        print(rendered)
        return
    stamp = week_start or datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
    out_path = args.out_file.strip() or f"timesheet_{stamp}.{fmt}"
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' keeps csv rows intact on Windows
    with open(out_path, "w", encoding="utf-8", newline="") as f:
        f.write(rendered)
    print(f"Wrote report to {out_path}")
    if getattr(args, "open", False) and fmt == "html":
        try:
            _open_file_in_browser(out_path)
        except webbrowser.Error:
            print("Failed to open browser automatically; file saved at", out_path)


def current_monday(today: Optional[date] = None) -> str:
    today = today or date.today()
    return (today - timedelta(days=today.weekday())).isoformat()


def configure_logging(verbose: bool):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _open_cache(args) -> Cache:
    return Cache(args.cache) if args.cache else Cache()


def build_clients(settings: Settings, cache: Optional[Cache]):
    jira = JiraClient(
        settings.jira_email,
        settings.jira_token,
        settings.jira_base_url,
        account_field_id=settings.account_field_id,
        story_point_fields=settings.tuning.get('story_point_fields'),
        cache=cache,
    )
    tempo = TempoClient(settings.tempo_token, jira, default_role=settings.default_role)
    return jira, tempo


def build_orchestrator(settings: Settings, args, cache: Optional[Cache]) -> TimesheetOrchestrator:
    jira, tempo = build_clients(settings, cache)
    return TimesheetOrchestrator(
        tracker=jira,
        sink=tempo,
        commit_source=GitCommitSource(),
        signal_source=GoogleWorkspaceSource(settings.google_token_path),
        projects_dir=args.projects_dir or settings.projects_dir,
        author=args.author or settings.jira_email,
        tuning=settings.tuning,
        first_day_meeting_issue=settings.first_day_meeting_issue,
        cache=cache,
    )


def cmd_generate(args, settings: Settings, cache: Optional[Cache]) -> int:
    """Generate (and with --submit, create) the Monday to Thursday timesheet."""
    week_start = args.week_start or current_monday()
    orchestrator = build_orchestrator(settings, args, cache)
    try:
        plan = orchestrator.generate_week(week_start, dry_run=not args.submit)
    except ValueError as ex:
        print(f"Error: {ex}")
        return 2
    fmt = (args.output or "text").lower()
    rendered = render(plan, fmt=fmt, generated_at=datetime.now(timezone.utc).isoformat())
    write_output(fmt, rendered, args, week_start=week_start)
    if args.submit and any(e.startswith("Failed to create worklog") for e in plan.errors):
        return 1
    return 0


def _worklog_line(w: dict) -> str:
    issue = (w.get('issue') or {}).get('key') or (w.get('issue') or {}).get('id', '?')
    hours = format_hours((w.get('timeSpentSeconds') or 0) / 3600.0)
    return f"{w.get('tempoWorklogId', '?')}  {w.get('startDate', '')}  {issue}: {hours} - {w.get('description') or ''}"


def cmd_worklogs(args, settings: Settings, cache: Optional[Cache]) -> int:
    _, tempo = build_clients(settings, cache)
    end = args.end or args.start
    worklogs = tempo.get_worklogs(args.start, end)
    if args.json:
        _print_json(worklogs)
        return 0
    if not worklogs:
        print(f"No worklogs between {args.start} and {end}")
        return 0
    for w in worklogs:
        print(_worklog_line(w))
    total = sum((w.get('timeSpentSeconds') or 0) for w in worklogs) / 3600.0
    print(f"Total: {format_hours(total)} in {len(worklogs)} worklogs")
    return 0


def cmd_create(args, settings: Settings, cache: Optional[Cache]) -> int:
    _, tempo = build_clients(settings, cache)
    worklog = tempo.create_worklog(
        issue_key=args.issue_key,
        hours=args.hours,
        date=args.date or date.today().isoformat(),
        description=args.description,
        start_time=args.start_time,
        role=args.role,
        account_key=args.account,
    )
    print(f"Created worklog {worklog.get('tempoWorklogId')} for {args.issue_key}: {format_hours(args.hours)}")
    return 0


def cmd_update(args, settings: Settings, cache: Optional[Cache]) -> int:
    _, tempo = build_clients(settings, cache)
    worklog = tempo.update_worklog(
        args.worklog_id, args.hours, date=args.date, description=args.description, start_time=args.start_time, role=args.role, account_key=args.account
    )
    print(f"Updated worklog {worklog.get('tempoWorklogId', args.worklog_id)}: {format_hours(args.hours)}")
    return 0


def cmd_delete(args, settings: Settings, cache: Optional[Cache]) -> int:
    if not _confirm(f"Delete worklog {args.worklog_id}?", args.force):
        print("Aborted worklog deletion.")
        return 1
    _, tempo = build_clients(settings, cache)
    tempo.delete_worklog(args.worklog_id)
    print(f"Deleted worklog {args.worklog_id}")
    return 0


def cmd_attributes(args, settings: Settings, cache: Optional[Cache]) -> int:
    _, tempo = build_clients(settings, cache)
    _print_json(tempo.get_work_attributes())
    return 0


def cmd_roles(args, settings: Settings, cache: Optional[Cache]) -> int:
    _, tempo = build_clients(settings, cache)
    _print_json(tempo.get_roles())
    return 0


def cmd_log_meeting(args, settings: Settings, cache: Optional[Cache]) -> int:
    _, tempo = build_clients(settings, cache)
    issue_key, worklog = tempo.log_sprint_meeting(args.project_key, args.minutes, args.description, date=args.date)
    print(f"Logged {args.minutes:g} min on {issue_key} (worklog {worklog.get('tempoWorklogId')})")
    return 0


COMMANDS = {
    'generate': cmd_generate,
    'worklogs': cmd_worklogs,
    'create': cmd_create,
    'update': cmd_update,
    'delete': cmd_delete,
    'attributes': cmd_attributes,
    'roles': cmd_roles,
    'log-meeting': cmd_log_meeting,
}


def _add_worklog_options(p: argparse.ArgumentParser):
    p.add_argument("--date", type=str, default=None, help="Worklog date (YYYY-MM-DD, default today)")
    p.add_argument("--description", type=str, default=None)
    p.add_argument("--start-time", type=str, default=None, help="Start time (HH:MM:SS)")
    p.add_argument("--role", type=str, default=None, help="Role attribute value (default DEFAULT_ROLE)")
    p.add_argument("--account", type=str, default=None, help="Account key (default: the issue's account)")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    common.add_argument("--cache", type=str, default="", help="Path to SQLite cache file (default: in-memory)")
    common.add_argument("--env-file", type=str, default="", help="Load environment variables from this file instead of ./.env")
    # retry/backoff knobs; TIMESHEET_MAX_RETRIES, TIMESHEET_BACKOFF_BASE, TIMESHEET_BACKOFF_JITTER,
    # TIMESHEET_MAX_BACKOFF and TIMESHEET_HTTP_TIMEOUT set the defaults
    common.add_argument("--max-retries", type=int, default=None, help="Maximum retry attempts for HTTP requests")
    common.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds")
    common.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff")
    common.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds")

    parser = argparse.ArgumentParser(prog="worklog-synth", description="Build Tempo timesheets from git, e-mail and calendar activity")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("generate", parents=[common], help="Generate the Monday-Thursday timesheet (dry run unless --submit)")
    p.add_argument("--week-start", type=str, default="", help="Monday of the week (YYYY-MM-DD, default this week)")
    p.add_argument("--projects-dir", type=str, default="", help="Directory holding git repositories (default DEFAULT_PROJECTS_DIR)")
    p.add_argument("--author", type=str, default="", help="Git author filter (default JIRA_EMAIL)")
    p.add_argument("--submit", action="store_true", help="Create the worklogs in Tempo")
    p.add_argument("--output", type=str, default="text", help="Output format (text, md, csv, json, html)")
    p.add_argument("--out-file", type=str, default="", help="Output file path for html/md/csv/json")
    p.add_argument("--open", action="store_true", help="Open the generated HTML report in the default browser")

    p = sub.add_parser("worklogs", parents=[common], help="List worklogs in a date range")
    p.add_argument("--start", type=str, required=True, help="Start date (YYYY-MM-DD)")
    p.add_argument("--end", type=str, default="", help="End date (YYYY-MM-DD, default start)")
    p.add_argument("--json", action="store_true", help="Print raw JSON")

    p = sub.add_parser("create", parents=[common], help="Create a worklog")
    p.add_argument("issue_key")
    p.add_argument("hours", type=float)
    _add_worklog_options(p)

    p = sub.add_parser("update", parents=[common], help="Update a worklog")
    p.add_argument("worklog_id")
    p.add_argument("hours", type=float)
    _add_worklog_options(p)

    p = sub.add_parser("delete", parents=[common], help="Delete a worklog")
    p.add_argument("worklog_id")
    p.add_argument("--force", action="store_true", help="Do not ask for confirmation")

    sub.add_parser("attributes", parents=[common], help="List Tempo work attributes")
    sub.add_parser("roles", parents=[common], help="List Tempo roles")

    p = sub.add_parser("log-meeting", parents=[common], help="Log time on a project's Sprint Meetings issue")
    p.add_argument("project_key")
    p.add_argument("minutes", type=float)
    p.add_argument("--description", type=str, default="Sprint meeting")
    p.add_argument("--date", type=str, default=None, help="Worklog date (YYYY-MM-DD, default today)")

    p = sub.add_parser("cache", parents=[common], help="Inspect or manage the response cache")
    p.add_argument("--info", action="store_true", help="Show cache statistics")
    p.add_argument("--list", action="store_true", help="List cache keys")
    p.add_argument("--get", type=str, default="", help="Show one cache entry")
    p.add_argument("--remove", type=str, default="", help="Remove one cache key")
    p.add_argument("--clear", action="store_true", help="Clear the cache")
    p.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    load_dotenv(args.env_file or None)

    # .env may carry TIMESHEET_* retry settings; CLI flags take precedence over both
    configure_retry_from_env()
    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)

    if args.command in CACHE_ONLY_COMMANDS:
        return cmd_cache(args)

    try:
        settings = Settings.from_env()
    except ConfigurationError as ex:
        print(f"Configuration error: {ex}")
        return 2

    cache = _open_cache(args)
    try:
        return COMMANDS[args.command](args, settings, cache)
    except ConfigurationError as ex:
        print(f"Configuration error: {ex}")
        return 2
    except SubmissionFailure as ex:
        print(f"Failed to create worklog for {ex.issue_key} on {ex.date}: {ex.reason} [{ex.code}]")
        return 1
    except (TimesheetError, ValueError) as ex:
        print(f"Error: {ex}")
        return 1
    finally:
        cache.close()


if __name__ == "__main__":
    sys.exit(main())
