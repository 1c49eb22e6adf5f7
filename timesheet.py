"""
Timesheet orchestration: collect a week's evidence, allocate and normalize each workday,
then (unless dry run) submit every entry as a worklog.
"""
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import date as date_cls, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from allocate.allocator import DailyAllocator
from allocate.normalizer import normalize_day
from allocate.weights import WeightStrategy, get_strategy
from correlate.matcher import SignalMatcher
from errors import CollectorUnavailable, LookupFailure, TimesheetError, describe
from normalize.models import CALENDAR, EMAIL, Commit, EvidenceSignal, Project, WeekPlan
from settings import DEFAULT_TUNING
from storage.cache import Cache

WORKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday')
PROJECTS_CACHE_PREFIX = 'jira:projects'


def week_dates(week_start: str) -> List[Tuple[str, str]]:
    """[(date, weekday), ...] for Monday to Thursday; week_start must be a Monday."""
    try:
        start = date_cls.fromisoformat(week_start)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid week start {week_start!r}; expected YYYY-MM-DD")
    if start.weekday() != 0:
        raise ValueError(f"Week start {week_start} is a {start.strftime('%A')}, not a Monday")
    return [((start + timedelta(days=i)).isoformat(), name) for i, name in enumerate(WORKDAYS)]


class TimesheetOrchestrator:
    """
    Builds WeekPlans from the four collaborators: an issue tracker, a worklog sink,
    a commit source and an (optional) signal source.
    """

    def __init__(
        self,
        tracker,
        sink,
        commit_source,
        signal_source=None,
        projects_dir: str = '',
        author: str = '',
        tuning: Optional[dict] = None,
        first_day_meeting_issue: str = '',
        strategy: Optional[WeightStrategy] = None,
        cache: Optional[Cache] = None,
    ):
        self.tracker = tracker
        self.sink = sink
        self.commit_source = commit_source
        self.signal_source = signal_source
        self.projects_dir = projects_dir
        self.author = author
        self.tuning = dict(DEFAULT_TUNING)
        self.tuning.update(tuning or {})
        self.first_day_meeting_issue = first_day_meeting_issue
        self.strategy = strategy or get_strategy(self.tuning['weighting'])
        self.cache = cache
        self._projects: Optional[List[Project]] = None

    def _reset_run_state(self):
        self._projects = None
        if self.cache is not None:
            self.cache.invalidate(PROJECTS_CACHE_PREFIX)

    def projects(self, warnings: List[str]) -> List[Project]:
        """Known Jira projects, fetched at most once per run."""
        if self._projects is None:
            try:
                self._projects = list(self.tracker.get_projects())
            except LookupFailure as ex:
                warnings.append(f"Project list unavailable, no participant affinity: {ex}")
                self._projects = []
        return self._projects

    def _run_collectors(self, calls: Sequence[Tuple[str, Callable, tuple]], warnings: List[str]) -> Dict[str, list]:
        """Run collector calls concurrently; unavailable or timed out collectors contribute nothing."""
        timeout = float(self.tuning['collector_timeout'])
        results: Dict[str, list] = {}
        pool = ThreadPoolExecutor(max_workers=max(1, int(self.tuning['max_workers'])))
        try:
            futures = {pool.submit(fn, *args): name for name, fn, args in calls}
            done, not_done = wait(futures, timeout=timeout)
            for future in futures:
                name = futures[future]
                if future in not_done:
                    future.cancel()
                    warnings.append(f"{name} timed out after {timeout:.0f}s; continuing without it")
                    logger.warning("collector {} timed out", name)
                    continue
                try:
                    results[name] = list(future.result())
                except CollectorUnavailable as ex:
                    warnings.append(str(ex))
                    logger.warning("collector {} unavailable: {}", name, ex.reason)
                except Exception as ex:
                    # unexpected collector errors are warnings as well
                    warnings.append(f"{name} unavailable: {ex}")
                    logger.opt(exception=ex).warning("collector {} failed", name)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return results

    def collect(self, start: str, end: str, warnings: List[str]) -> Tuple[List[Commit], List[EvidenceSignal]]:
        """Commits from every repository plus signals from the signal source for [start, end]."""
        repos = self.commit_source.scan_repos(self.projects_dir)
        if not repos:
            warnings.append(f"No git repositories found in {self.projects_dir}")
        calls = [(f"git ({repo})", self.commit_source.list_commits, (repo, start, end, self.author)) for repo in repos]
        source = self.signal_source
        if source is not None and source.configured:
            calls.append(('gmail', source.list_emails, (start, end)))
            calls.append(('calendar', source.list_calendar_events, (start, end)))
        results = self._run_collectors(calls, warnings)

        commits: List[Commit] = []
        signals: List[EvidenceSignal] = []
        for name, _, _ in calls:
            if name in ('gmail', 'calendar'):
                signals.extend(results.get(name, []))
            else:
                commits.extend(results.get(name, []))
        logger.info("collected {} commits from {} repositories and {} signals", len(commits), len(repos), len(signals))
        return commits, signals

    def build_matcher(self, warnings: List[str]) -> SignalMatcher:
        try:
            candidates = self.tracker.search_candidate_issues(self.tuning['candidate_scope'])
        except LookupFailure as ex:
            warnings.append(f"Candidate issues unavailable, only explicit keys will match: {ex}")
            candidates = []
        return SignalMatcher(
            candidates,
            self.projects(warnings),
            min_score=self.tuning['min_match_score'],
            high_score=self.tuning['high_confidence_score'],
            affinity_bonus=self.tuning['affinity_bonus'],
            ignored_domains=self.tuning['ignored_domains'],
        )

    def submit(self, plan: WeekPlan):
        """Create one worklog per entry; a failed entry is recorded and the next one attempted."""
        for day in plan.days:
            for entry in day.entries:
                try:
                    self.sink.create_worklog(issue_key=entry.issue_key, hours=entry.hours, date=day.date, description=entry.description)
                    plan.worklogs_created += 1
                    logger.info("created worklog {} {}h on {}", entry.issue_key, entry.hours, day.date)
                except TimesheetError as ex:
                    plan.errors.append(f"Failed to create worklog for {entry.issue_key} on {day.date}: {describe(ex)}")
                    logger.warning("worklog for {} on {} failed: {}", entry.issue_key, day.date, ex)

    def generate_week(self, week_start: str, dry_run: bool = True) -> WeekPlan:
        """
        Build (and unless dry_run, submit) the timesheet for Monday to Thursday of the given week.

        Raises ValueError if week_start is not a Monday and ConfigurationError when the projects
        directory is unusable. Everything else ends up in plan.errors.
        """
        days = week_dates(week_start)
        self._reset_run_state()
        plan = WeekPlan(week_start, dry_run=dry_run)
        start, end = days[0][0], days[-1][0]

        commits, signals = self.collect(start, end, plan.errors)

        matchable = [s for s in signals if s.kind == CALENDAR or (s.kind == EMAIL and s.is_sent)]
        matcher = self.build_matcher(plan.errors) if matchable else None
        matches = matcher.match_all(matchable) if matcher else []

        with ThreadPoolExecutor(max_workers=max(1, int(self.tuning['max_workers']))) as executor:
            allocator = DailyAllocator(
                self.tracker,
                strategy=self.strategy,
                tuning=self.tuning,
                first_day_meeting_issue=self.first_day_meeting_issue,
                matcher=matcher,
                executor=executor,
            )
            for day, weekday in days:
                day_commits = [c for c in commits if c.date == day]
                day_matches = [m for m in matches if m.signal.date == day]
                day_events = [s for s in signals if s.kind == CALENDAR and s.date == day]
                timesheet_day, warnings = allocator.allocate(day, weekday, day_commits, day_matches, day_events)
                normalize_day(timesheet_day)
                plan.days.append(timesheet_day)
                plan.errors.extend(warnings)

        if not dry_run:
            self.submit(plan)
        return plan
