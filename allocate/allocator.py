"""
Daily allocator: turn one day's commits and matched signals into provisional timesheet entries.

Hours are split across issue keys by a WeightStrategy; recurring meetings and matched e-mail or
calendar signals are merged in afterwards. The normalizer brings the day to its target afterwards.
"""
import re
from collections import OrderedDict
from concurrent.futures import Executor
from datetime import date as date_cls
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from correlate.linker import project_key_of
from correlate.matcher import SignalMatcher
from correlate.models import MatchResult
from errors import LookupFailure
from normalize.describe import DEFAULT_FOLLOW_UP, describe_commits, meeting_label, simplify_subject
from normalize.models import CALENDAR, EMAIL, Commit, EvidenceSignal, TimesheetDay, TimesheetEntry
from settings import DEFAULT_TUNING
from .normalizer import TARGET_HOURS, quantize_entry_hours
from .weights import IssueGroup, WeightStrategy, get_strategy

DAILY_SYNC_LABEL = 'Daily standup'
FIRST_DAY_MEETING_LABEL = 'Weekly sync'
DEFAULT_MEETING_MINUTES = 15

_project_token_re = re.compile(r"\b[A-Z][A-Z0-9_]+\b")


def group_by_issue(commits: Iterable[Commit]) -> List[IssueGroup]:
    """One group per issue key, in first-encounter order. A commit joins every group it names."""
    groups: Dict[str, IssueGroup] = OrderedDict()
    for commit in commits:
        for key in commit.issue_keys:
            groups.setdefault(key, IssueGroup(key)).commits.append(commit)
    return list(groups.values())


def main_project(groups: Sequence[IssueGroup]) -> Optional[str]:
    """Project prefix with the most lines changed; the first one seen wins ties."""
    totals: Dict[str, int] = OrderedDict()
    for g in groups:
        project = project_key_of(g.issue_key)
        totals[project] = totals.get(project, 0) + g.lines_changed
    best = None
    for project, lines in totals.items():
        if best is None or lines > totals[best]:
            best = project
    return best


def is_meeting_title(title: str, keywords: Iterable[str]) -> bool:
    lower = (title or '').lower()
    return any(k.lower() in lower for k in keywords)


class DailyAllocator:
    """
    Allocates one day at a time. Meeting-issue lookups are cached for the allocator's lifetime,
    so build a new allocator per run.
    """

    def __init__(
        self,
        tracker,
        strategy: Optional[WeightStrategy] = None,
        tuning: Optional[dict] = None,
        first_day_meeting_issue: str = '',
        matcher: Optional[SignalMatcher] = None,
        executor: Optional[Executor] = None,
    ):
        self.tracker = tracker
        self.tuning = dict(DEFAULT_TUNING)
        self.tuning.update(tuning or {})
        self.strategy = strategy or get_strategy(self.tuning['weighting'])
        self.first_day_meeting_issue = first_day_meeting_issue
        self.matcher = matcher
        self.executor = executor
        self._meeting_issues: Dict[str, Optional[str]] = {}

    @property
    def workday_minutes(self) -> float:
        return TARGET_HOURS * 60

    def _has_first_day_meeting(self, day: str) -> bool:
        return bool(self.first_day_meeting_issue) and date_cls.fromisoformat(day).weekday() == 0

    def available_minutes(self, day: str) -> float:
        """Workday minus the meetings known in advance for that date."""
        minutes = self.workday_minutes - float(self.tuning['daily_sync_minutes'])
        if self._has_first_day_meeting(day):
            minutes -= float(self.tuning['first_day_meeting_minutes'])
        return max(minutes, 0.0)

    def _lookup_estimate(self, key: str) -> Optional[float]:
        return self.tracker.get_issue_details(key).get('story_points')

    def _fill_estimates(self, groups: List[IssueGroup], warnings: List[str]):
        """Look up effort estimates for every group, concurrently when an executor is available."""
        if not self.strategy.uses_estimates or not groups:
            return
        if self.executor is not None:
            pending = [(g, self.executor.submit(self._lookup_estimate, g.issue_key)) for g in groups]
            outcomes = []
            for g, future in pending:
                try:
                    outcomes.append((g, future.result(), None))
                except LookupFailure as ex:
                    outcomes.append((g, None, ex))
        else:
            outcomes = []
            for g in groups:
                try:
                    outcomes.append((g, self._lookup_estimate(g.issue_key), None))
                except LookupFailure as ex:
                    outcomes.append((g, None, ex))
        for g, estimate, error in outcomes:
            if error is not None:
                warnings.append(f"Estimate lookup failed for {g.issue_key}: {error}; using multiplier 1")
                logger.warning("estimate lookup failed for {}: {}", g.issue_key, error)
            g.effort_estimate = estimate

    def meeting_issue(self, project: str, warnings: List[str]) -> Optional[str]:
        """The project's recurring-meeting issue, or None. Resolved at most once per project."""
        if project in self._meeting_issues:
            return self._meeting_issues[project]
        issue = None
        try:
            issue = self.tracker.find_recurring_meeting_issue(project)
            if not issue:
                warnings.append(f"No recurring meeting issue found for project {project}")
        except LookupFailure as ex:
            warnings.append(f"Meeting issue lookup failed for project {project}: {ex}")
            logger.warning("meeting issue lookup failed for {}: {}", project, ex)
        self._meeting_issues[project] = issue
        return issue

    @staticmethod
    def _add_meeting(day: TimesheetDay, issue_key: str, minutes: float, label: str):
        hours = minutes / 60.0
        existing = day.entry_for(issue_key)
        if existing is None:
            day.entries.append(TimesheetEntry(issue_key, hours, label, project_key_of(issue_key), is_fixed_meeting=True))
        elif existing.is_fixed_meeting:
            # the same meeting reported twice (configured sync and calendar) is represented once
            if label not in existing.description:
                existing.hours += hours
                existing.description += f" + {label}"
        else:
            existing.hours += hours
            existing.description += f" + Meeting: {label}"

    def _calendar_meeting_project(self, event: EvidenceSignal, main: Optional[str]) -> Optional[str]:
        known = {p.key for p in self.matcher.projects} if self.matcher else set()
        for token in _project_token_re.findall(event.title or ''):
            if token in known:
                return token
        if self.matcher is not None:
            project, _ = self.matcher.participant_affinity(event)
            if project is not None:
                return project.key
        return main

    def _merge_calendar_meetings(
        self, day: TimesheetDay, events: Sequence[EvidenceSignal], main: Optional[str], warnings: List[str]
    ) -> List[EvidenceSignal]:
        handled = []
        keywords = self.tuning['meeting_keywords']
        for event in events:
            if event.kind != CALENDAR or not is_meeting_title(event.title, keywords):
                continue
            handled.append(event)
            project = self._calendar_meeting_project(event, main)
            issue = self.meeting_issue(project, warnings) if project else None
            if not issue:
                warnings.append(f"Skipped meeting '{event.title}' on {day.date}: no meeting issue resolved")
                continue
            self._add_meeting(day, issue, event.duration_minutes or DEFAULT_MEETING_MINUTES, meeting_label(event.title))
        return handled

    @staticmethod
    def _merge_matches(day: TimesheetDay, matches: Sequence[MatchResult], handled: Sequence[EvidenceSignal]):
        for m in matches:
            if not m.accepted or any(m.signal is h for h in handled):
                continue
            key = m.issue_key
            signal = m.signal
            existing = day.entry_for(key)
            if signal.kind == EMAIL:
                if existing is None:
                    day.entries.append(TimesheetEntry(key, 0.25, f"{DEFAULT_FOLLOW_UP} - {simplify_subject(signal.title)}", project_key_of(key)))
            elif signal.kind == CALENDAR:
                hours = (signal.duration_minutes or DEFAULT_MEETING_MINUTES) / 60.0
                if existing is not None:
                    existing.hours += hours
                    existing.description += f" + Meeting: {signal.title}"
                else:
                    day.entries.append(TimesheetEntry(key, hours, f"Meeting - {signal.title}", project_key_of(key)))

    def allocate(
        self,
        day: str,
        weekday: str,
        commits: Sequence[Commit],
        matches: Sequence[MatchResult] = (),
        calendar_events: Sequence[EvidenceSignal] = (),
    ) -> Tuple[TimesheetDay, List[str]]:
        """
        Build the provisional TimesheetDay for one date.

        Returns the day and a list of warning strings. A day without commits has no entries,
        is flagged no_activity and ignores signals.
        """
        warnings: List[str] = []
        if not commits:
            warnings.append(f"No commits found for {weekday} ({day})")
            return TimesheetDay(day, weekday, [], no_activity=True), warnings

        result = TimesheetDay(day, weekday)
        groups = group_by_issue(commits)
        if not groups:
            warnings.append(f"Commits on {weekday} ({day}) name no issue key")
        self._fill_estimates(groups, warnings)

        weights = [self.strategy.weight(g) for g in groups]
        total = sum(weights)
        available = self.available_minutes(day)
        for g, w in zip(groups, weights):
            share = available * w / total / 60.0 if total > 0 else 0.0
            result.entries.append(TimesheetEntry(g.issue_key, quantize_entry_hours(share), describe_commits(g.commits), project_key_of(g.issue_key)))

        main = main_project(groups)
        if main and float(self.tuning['daily_sync_minutes']) > 0:
            sync_issue = self.meeting_issue(main, warnings)
            if sync_issue:
                self._add_meeting(result, sync_issue, float(self.tuning['daily_sync_minutes']), DAILY_SYNC_LABEL)
        if self._has_first_day_meeting(day) and float(self.tuning['first_day_meeting_minutes']) > 0:
            self._add_meeting(result, self.first_day_meeting_issue, float(self.tuning['first_day_meeting_minutes']), FIRST_DAY_MEETING_LABEL)

        handled = self._merge_calendar_meetings(result, calendar_events, main, warnings)
        self._merge_matches(result, matches, handled)
        logger.debug("{} {}: {} entries, {:.2f}h provisional", weekday, day, len(result.entries), result.total_hours)
        return result, warnings
