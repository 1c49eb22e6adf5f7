"""
Unified data models for evidence and timesheet entities.
"""

from typing import List, Optional

MIN_LINES_CHANGED = 10

EMAIL = 'email'
CALENDAR = 'calendar'


class Project:
    """
    Jira project (key and display name).
    """
    def __init__(self, key: str, name: str):
        self.key = key
        self.name = name

    def __repr__(self):
        return f"Project({self.key!r}, {self.name!r})"


class CandidateIssue:
    """
    Open/active Jira issue that a signal may be matched against.
    """
    def __init__(self, key: str, summary: str, project: str):
        self.key = key
        self.summary = summary
        self.project = project

    def __repr__(self):
        return f"CandidateIssue({self.key!r})"


class Commit:
    """
    A commit read from git history. Treated as immutable.
    """
    def __init__(self, hash: str, date: str, message: str, issue_keys: List[str], project: str, lines_changed: int = MIN_LINES_CHANGED):
        self.hash = hash
        self.date = date  # YYYY-MM-DD
        self.message = message
        self.issue_keys = list(issue_keys)
        self.project = project  # repository directory name
        self.lines_changed = max(int(lines_changed or 0), MIN_LINES_CHANGED)

    def __repr__(self):
        return f"Commit({self.hash[:7]!r}, {self.date!r}, {self.issue_keys!r}, {self.lines_changed})"


class EvidenceSignal:
    """
    E-mail or calendar event in a unified shape.
    """
    def __init__(
        self,
        kind: str,
        date: str,
        title: str,
        body: str = '',
        participants: Optional[List[str]] = None,
        duration_minutes: Optional[int] = None,
        is_sent: bool = False,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
    ):
        self.kind = kind  # email/calendar
        self.date = date
        self.title = title
        self.body = body or ''
        self.participants = participants or []  # recipients for sent mail, attendees for events
        self.duration_minutes = duration_minutes
        self.is_sent = is_sent
        self.start_time = start_time  # HH:MM
        self.end_time = end_time

    @property
    def text(self) -> str:
        return f"{self.title} {self.body}".strip()

    def __repr__(self):
        return f"EvidenceSignal({self.kind!r}, {self.date!r}, {self.title!r})"


class TimesheetEntry:
    """
    One line of a day's timesheet. Hours are mutable only while the day is being allocated.
    """
    def __init__(self, issue_key: str, hours: float, description: str, project: str, is_fixed_meeting: bool = False):
        self.issue_key = issue_key
        self.hours = hours
        self.description = description
        self.project = project
        self.is_fixed_meeting = is_fixed_meeting

    def to_dict(self) -> dict:
        return {
            'issue_key': self.issue_key,
            'hours': self.hours,
            'description': self.description,
            'project': self.project,
            'is_fixed_meeting': self.is_fixed_meeting,
        }

    def __repr__(self):
        return f"TimesheetEntry({self.issue_key!r}, {self.hours}, fixed={self.is_fixed_meeting})"


class TimesheetDay:
    """
    Entries for a single workday. total_hours is always the literal sum of entries.
    """
    def __init__(self, date: str, weekday: str, entries: Optional[List[TimesheetEntry]] = None, no_activity: bool = False):
        self.date = date
        self.weekday = weekday
        self.entries = entries or []
        self.no_activity = no_activity

    @property
    def total_hours(self) -> float:
        return sum(e.hours for e in self.entries)

    def entry_for(self, issue_key: str) -> Optional[TimesheetEntry]:
        for e in self.entries:
            if e.issue_key == issue_key:
                return e
        return None

    def to_dict(self) -> dict:
        return {
            'date': self.date,
            'weekday': self.weekday,
            'no_activity': self.no_activity,
            'total_hours': self.total_hours,
            'entries': [e.to_dict() for e in self.entries],
        }


class WeekPlan:
    """
    Result of one timesheet run: four days (Monday to Thursday) plus submission outcome.
    """
    def __init__(self, week_start: str, days: Optional[List[TimesheetDay]] = None, worklogs_created: int = 0, errors: Optional[List[str]] = None, dry_run: bool = True):
        self.week_start = week_start
        self.days = days or []
        self.worklogs_created = worklogs_created
        self.errors = errors or []
        self.dry_run = dry_run

    @property
    def total_hours(self) -> float:
        return sum(d.total_hours for d in self.days)

    def to_dict(self) -> dict:
        return {
            'week_start': self.week_start,
            'dry_run': self.dry_run,
            'worklogs_created': self.worklogs_created,
            'days': [d.to_dict() for d in self.days],
            'errors': list(self.errors),
        }
