"""
Normalization utility helpers.
Small helpers to normalize raw payloads (git log output, Jira, Gmail, Calendar) into normalize.models entities.
"""
import email.utils
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from correlate.linker import extract_issue_keys
from normalize.models import (
    CALENDAR,
    EMAIL,
    MIN_LINES_CHANGED,
    CandidateIssue,
    Commit,
    EvidenceSignal,
    Project,
)

COMMIT_MARKER = 'COMMIT|'
# git log --pretty format understood by parse_git_log
GIT_LOG_FORMAT = COMMIT_MARKER + '%H|%ad|%s'

_insertions_re = re.compile(r"(\d+) insertion")
_deletions_re = re.compile(r"(\d+) deletion")


def _make_commit(current: Dict[str, str], project: str, lines_changed: int) -> Commit:
    return Commit(
        hash=current['hash'],
        date=current['date'],
        message=current['message'],
        issue_keys=extract_issue_keys(current['message']),
        project=project,
        lines_changed=lines_changed,
    )


def parse_git_log(output: str, project: str) -> List[Commit]:
    """Parse `git log --pretty=format:GIT_LOG_FORMAT --date=short --shortstat` output.

    Each commit line may be followed by a shortstat line; commits without one
    (e.g. empty commits) get the minimum weight.
    """
    commits: List[Commit] = []
    current: Optional[Dict[str, str]] = None
    for line in (output or '').splitlines():
        if line.startswith(COMMIT_MARKER):
            if current:
                commits.append(_make_commit(current, project, MIN_LINES_CHANGED))
                current = None
            parts = line.split('|')
            if len(parts) >= 4:
                current = {'hash': parts[1], 'date': parts[2], 'message': '|'.join(parts[3:])}
        elif current and ('insertion' in line or 'deletion' in line):
            ins = _insertions_re.search(line)
            dels = _deletions_re.search(line)
            lines_changed = (int(ins.group(1)) if ins else 0) + (int(dels.group(1)) if dels else 0)
            commits.append(_make_commit(current, project, lines_changed))
            current = None
    if current:
        commits.append(_make_commit(current, project, MIN_LINES_CHANGED))
    return commits


def normalize_project(raw: Dict[str, Any]) -> Project:
    return Project(key=raw.get('key') or '', name=raw.get('name') or '')


def normalize_candidate_issue(raw: Dict[str, Any]) -> CandidateIssue:
    """Create a CandidateIssue from a raw Jira search hit."""
    fields = raw.get('fields') or {}
    key = raw.get('key') or ''
    project = (fields.get('project') or {}).get('key') if isinstance(fields.get('project'), dict) else None
    return CandidateIssue(key=key, summary=fields.get('summary') or '', project=project or key.split('-')[0])


def extract_story_points(fields: Dict[str, Any], field_ids: Sequence[str]) -> Optional[float]:
    """Return the first numeric story point value among the candidate custom fields."""
    if not isinstance(fields, dict):
        return None
    for fid in field_ids:
        value = fields.get(fid)
        # bool is an int subclass; a checkbox field is not an estimate
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def extract_account(value: Any) -> Optional[str]:
    """Account custom fields come back as a string or an object with value/key."""
    if isinstance(value, dict):
        for k in ('value', 'key'):
            if isinstance(value.get(k), str) and value.get(k):
                return value[k]
        return None
    if isinstance(value, str) and value:
        return value
    return None


def round_duration_minutes(minutes: float) -> int:
    """Round to 15 minute blocks, minimum 15."""
    return max(15, int(minutes / 15.0 + 0.5) * 15)


def _parse_iso(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


def _header(headers: List[Dict[str, str]], name: str) -> str:
    for h in headers or []:
        if (h.get('name') or '').lower() == name.lower():
            return h.get('value') or ''
    return ''


def _message_date(raw: Dict[str, Any], headers: List[Dict[str, str]], default_date: str) -> str:
    internal = raw.get('internalDate')
    if internal:
        try:
            return datetime.fromtimestamp(int(internal) / 1000.0, tz=timezone.utc).astimezone().date().isoformat()
        except (TypeError, ValueError, OverflowError, OSError):
            pass
    date_header = _header(headers, 'Date')
    if date_header:
        try:
            return email.utils.parsedate_to_datetime(date_header).date().isoformat()
        except (TypeError, ValueError):
            pass
    return default_date


def normalize_gmail_message(raw: Dict[str, Any], is_sent: bool, default_date: str) -> EvidenceSignal:
    """Create an e-mail EvidenceSignal from a Gmail users.messages.get payload."""
    headers = (raw.get('payload') or {}).get('headers') or []
    recipients = [t.strip() for t in _header(headers, 'To').split(',') if t.strip()]
    participants = recipients if is_sent else [p for p in [_header(headers, 'From')] if p]
    return EvidenceSignal(
        kind=EMAIL,
        date=_message_date(raw, headers, default_date),
        title=_header(headers, 'Subject') or '(No subject)',
        body=(raw.get('snippet') or '')[:300],
        participants=participants,
        is_sent=is_sent,
    )


def normalize_calendar_event(raw: Dict[str, Any]) -> Optional[EvidenceSignal]:
    """Create a calendar EvidenceSignal; all-day and declined events return None."""
    start = _parse_iso((raw.get('start') or {}).get('dateTime') or '')
    end = _parse_iso((raw.get('end') or {}).get('dateTime') or '')
    if not start or not end:
        return None
    attendees = raw.get('attendees') or []
    me = next((a for a in attendees if a.get('self')), None)
    if me and me.get('responseStatus') == 'declined':
        return None
    minutes = (end - start).total_seconds() / 60.0
    return EvidenceSignal(
        kind=CALENDAR,
        date=start.date().isoformat(),
        title=raw.get('summary') or '(No title)',
        body=raw.get('description') or '',
        participants=[a.get('email') for a in attendees if a.get('email') and not a.get('self')],
        duration_minutes=round_duration_minutes(minutes),
        start_time=start.strftime('%H:%M'),
        end_time=end.strftime('%H:%M'),
    )
