"""
Readable worklog descriptions built from commit messages, e-mail subjects and meeting titles.
"""
import re
from typing import Iterable, List

from normalize.models import Commit

DEFAULT_WORK_DESCRIPTION = 'Development'
DEFAULT_FOLLOW_UP = 'Client follow-up'

MAX_SUMMARY_LEN = 60
MAX_DESCRIPTION_LEN = 150
MAX_SUBJECT_LEN = 35

_key_re = re.compile(r"[A-Z][A-Z0-9]+-\d+\s*[-:.]?\s*")
_conventional_re = re.compile(r"^(feat|fix|chore|docs|refactor|test|style|perf|build|ci)(\([^)]*\))?!?[\s:]+", re.IGNORECASE)
_camel_re = re.compile(r"([a-z])([A-Z])")
_reply_prefix_re = re.compile(r"^((re|fwd|fw|tr)\s*:\s*)+", re.IGNORECASE)
_subject_split_re = re.compile(r"\s[-–—]\s|:")

# ordered: the first pattern that matches a meeting title names it
MEETING_LABELS = (
    (re.compile(r"daily|stand-?up", re.IGNORECASE), 'Daily standup'),
    (re.compile(r"planning", re.IGNORECASE), 'Sprint planning'),
    (re.compile(r"retro", re.IGNORECASE), 'Retrospective'),
    (re.compile(r"refinement|grooming", re.IGNORECASE), 'Refinement'),
    (re.compile(r"review", re.IGNORECASE), 'Sprint review'),
    (re.compile(r"sync", re.IGNORECASE), 'Team sync'),
)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 3] + '...'


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def clean_commit_message(message: str) -> str:
    """Strip issue keys and conventional-commit prefixes; split identifiers into words."""
    text = _key_re.sub('', message or '')
    text = _conventional_re.sub('', text.strip())
    text = re.sub(r"^\s*[-:]\s*", '', text)
    text = _camel_re.sub(r"\1 \2", text).replace('_', ' ')
    return re.sub(r"\s+", ' ', text).strip()


def describe_commits(commits: Iterable[Commit]) -> str:
    """Up to three distinct commit summaries joined with ' | '."""
    summaries: List[str] = []
    for c in commits:
        cleaned = clean_commit_message(c.message)
        if not cleaned:
            continue
        summary = _truncate(_capitalize(cleaned), MAX_SUMMARY_LEN)
        if summary not in summaries:
            summaries.append(summary)
    if not summaries:
        return DEFAULT_WORK_DESCRIPTION
    return _truncate(' | '.join(summaries[:3]), MAX_DESCRIPTION_LEN)


def simplify_subject(subject: str) -> str:
    """'RE: Fwd: invoice layout - next steps' -> 'Invoice layout'"""
    clean = _reply_prefix_re.sub('', (subject or '').strip()).strip()
    parts = _subject_split_re.split(clean, maxsplit=1)
    if len(parts) > 1 and parts[0].strip():
        clean = parts[0].strip()
    clean = _truncate(_capitalize(clean), MAX_SUBJECT_LEN)
    return clean or DEFAULT_FOLLOW_UP


def meeting_label(title: str) -> str:
    for pattern, label in MEETING_LABELS:
        if pattern.search(title or ''):
            return label
    return simplify_subject(title)
