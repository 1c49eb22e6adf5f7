"""
Correlate package: issue key extraction and matching of e-mails/calendar events to issues.
"""

from .linker import extract_issue_keys, project_key_of
from .matcher import SignalMatcher
from .models import MatchResult

__all__ = ["extract_issue_keys", "project_key_of", "SignalMatcher", "MatchResult"]
