"""
Data models for signal-to-issue matching results.
"""
from typing import Optional
from normalize.models import EvidenceSignal

HIGH = 'high'
MEDIUM = 'medium'
LOW = 'low'


class MatchResult:
    """
    Outcome of matching one evidence signal to a Jira issue.
    issue_key is None when nothing cleared the acceptance threshold.
    """

    def __init__(self, signal: EvidenceSignal, issue_key: Optional[str], confidence: str, reason: str, score: float = 0.0):
        self.signal = signal
        self.issue_key = issue_key
        self.confidence = confidence
        self.reason = reason
        self.score = score

    @property
    def accepted(self) -> bool:
        return bool(self.issue_key) and self.confidence != LOW

    def __str__(self):
        return f"{self.signal.kind} '{self.signal.title}' -> {self.issue_key or '-'} [{self.confidence}] {self.reason}"
