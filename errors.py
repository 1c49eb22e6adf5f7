"""
Error taxonomy for the worklog synthesis pipeline.

Only ConfigurationError is fatal. Everything else is caught by the orchestrator
and surfaced as a string in the week's error list.
"""
from typing import Any, List, Optional

# structured failure codes for worklog creation
ACCOUNT_INVALID = 'ACCOUNT_INVALID'
ISSUE_NOT_FOUND = 'ISSUE_NOT_FOUND'
UNKNOWN = 'UNKNOWN'

# Tempo does not document error codes for account problems; these message fragments
# are the last-resort classifier when no structured code is present in the body.
_ACCOUNT_MESSAGE_HINTS = ('account not found', 'account is closed or archived')


class TimesheetError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(TimesheetError):
    """Required credentials, paths or settings are missing or invalid."""


class CollectorUnavailable(TimesheetError):
    """An evidence source could not be read."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class LookupFailure(TimesheetError):
    """A read-only issue tracker lookup failed."""


class ApiError(TimesheetError):
    """Non-2xx response from a remote service."""

    def __init__(self, service: str, status: int, body: Any = None):
        super().__init__(f"{service} API error ({status}): {body}")
        self.service = service
        self.status = status
        self.body = body

    def messages(self) -> List[str]:
        """Return the error messages carried in the body, if any."""
        body = self.body
        if isinstance(body, dict):
            errors = body.get('errors') or body.get('errorMessages') or []
            if isinstance(errors, dict):
                return [str(v) for v in errors.values()]
            out = []
            for e in errors:
                out.append(str(e.get('message', '')) if isinstance(e, dict) else str(e))
            return out
        if body:
            return [str(body)]
        return []

    def codes(self) -> List[str]:
        body = self.body
        if not isinstance(body, dict):
            return []
        return [str(e['code']) for e in (body.get('errors') or []) if isinstance(e, dict) and e.get('code')]


class SubmissionFailure(TimesheetError):
    """Creating one worklog failed."""

    def __init__(self, issue_key: str, date: str, reason: str, code: str = UNKNOWN):
        super().__init__(reason)
        self.issue_key = issue_key
        self.date = date
        self.reason = reason
        self.code = code


def classify_worklog_error(error: ApiError) -> str:
    """Map an ApiError from the worklog service to a failure code.

    A structured code in the response wins; message matching is the fallback.
    """
    for code in error.codes():
        upper = code.upper()
        if 'ACCOUNT' in upper:
            return ACCOUNT_INVALID
        if 'ISSUE' in upper:
            return ISSUE_NOT_FOUND
    text = ' '.join(error.messages()).lower()
    if any(hint in text for hint in _ACCOUNT_MESSAGE_HINTS):
        return ACCOUNT_INVALID
    if error.status == 404 or 'issue does not exist' in text:
        return ISSUE_NOT_FOUND
    return UNKNOWN


def describe(error: Optional[BaseException]) -> str:
    """Short human readable reason for an error."""
    if error is None:
        return ''
    if isinstance(error, SubmissionFailure):
        return error.reason
    return str(error) or error.__class__.__name__
