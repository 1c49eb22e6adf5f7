"""
Tempo worklog client: worklog CRUD plus work attribute and role listings.

Worklog creation resolves the issue id, author and account through Jira. When Tempo rejects the
account, the client looks up another active account of the project and retries exactly once.
"""

from datetime import date as date_cls
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from correlate.linker import project_key_of
from errors import (
    ACCOUNT_INVALID,
    ISSUE_NOT_FOUND,
    ApiError,
    LookupFailure,
    SubmissionFailure,
    classify_worklog_error,
)
from ingest.jira import JiraClient
from storage.retry import perform_request_with_retries

TEMPO_API_BASE = "https://api.tempo.io/4"

ROLE_ATTRIBUTE_TYPE = 'STATIC_LIST'
ACCOUNT_ATTRIBUTE_TYPE = 'ACCOUNT'


def hours_to_seconds(hours: float) -> int:
    return int(round(float(hours) * 3600))


class TempoClient:
    """Client for the Tempo REST API (v4)."""

    def __init__(self, token: str, jira: JiraClient, default_role: str = 'Dev', base_url: str = None, max_retries: int = 3):
        self.token = token
        self.jira = jira
        self.default_role = default_role
        self.base_url = (base_url or TEMPO_API_BASE).rstrip('/')
        self.max_retries = max_retries
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.role_attribute_key: Optional[str] = None
        self.account_attribute_key: Optional[str] = None
        self._initialized = False

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, body: Any = None) -> Any:
        res = perform_request_with_retries(
            f"{self.base_url}{path}", self.headers, params or {}, None, '', 0.5, self.max_retries, method=method, json_body=body
        )
        status = res.get('status', 0)
        if not 200 <= status < 300:
            raise ApiError('Tempo', status, res.get('response'))
        return res.get('response')

    def get_work_attributes(self) -> List[Dict[str, Any]]:
        return (self._request('GET', '/work-attributes') or {}).get('results') or []

    def get_roles(self) -> List[Dict[str, Any]]:
        return (self._request('GET', '/roles') or {}).get('results') or []

    def initialize(self):
        """Resolve which work attributes carry the role and the account (once per client)."""
        if self._initialized:
            return
        for attr in self.get_work_attributes():
            if attr.get('type') == ROLE_ATTRIBUTE_TYPE:
                self.role_attribute_key = attr.get('key')
            elif attr.get('type') == ACCOUNT_ATTRIBUTE_TYPE:
                self.account_attribute_key = attr.get('key')
        self._initialized = True

    def get_worklogs(self, start_date: str, end_date: str, page_size: int = 1000) -> List[Dict[str, Any]]:
        worklogs: List[Dict[str, Any]] = []
        offset = 0
        while True:
            data = self._request('GET', '/worklogs', {'from': start_date, 'to': end_date, 'offset': offset, 'limit': page_size}) or {}
            results = data.get('results') or []
            worklogs.extend(results)
            if len(results) < page_size:
                break
            offset += page_size
        return worklogs

    def get_worklog(self, worklog_id: str) -> Dict[str, Any]:
        return self._request('GET', f"/worklogs/{worklog_id}")

    def _attributes(self, role: Optional[str], account: Optional[str]) -> List[Dict[str, str]]:
        attributes = []
        if self.role_attribute_key and role:
            attributes.append({'key': self.role_attribute_key, 'value': role})
        if self.account_attribute_key and account:
            attributes.append({'key': self.account_attribute_key, 'value': account})
        return attributes

    def _worklog_body(
        self, issue_id: int, hours: float, date: str, description: str, author: str, start_time: Optional[str], role: str, account: Optional[str]
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'issueId': issue_id,
            'timeSpentSeconds': hours_to_seconds(hours),
            'startDate': date,
            'description': description or '',
            'authorAccountId': author,
        }
        if start_time:
            body['startTime'] = start_time
        attributes = self._attributes(role, account)
        if attributes:
            body['attributes'] = attributes
        return body

    def _resolve_issue(self, issue_key: str, date: str, account_key: Optional[str]) -> Tuple[int, str, Optional[str]]:
        try:
            self.initialize()
            issue_id = self.jira.get_issue_id(issue_key)
            author = self.jira.get_current_user_account_id()
            account = account_key or self.jira.get_issue_account(issue_key)
        except LookupFailure as ex:
            raise SubmissionFailure(issue_key, date, str(ex), ISSUE_NOT_FOUND)
        except ApiError as ex:
            raise SubmissionFailure(issue_key, date, str(ex), classify_worklog_error(ex))
        return issue_id, author, account

    def create_worklog(
        self,
        issue_key: str,
        hours: float,
        date: str,
        description: str = '',
        start_time: Optional[str] = None,
        role: Optional[str] = None,
        account_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a worklog; raises SubmissionFailure with a failure code."""
        if hours is None or float(hours) <= 0:
            raise SubmissionFailure(issue_key, date, f"hours must be positive, got {hours}")
        role = role or self.default_role
        issue_id, author, account = self._resolve_issue(issue_key, date, account_key)

        body = self._worklog_body(issue_id, hours, date, description, author, start_time, role, account)
        try:
            return self._request('POST', '/worklogs', body=body)
        except ApiError as ex:
            code = classify_worklog_error(ex)
            if code != ACCOUNT_INVALID:
                raise SubmissionFailure(issue_key, date, str(ex), code)
            first_error = ex

        # account rejected: substitute another active account of the project and retry once
        try:
            alternate = self.jira.find_active_project_account(project_key_of(issue_key), exclude_account=account)
        except LookupFailure as ex:
            logger.warning("no alternate account for {}: {}", issue_key, ex)
            alternate = None
        if not alternate or alternate == account:
            raise SubmissionFailure(issue_key, date, str(first_error), ACCOUNT_INVALID)

        logger.info("account {} rejected for {}, retrying with {}", account, issue_key, alternate)
        body = self._worklog_body(issue_id, hours, date, description, author, start_time, role, alternate)
        try:
            return self._request('POST', '/worklogs', body=body)
        except ApiError as ex:
            raise SubmissionFailure(issue_key, date, str(ex), classify_worklog_error(ex))

    def update_worklog(
        self,
        worklog_id: str,
        hours: float,
        date: Optional[str] = None,
        description: Optional[str] = None,
        start_time: Optional[str] = None,
        role: Optional[str] = None,
        account_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Replace a worklog, keeping its issue, author and (unless given) date and description."""
        if hours is None or float(hours) <= 0:
            raise ValueError(f"hours must be positive, got {hours}")
        self.initialize()
        existing = self.get_worklog(worklog_id)
        body = {
            'issueId': (existing.get('issue') or {}).get('id'),
            'timeSpentSeconds': hours_to_seconds(hours),
            'startDate': date or existing.get('startDate'),
            'description': description if description is not None else existing.get('description', ''),
            'authorAccountId': (existing.get('author') or {}).get('accountId'),
        }
        if start_time:
            body['startTime'] = start_time
        attributes = self._attributes(role or self.default_role, account_key)
        if attributes:
            body['attributes'] = attributes
        return self._request('PUT', f"/worklogs/{worklog_id}", body=body)

    def delete_worklog(self, worklog_id: str):
        self._request('DELETE', f"/worklogs/{worklog_id}")

    def log_sprint_meeting(self, project_key: str, minutes: float, description: str, date: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        """Log a meeting on the project's "Sprint Meetings" issue. Returns (issue_key, worklog)."""
        issue_key = self.jira.find_recurring_meeting_issue(project_key)
        if not issue_key:
            raise LookupFailure(f'No "Sprint Meetings" issue found for project {project_key}')
        worklog_date = date or date_cls.today().isoformat()
        worklog = self.create_worklog(issue_key=issue_key, hours=float(minutes) / 60.0, date=worklog_date, description=description)
        return issue_key, worklog
