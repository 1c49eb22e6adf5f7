"""
Jira ingestion client: issue details, saved-query searches and project lists.
Every read goes through storage.cache.rate_limited_get so responses can be cached for the duration of a run.
"""

import base64
import re
from typing import List, Dict, Any, Optional, Sequence

from loguru import logger

from errors import ApiError, LookupFailure
from normalize.models import CandidateIssue, Project
from normalize.util import extract_account, extract_story_points, normalize_candidate_issue, normalize_project
from storage.cache import rate_limited_get, Cache

DEFAULT_STORY_POINT_FIELDS = ('customfield_10016', 'customfield_10026', 'customfield_10004')
SPRINT_MEETINGS_SUMMARY = 'Sprint Meetings'

# JQL per candidate scope; see settings.CANDIDATE_SCOPES
CANDIDATE_JQL = {
    'sprint': 'sprint in openSprints() ORDER BY updated DESC',
    'recent': 'updated >= -30d ORDER BY updated DESC',
}

_project_key_re = re.compile(r"^[A-Z][A-Z0-9_]+$")


class JiraClient:
    """Jira REST client authenticated with an account e-mail and API token."""

    def __init__(
        self,
        email: str,
        token: str,
        base_url: str,
        account_field_id: str = '10026',
        story_point_fields: Optional[Sequence[str]] = None,
        cache: Optional[Cache] = None,
    ):
        self.email = email
        self.token = token
        self.base_url = (base_url or '').rstrip('/')
        self.account_field_id = account_field_id
        self.story_point_fields = tuple(story_point_fields or DEFAULT_STORY_POINT_FIELDS)
        auth = base64.b64encode(f"{email}:{token}".encode('utf-8')).decode('ascii')
        self.headers = {
            "Authorization": f"Basic {auth}",
            "Accept": "application/json",
        }
        self.cache = cache
        self._account_id: Optional[str] = None

    @property
    def account_field(self) -> str:
        return f"customfield_{self.account_field_id}"

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, cache_key: Optional[str] = None) -> Any:
        url = f"{self.base_url}{path}"
        res = rate_limited_get(url, headers=self.headers, params=params or {}, cache=self.cache, cache_key=cache_key if self.cache is not None else None)
        status = res.get('status', 0)
        if not 200 <= status < 300:
            raise ApiError('Jira', status, res.get('response'))
        return res.get('response')

    def get_issue_details(self, issue_key: str) -> Dict[str, Any]:
        """Return {'story_points': float|None, 'summary': str} for an issue."""
        fields = ','.join(('summary',) + self.story_point_fields)
        try:
            data = self._get(f"/rest/api/2/issue/{issue_key}", {'fields': fields}, cache_key=f"jira:issue:{issue_key}:details")
        except ApiError as ex:
            raise LookupFailure(f"Issue details for {issue_key} unavailable: {ex}")
        issue_fields = (data or {}).get('fields') or {}
        return {
            'story_points': extract_story_points(issue_fields, self.story_point_fields),
            'summary': issue_fields.get('summary') or '',
        }

    def get_issue_id(self, issue_key: str) -> int:
        try:
            data = self._get(f"/rest/api/2/issue/{issue_key}", {'fields': 'id'}, cache_key=f"jira:issue:{issue_key}:id")
            return int(data['id'])
        except ApiError as ex:
            raise LookupFailure(f"Issue {issue_key} not found: {ex}")
        except (KeyError, TypeError, ValueError):
            raise LookupFailure(f"Issue {issue_key} has no numeric id")

    def get_issue_account(self, issue_key: str) -> Optional[str]:
        """Tempo account attached to the issue through the account custom field, if any."""
        try:
            data = self._get(f"/rest/api/2/issue/{issue_key}", {'fields': self.account_field}, cache_key=f"jira:issue:{issue_key}:account")
        except ApiError as ex:
            raise LookupFailure(f"Account of {issue_key} unavailable: {ex}")
        return extract_account(((data or {}).get('fields') or {}).get(self.account_field))

    def get_current_user_account_id(self) -> str:
        if self._account_id is None:
            try:
                data = self._get('/rest/api/2/myself')
                self._account_id = data['accountId']
            except ApiError as ex:
                raise LookupFailure(f"Current Jira user unavailable: {ex}")
            except (KeyError, TypeError):
                raise LookupFailure('Current Jira user has no accountId')
        return self._account_id

    def search(self, jql: str, fields: Sequence[str], max_results: int = 50, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Run a JQL search, following nextPageToken until exhausted or limit reached."""
        issues: List[Dict[str, Any]] = []
        token = None
        while True:
            params: Dict[str, Any] = {'jql': jql, 'maxResults': max_results, 'fields': ','.join(fields)}
            if token:
                params['nextPageToken'] = token
            data = self._get('/rest/api/3/search/jql', params) or {}
            issues.extend(data.get('issues') or [])
            token = data.get('nextPageToken')
            if not token or data.get('isLast') or (limit is not None and len(issues) >= limit):
                break
        return issues[:limit] if limit is not None else issues

    def find_recurring_meeting_issue(self, project_key: str, summary: str = SPRINT_MEETINGS_SUMMARY) -> Optional[str]:
        """Key of the oldest issue in the project whose summary mentions the meeting summary."""
        if not _project_key_re.match(project_key or ''):
            return None
        jql = f'project = {project_key} AND summary ~ "{summary}" ORDER BY created ASC'
        try:
            issues = self.search(jql, ['summary'], max_results=1, limit=1)
        except ApiError as ex:
            raise LookupFailure(f"Meeting issue search for {project_key} failed: {ex}")
        return issues[0].get('key') if issues else None

    def find_active_project_account(self, project_key: str, exclude_account: Optional[str] = None) -> Optional[str]:
        """First account found on recently updated issues of the project, other than exclude_account."""
        if not _project_key_re.match(project_key or ''):
            return None
        jql = f'project = {project_key} ORDER BY updated DESC'
        try:
            issues = self.search(jql, [self.account_field], max_results=20, limit=20)
        except ApiError as ex:
            raise LookupFailure(f"Account search for {project_key} failed: {ex}")
        for issue in issues:
            account = extract_account((issue.get('fields') or {}).get(self.account_field))
            if account and account != exclude_account:
                return account
        return None

    def search_candidate_issues(self, scope: str = 'sprint', limit: int = 200) -> List[CandidateIssue]:
        """Active issues that signals may be matched against."""
        jql = CANDIDATE_JQL.get(scope)
        if jql is None:
            raise ValueError(f"Unknown candidate scope: {scope}")
        try:
            raw = self.search(jql, ['summary', 'project'], max_results=100, limit=limit)
        except ApiError as ex:
            raise LookupFailure(f"Candidate issue search ({scope}) failed: {ex}")
        logger.debug("fetched {} candidate issues (scope={})", len(raw), scope)
        return [normalize_candidate_issue(r) for r in raw if r.get('key')]

    def get_projects(self) -> List[Project]:
        try:
            data = self._get('/rest/api/2/project', cache_key='jira:projects')
        except ApiError as ex:
            raise LookupFailure(f"Project list unavailable: {ex}")
        return [normalize_project(p) for p in (data or []) if isinstance(p, dict) and p.get('key')]
