"""
Runtime configuration: credentials and paths from the environment, tuning knobs from YAML.
"""
import os
from typing import Any, Dict, Mapping, Optional

import yaml

from errors import ConfigurationError

# filename used for tuning configuration
TUNING_FILENAME = 'timesheet.yaml'

REQUIRED_ENV = {
    'TEMPO_API_TOKEN': 'Tempo API token',
    'JIRA_API_TOKEN': 'Jira API token',
    'JIRA_EMAIL': 'Jira account email',
    'JIRA_BASE_URL': 'Jira base URL (e.g. https://company.atlassian.net)',
}

CANDIDATE_SCOPES = ('sprint', 'recent')
WEIGHTINGS = ('lines_x_estimate', 'lines', 'commit_count')

DEFAULT_TUNING: Dict[str, Any] = {
    'daily_sync_minutes': 15,
    'first_day_meeting_minutes': 15,
    'min_match_score': 0.3,
    'high_confidence_score': 0.5,
    'affinity_bonus': {'key': 0.3, 'name': 0.2, 'word': 0.1},
    'candidate_scope': 'sprint',
    'meeting_keywords': ['daily', 'standup', 'stand-up', 'sprint', 'planning', 'retro', 'review', 'refinement', 'grooming', 'sync'],
    'ignored_domains': ['gmail', 'googlemail', 'outlook', 'hotmail', 'yahoo', 'icloud'],
    'weighting': 'lines_x_estimate',
    'story_point_fields': ['customfield_10016', 'customfield_10026', 'customfield_10004'],
    'collector_timeout': 120.0,
    'max_workers': 4,
}


def default_tuning_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', TUNING_FILENAME)


def load_tuning(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load tuning values from a YAML file merged over DEFAULT_TUNING.
    A missing file yields the defaults; a malformed one is a ConfigurationError.
    """
    path = path or default_tuning_path()
    tuning = {k: (v.copy() if isinstance(v, (dict, list)) else v) for k, v in DEFAULT_TUNING.items()}
    if not os.path.exists(path):
        return tuning
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as ex:
        raise ConfigurationError(f"Failed to read tuning config {path}: {ex}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Tuning config {path} must be a mapping")
    for k, v in data.items():
        if k not in DEFAULT_TUNING:
            continue
        if isinstance(DEFAULT_TUNING[k], dict) and isinstance(v, dict):
            tuning[k].update({kk: float(vv) for kk, vv in v.items()})
        else:
            tuning[k] = v
    if tuning['candidate_scope'] not in CANDIDATE_SCOPES:
        raise ConfigurationError(f"candidate_scope must be one of {', '.join(CANDIDATE_SCOPES)}; got {tuning['candidate_scope']!r}")
    if tuning['weighting'] not in WEIGHTINGS:
        raise ConfigurationError(f"weighting must be one of {', '.join(WEIGHTINGS)}; got {tuning['weighting']!r}")
    return tuning


class Settings:
    """
    Resolved configuration for one run.
    """
    def __init__(
        self,
        tempo_token: str,
        jira_token: str,
        jira_email: str,
        jira_base_url: str,
        account_field_id: str = '10026',
        default_role: str = 'Dev',
        projects_dir: str = '',
        first_day_meeting_issue: str = '',
        google_token_path: str = '',
        tuning: Optional[Dict[str, Any]] = None,
    ):
        self.tempo_token = tempo_token
        self.jira_token = jira_token
        self.jira_email = jira_email
        self.jira_base_url = jira_base_url.rstrip('/')
        self.account_field_id = account_field_id
        self.default_role = default_role
        self.projects_dir = projects_dir
        self.first_day_meeting_issue = first_day_meeting_issue
        self.google_token_path = google_token_path
        self.tuning = tuning if tuning is not None else load_tuning()

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Build settings from environment variables; raises ConfigurationError naming every missing one."""
        env = os.environ if env is None else env
        missing = [f"{name} ({label})" for name, label in REQUIRED_ENV.items() if not env.get(name)]
        if missing:
            raise ConfigurationError('Missing required environment variables: ' + ', '.join(missing))
        home = env.get('HOME') or env.get('USERPROFILE') or '.'
        return cls(
            tempo_token=env['TEMPO_API_TOKEN'],
            jira_token=env['JIRA_API_TOKEN'],
            jira_email=env['JIRA_EMAIL'],
            jira_base_url=env['JIRA_BASE_URL'],
            account_field_id=env.get('JIRA_ACCOUNT_FIELD_ID') or '10026',
            default_role=env.get('DEFAULT_ROLE') or 'Dev',
            projects_dir=env.get('DEFAULT_PROJECTS_DIR') or '',
            first_day_meeting_issue=env.get('DEFAULT_MONDAY_MEETING_ISSUE') or '',
            google_token_path=env.get('GOOGLE_TOKEN_PATH') or os.path.join(home, '.worklog-synth-google-token.json'),
            tuning=load_tuning(env.get('TIMESHEET_CONFIG') or None),
        )
