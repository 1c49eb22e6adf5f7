import pytest

from errors import ConfigurationError
from settings import DEFAULT_TUNING, Settings, load_tuning

ENV = {
    'TEMPO_API_TOKEN': 'tempo',
    'JIRA_API_TOKEN': 'jira',
    'JIRA_EMAIL': 'me@example.com',
    'JIRA_BASE_URL': 'https://acme.atlassian.net/',
}


def test_missing_env_names_every_variable():
    with pytest.raises(ConfigurationError) as ctx:
        Settings.from_env({'JIRA_EMAIL': 'me@example.com'})
    message = str(ctx.value)
    for name in ('TEMPO_API_TOKEN', 'JIRA_API_TOKEN', 'JIRA_BASE_URL'):
        assert name in message
    assert 'JIRA_EMAIL' not in message


def test_from_env_defaults(tmp_path):
    env = dict(ENV, HOME=str(tmp_path), TIMESHEET_CONFIG=str(tmp_path / 'absent.yaml'))
    settings = Settings.from_env(env)
    assert settings.jira_base_url == 'https://acme.atlassian.net'
    assert settings.account_field_id == '10026'
    assert settings.default_role == 'Dev'
    assert settings.google_token_path.startswith(str(tmp_path))
    assert 'workday_hours' not in settings.tuning


def test_load_tuning_merges_over_defaults(tmp_path):
    path = tmp_path / 'timesheet.yaml'
    path.write_text("daily_sync_minutes: 30\naffinity_bonus:\n  key: 0.4\nunknown_knob: 1\n", encoding='utf-8')
    tuning = load_tuning(str(path))
    assert tuning['daily_sync_minutes'] == 30
    assert tuning['affinity_bonus'] == {'key': 0.4, 'name': 0.2, 'word': 0.1}
    assert 'unknown_knob' not in tuning
    # defaults are not mutated by the merge
    assert DEFAULT_TUNING['affinity_bonus']['key'] == 0.3


def test_workday_length_is_not_tunable(tmp_path):
    path = tmp_path / 'timesheet.yaml'
    path.write_text("workday_hours: 6\ndaily_sync_minutes: 10\n", encoding='utf-8')
    tuning = load_tuning(str(path))
    assert 'workday_hours' not in tuning
    assert tuning['daily_sync_minutes'] == 10


def test_missing_tuning_file_gives_defaults(tmp_path):
    assert load_tuning(str(tmp_path / 'nope.yaml')) == DEFAULT_TUNING


@pytest.mark.parametrize('content', [
    "- just\n- a list\n",
    "candidate_scope: everything\n",
    "weighting: vibes\n",
    "daily_sync_minutes: [unclosed\n",
])
def test_invalid_tuning(tmp_path, content):
    path = tmp_path / 'timesheet.yaml'
    path.write_text(content, encoding='utf-8')
    with pytest.raises(ConfigurationError):
        load_tuning(str(path))
