from normalize.describe import (
    clean_commit_message,
    describe_commits,
    meeting_label,
    simplify_subject,
)
from normalize.models import Commit


def _commits(*messages):
    return [Commit(f'h{i}', '2025-03-03', m, [], 'repo') for i, m in enumerate(messages)]


def test_clean_commit_message_strips_key_and_prefix():
    assert clean_commit_message('ABC-12: feat(api): addInvoiceExport') == 'add Invoice Export'
    assert clean_commit_message('fix: handle empty_rows') == 'handle empty rows'


def test_describe_commits_dedupes_and_skips_empty():
    assert describe_commits(_commits('ABC-1', 'ABC-1 fix typo', 'ABC-1 fix typo')) == 'Fix typo'


def test_describe_commits_keeps_first_three():
    text = describe_commits(_commits('one', 'two', 'three', 'four'))
    assert text == 'One | Two | Three'


def test_describe_commits_default():
    assert describe_commits([]) == 'Development'
    assert describe_commits(_commits('ABC-1')) == 'Development'


def test_simplify_subject():
    assert simplify_subject('RE: Fwd: invoice layout - next steps') == 'Invoice layout'
    assert simplify_subject('') == 'Client follow-up'
    long = simplify_subject('a' * 50)
    assert len(long) == 35 and long.endswith('...')


def test_meeting_label():
    assert meeting_label('Daily Stand-up') == 'Daily standup'
    assert meeting_label('Sprint Planning Q3') == 'Sprint planning'
    assert meeting_label('Sprint review') == 'Sprint review'
    assert meeting_label('Client demo: kickoff') == 'Client demo'
