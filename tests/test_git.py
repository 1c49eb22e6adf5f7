import os
import subprocess
import tempfile
import unittest
from unittest.mock import patch

from errors import CollectorUnavailable, ConfigurationError
from ingest.git import GitCommitSource

LOG = "COMMIT|abc123|2025-03-03|ABC-1 add export\n 1 file changed, 30 insertions(+)\n"


class TestScanRepos(unittest.TestCase):
    def test_missing_dir(self):
        with self.assertRaises(ConfigurationError):
            GitCommitSource.scan_repos('/definitely/not/here')
        with self.assertRaises(ConfigurationError):
            GitCommitSource.scan_repos('')

    def test_only_git_children_sorted(self):
        with tempfile.TemporaryDirectory() as root:
            for name in ('zeta', 'alpha', 'plain'):
                os.makedirs(os.path.join(root, name))
            os.makedirs(os.path.join(root, 'zeta', '.git'))
            os.makedirs(os.path.join(root, 'alpha', '.git'))
            repos = GitCommitSource.scan_repos(root)
        self.assertEqual([os.path.basename(r) for r in repos], ['alpha', 'zeta'])


class TestListCommits(unittest.TestCase):
    @patch('ingest.git.subprocess.run')
    def test_parses_output(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=0, stdout=LOG, stderr='')
        commits = GitCommitSource().list_commits('/src/billing', '2025-03-03', '2025-03-06', 'me@example.com')
        self.assertEqual(len(commits), 1)
        self.assertEqual((commits[0].project, commits[0].lines_changed), ('billing', 30))
        cmd = mock_run.call_args[0][0]
        self.assertIn('--after=2025-03-03T00:00:00', cmd)
        self.assertIn('--before=2025-03-06T23:59:59', cmd)
        self.assertIn('--author=me@example.com', cmd)
        self.assertIn('--no-merges', cmd)
        self.assertEqual(mock_run.call_args[1]['cwd'], '/src/billing')

    @patch('ingest.git.subprocess.run')
    def test_git_failure_is_collector_unavailable(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(128, ['git', 'log'], stderr='fatal: not a git repository\n')
        with self.assertRaises(CollectorUnavailable) as ctx:
            GitCommitSource().list_commits('/src/broken', '2025-03-03', '2025-03-06', 'me')
        self.assertEqual(ctx.exception.source, 'git (broken)')
        self.assertEqual(ctx.exception.reason, 'fatal: not a git repository')

    @patch('ingest.git.subprocess.run')
    def test_timeout_is_collector_unavailable(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(['git', 'log'], 60)
        with self.assertRaises(CollectorUnavailable):
            GitCommitSource().list_commits('/src/slow', '2025-03-03', '2025-03-06', 'me')


if __name__ == '__main__':
    unittest.main()
