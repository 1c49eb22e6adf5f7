"""
Local git history as a commit source.
"""
import os
import subprocess
from typing import List

from loguru import logger

from errors import CollectorUnavailable, ConfigurationError
from normalize.models import Commit
from normalize.util import GIT_LOG_FORMAT, parse_git_log

GIT_TIMEOUT = 60


class GitCommitSource:
    """Reads commits with `git log`; one repository per call."""

    def __init__(self, git_binary: str = 'git', timeout: float = GIT_TIMEOUT):
        self.git_binary = git_binary
        self.timeout = timeout

    @staticmethod
    def scan_repos(projects_dir: str) -> List[str]:
        """Immediate children of projects_dir that are git repositories, sorted by name."""
        if not projects_dir or not os.path.isdir(projects_dir):
            raise ConfigurationError(f"Projects directory not found: {projects_dir or '(not set)'}")
        repos = []
        for name in sorted(os.listdir(projects_dir)):
            path = os.path.join(projects_dir, name)
            if os.path.isdir(path) and os.path.exists(os.path.join(path, '.git')):
                repos.append(path)
        logger.debug("found {} git repositories in {}", len(repos), projects_dir)
        return repos

    def list_commits(self, repo: str, start: str, end: str, author: str) -> List[Commit]:
        """Non-merge commits by author between start and end (inclusive, YYYY-MM-DD)."""
        cmd = [
            self.git_binary,
            'log',
            f'--after={start}T00:00:00',
            f'--before={end}T23:59:59',
            f'--author={author}',
            f'--pretty=format:{GIT_LOG_FORMAT}',
            '--date=short',
            '--shortstat',
            '--no-merges',
        ]
        try:
            result = subprocess.run(
                cmd,
                cwd=repo,
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as ex:
            raise CollectorUnavailable(f"git ({os.path.basename(repo)})", (ex.stderr or str(ex)).strip())
        except (OSError, subprocess.TimeoutExpired) as ex:
            raise CollectorUnavailable(f"git ({os.path.basename(repo)})", str(ex))
        commits = parse_git_log(result.stdout, os.path.basename(os.path.normpath(repo)))
        logger.debug("{}: {} commits between {} and {}", repo, len(commits), start, end)
        return commits
