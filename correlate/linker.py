"""
Issue key extraction: recognise Jira keys (PROJ-123) in free text.
"""
import re
from typing import List, Optional

ISSUE_KEY_PATTERN = r"[A-Z][A-Z0-9]+-\d+"

_issue_key_re = re.compile(ISSUE_KEY_PATTERN)


def extract_issue_keys(text: Optional[str]) -> List[str]:
    """Return the distinct issue keys in text, in order of first occurrence."""
    if not text:
        return []
    seen = []
    for m in _issue_key_re.finditer(text):
        key = m.group(0)
        if key not in seen:
            seen.append(key)
    return seen


def project_key_of(issue_key: str) -> str:
    """PROJ-123 -> PROJ"""
    return (issue_key or '').split('-')[0]
