"""
Signal matcher: assign at most one Jira issue to an e-mail or calendar event.

Heuristics, in order:
- explicit key in the title (high) or body (medium)
- keyword overlap with the summaries of active issues
- bonus for issues of the project a participant's company maps to
"""
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from normalize.models import CandidateIssue, EvidenceSignal, Project
from .linker import extract_issue_keys
from .models import MatchResult, HIGH, MEDIUM, LOW

DEFAULT_MIN_SCORE = 0.3
DEFAULT_HIGH_SCORE = 0.5
DEFAULT_AFFINITY_BONUS = {'key': 0.3, 'name': 0.2, 'word': 0.1}

STOP_WORDS = frozenset([
    # english
    're', 'fwd', 'the', 'and', 'for', 'from', 'with', 'about', 'this', 'that',
    'have', 'has', 'had', 'been', 'will', 'would', 'could', 'should', 'can', 'may',
    'are', 'was', 'were', 'you', 'your', 'our', 'not', 'but', 'all', 'any', 'into',
    'hi', 'hello', 'thanks', 'regards',
    # french
    'une', 'des', 'les', 'pour', 'dans', 'sur', 'avec', 'est', 'sont', 'qui', 'que',
    'vous', 'nous', 'votre', 'notre', 'merci', 'bonjour', 'salut', 'cordialement',
])

_word_split_re = re.compile(r"[\s:;,\-\[\]\(\)/\\'\"!?.<>|]+")
_address_re = re.compile(r"<([^>]+)>")
_domain_re = re.compile(r"@([^.>\s]+)")


def extract_keywords(text: Optional[str]) -> List[str]:
    """Lowercase, stop-word filtered keywords (length > 2, not numeric), first occurrence order."""
    if not text:
        return []
    out: List[str] = []
    for w in _word_split_re.split(text.lower()):
        if len(w) <= 2 or w.isdigit() or w in STOP_WORDS:
            continue
        if w not in out:
            out.append(w)
    return out


def keyword_similarity(keywords1: Sequence[str], keywords2: Sequence[str]) -> float:
    """
    Overlap score in [0, 1]. Each word of the smaller set scores 1 for an exact hit in the
    other set, 0.5 when one word contains the other; the sum is divided by the smaller set size.
    """
    set1, set2 = set(keywords1), set(keywords2)
    if not set1 or not set2:
        return 0.0
    small, large = (set1, set2) if len(set1) <= len(set2) else (set2, set1)
    matches = 0.0
    for word in small:
        if word in large:
            matches += 1
        elif any(word in other or other in word for other in large):
            matches += 0.5
    return matches / len(small)


def company_from_address(address: str, ignored_domains: Iterable[str] = ()) -> Optional[str]:
    """'Jane <jane@acme.io>' -> 'acme'. Generic mail providers return None."""
    if not address:
        return None
    m = _address_re.search(address)
    addr = m.group(1) if m else address
    dm = _domain_re.search(addr)
    if not dm:
        return None
    company = dm.group(1).lower()
    if company in set(d.lower() for d in ignored_domains):
        return None
    return company


def find_project_by_company(company: str, projects: Sequence[Project]) -> Optional[Tuple[Project, str]]:
    """
    Fuzzy match a company token against projects. Returns (project, tier) where tier is
    'key' (exact key), 'name' (name contains the token) or 'word' (weaker overlaps).
    """
    name = (company or '').lower()
    if not name:
        return None
    for p in projects:
        if p.key.lower() == name:
            return p, 'key'
    for p in projects:
        if name in p.name.lower():
            return p, 'name'
    for p in projects:
        squashed = re.sub(r"\s+", '', p.name.lower())
        if squashed and (name in squashed or squashed in name):
            return p, 'name'
    for p in projects:
        if len(p.key) > 1 and p.key.lower() in name:
            return p, 'word'
    for p in projects:
        if any(len(w) > 3 and w in name for w in p.name.lower().split()):
            return p, 'word'
    return None


class SignalMatcher:
    """
    Matches signals against a fixed candidate pool. The pool order decides ties, so the same
    pool and signal always produce the same result.
    """

    def __init__(
        self,
        candidates: Sequence[CandidateIssue],
        projects: Sequence[Project] = (),
        min_score: float = DEFAULT_MIN_SCORE,
        high_score: float = DEFAULT_HIGH_SCORE,
        affinity_bonus: Optional[Dict[str, float]] = None,
        ignored_domains: Iterable[str] = (),
    ):
        self.candidates = list(candidates)
        self.projects = list(projects)
        self.min_score = float(min_score)
        self.high_score = float(high_score)
        self.affinity_bonus = dict(DEFAULT_AFFINITY_BONUS)
        if affinity_bonus:
            self.affinity_bonus.update(affinity_bonus)
        self.ignored_domains = tuple(ignored_domains)
        self._candidate_keywords = [extract_keywords(c.summary) for c in self.candidates]
        self._company_cache: Dict[str, Optional[Tuple[Project, str]]] = {}

    def _project_for_company(self, company: str) -> Optional[Tuple[Project, str]]:
        if company not in self._company_cache:
            self._company_cache[company] = find_project_by_company(company, self.projects)
        return self._company_cache[company]

    def participant_affinity(self, signal: EvidenceSignal) -> Tuple[Optional[Project], float]:
        """Project of the first participant whose company resolves, with its bonus."""
        for participant in signal.participants:
            company = company_from_address(participant, self.ignored_domains)
            if not company:
                continue
            found = self._project_for_company(company)
            if found:
                project, tier = found
                return project, float(self.affinity_bonus.get(tier, 0.0))
        return None, 0.0

    @staticmethod
    def explicit_match(signal: EvidenceSignal) -> Optional[MatchResult]:
        """Issue key written in the title (high) or the body (medium)."""
        label = 'subject' if signal.kind == 'email' else 'title'
        keys = extract_issue_keys(signal.title)
        if keys:
            return MatchResult(signal, keys[0], HIGH, f"Issue key in {label}: {keys[0]}", 1.0)
        keys = extract_issue_keys(signal.body)
        if keys:
            return MatchResult(signal, keys[0], MEDIUM, f"Issue key in body: {keys[0]}", 1.0)
        return None

    def match(self, signal: EvidenceSignal) -> MatchResult:
        explicit = self.explicit_match(signal)
        if explicit:
            return explicit

        keywords = extract_keywords(signal.text)
        if not keywords:
            return MatchResult(signal, None, LOW, 'No keywords to compare')
        if not self.candidates:
            return MatchResult(signal, None, LOW, 'No candidate issues')

        project, bonus = self.participant_affinity(signal)

        best_idx = -1
        best_score = 0.0
        best_similarity = 0.0
        for idx, issue in enumerate(self.candidates):
            similarity = keyword_similarity(keywords, self._candidate_keywords[idx])
            issue_bonus = bonus if project and issue.project == project.key else 0.0
            score = similarity + issue_bonus
            # strict comparison keeps the first candidate on ties
            if score > best_score:
                best_idx, best_score, best_similarity = idx, score, similarity

        if best_idx < 0 or best_score <= self.min_score:
            return MatchResult(signal, None, LOW, f"No candidate above {self.min_score:.2f} (best {best_score:.2f})", best_score)

        issue = self.candidates[best_idx]
        reason = f"Similarity: {best_similarity * 100:.0f}%"
        if project and issue.project == project.key and bonus:
            reason += f" + participant project match ({project.name})"
        reason += f' -> "{issue.summary[:50]}"'
        confidence = HIGH if best_score > self.high_score else MEDIUM
        return MatchResult(signal, issue.key, confidence, reason, best_score)

    def match_all(self, signals: Iterable[EvidenceSignal]) -> List[MatchResult]:
        return [self.match(s) for s in signals]
