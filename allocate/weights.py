"""
Weighting strategies for splitting a day's time budget across issues.

A strategy sees one IssueGroup at a time and returns a non-negative number; hours are
allocated in proportion to those numbers.
"""
from typing import Dict, List, Optional

from errors import ConfigurationError
from normalize.models import Commit


class IssueGroup:
    """
    Commits of one day that name the same issue key.
    """
    def __init__(self, issue_key: str, commits: Optional[List[Commit]] = None, effort_estimate: Optional[float] = None):
        self.issue_key = issue_key
        self.commits = commits or []
        self.effort_estimate = effort_estimate

    @property
    def lines_changed(self) -> int:
        return sum(c.lines_changed for c in self.commits)

    @property
    def estimate_multiplier(self) -> float:
        """Story points when known and positive, otherwise 1."""
        if self.effort_estimate is not None and self.effort_estimate > 0:
            return float(self.effort_estimate)
        return 1.0

    def __repr__(self):
        return f"IssueGroup({self.issue_key!r}, commits={len(self.commits)}, estimate={self.effort_estimate})"


class WeightStrategy:
    name = 'base'
    # whether weight() reads effort_estimate; allocators skip estimate lookups otherwise
    uses_estimates = False

    def weight(self, group: IssueGroup) -> float:
        raise NotImplementedError


class LinesTimesEstimateWeight(WeightStrategy):
    """lines changed x effort-estimate multiplier"""
    name = 'lines_x_estimate'
    uses_estimates = True

    def weight(self, group: IssueGroup) -> float:
        return group.lines_changed * group.estimate_multiplier


class LinesChangedWeight(WeightStrategy):
    name = 'lines'

    def weight(self, group: IssueGroup) -> float:
        return float(group.lines_changed)


class CommitCountWeight(WeightStrategy):
    name = 'commit_count'

    def weight(self, group: IssueGroup) -> float:
        return float(len(group.commits))


STRATEGIES: Dict[str, type] = {
    cls.name: cls for cls in (LinesTimesEstimateWeight, LinesChangedWeight, CommitCountWeight)
}


def get_strategy(name: str) -> WeightStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ConfigurationError(f"Unknown weighting {name!r}; expected one of {', '.join(sorted(STRATEGIES))}")
