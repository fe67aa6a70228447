"""Open service issue scoring component."""

import pandas as pd

from .base import BaseScorer


class IssueScorer(BaseScorer):
    """
    Score based on OPEN_ISSUES (unresolved complaints, claim or
    provider problems).

    Points:
    - 3+: 15
    - 2: 10
    - 1: 5
    - 0: 0
    """

    name = "issues"

    @property
    def required_columns(self) -> list[str]:
        return ["OPEN_ISSUES"]

    def score(self, df: pd.DataFrame) -> pd.Series:
        """Calculate open issue score."""
        self.validate(df)
        return self._bucket_at_least(
            df["OPEN_ISSUES"],
            self.config.issue_thresholds,
            self.config.issue_default,
        )
