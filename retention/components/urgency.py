"""Renewal urgency scoring component."""

import pandas as pd

from .base import BaseScorer


class UrgencyScorer(BaseScorer):
    """
    Score based on months until the plan renews.

    Closer to renewal = higher immediate churn risk. This is an
    "action trigger": when urgency is high, outreach is needed now.

    Points:
    - <=1 month: 20
    - 2-3 months: 12
    - 4-6 months: 5
    - >6 months: 0
    """

    name = "urgency"

    @property
    def required_columns(self) -> list[str]:
        return ["MONTHS_UNTIL_RENEWAL"]

    def score(self, df: pd.DataFrame) -> pd.Series:
        """Calculate renewal urgency score."""
        self.validate(df)
        return self._bucket_at_most(
            df["MONTHS_UNTIL_RENEWAL"],
            self.config.urgency_thresholds,
            self.config.urgency_default,
        )
