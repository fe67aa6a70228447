"""Contact recency scoring component."""

import pandas as pd

from .base import BaseScorer


class RecencyScorer(BaseScorer):
    """
    Score based on days since the last meaningful contact.

    Engagement decay is the strongest single churn signal in the book:
    clients who have not heard from their agent in a quarter are shopping.

    Points:
    - 180+ days: 30
    - 120-179 days: 24
    - 90-119 days: 16
    - 60-89 days: 8
    - 30-59 days: 3
    - <30 days: 0
    """

    name = "recency"

    @property
    def required_columns(self) -> list[str]:
        return ["DAYS_SINCE_CONTACT"]

    def score(self, df: pd.DataFrame) -> pd.Series:
        """Calculate contact recency score."""
        self.validate(df)
        return self._bucket_at_least(
            df["DAYS_SINCE_CONTACT"],
            self.config.recency_thresholds,
            self.config.recency_default,
        )
