"""Premium change scoring component."""

import pandas as pd

from .base import BaseScorer


class PremiumScorer(BaseScorer):
    """
    Score based on PREMIUM_CHANGE (fractional change at renewal).

    A premium increase is the most common reason clients give for
    shopping other plans. PREMIUM_CHANGE of 0.25 means +25%.

    Points:
    - >= +30%: 15
    - +10% to +30%: 10
    - +1% to +10%: 4
    - flat or lower: 0

    A missing value means no change was published and scores 0.
    """

    name = "premium"

    @property
    def required_columns(self) -> list[str]:
        return ["PREMIUM_CHANGE"]

    def score(self, df: pd.DataFrame) -> pd.Series:
        """Calculate premium change score."""
        self.validate(df)
        return self._bucket_at_least(
            df["PREMIUM_CHANGE"].astype(float).fillna(0.0),
            self.config.premium_thresholds,
            self.config.premium_default,
        )
