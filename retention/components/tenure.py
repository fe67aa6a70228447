"""Tenure scoring component."""

import pandas as pd

from .base import BaseScorer


class TenureScorer(BaseScorer):
    """
    Score based on TENURE_MONTHS (months as a client of the agency).

    New clients have not built a relationship yet and leave more easily.

    Points:
    - <=6 months: 10
    - 7-18 months: 5
    - >18 months: 0
    """

    name = "tenure"

    @property
    def required_columns(self) -> list[str]:
        return ["TENURE_MONTHS"]

    def score(self, df: pd.DataFrame) -> pd.Series:
        """Calculate tenure score."""
        self.validate(df)
        return self._bucket_at_most(
            df["TENURE_MONTHS"],
            self.config.tenure_thresholds,
            self.config.tenure_default,
        )
