"""Plan-type risk scoring component."""

import pandas as pd

from .base import BaseScorer


class PlanScorer(BaseScorer):
    """
    Score based on the client's plan type.

    Standalone drug plans see the most switching at each enrollment
    period; special needs plans the least.

    Points:
    - PDP: 10
    - HMO: 6
    - PPO: 3
    - SNP: 2
    - anything else: plan_default
    """

    name = "plan"

    @property
    def required_columns(self) -> list[str]:
        return ["PLAN_TYPE"]

    def score(self, df: pd.DataFrame) -> pd.Series:
        """Map plan types to risk points."""
        self.validate(df)
        return (
            df["PLAN_TYPE"]
            .astype("string")
            .str.upper()
            .map(self.config.plan_points)
            .fillna(self.config.plan_default)
            .astype(int)
        )
