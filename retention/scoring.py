"""
Score functions: the pluggable capability that turns a client's attribute
snapshot into a base risk score.

The engine only ever calls `ScoreFunction.compute`. The rule-weighted
implementation below is the default; a learned model can replace it by
subclassing ScoreFunction.

Usage:
    from retention import RuleWeightedScoreFunction

    score_fn = RuleWeightedScoreFunction()
    score = score_fn.compute({"PLAN_TYPE": "PDP", "DAYS_SINCE_CONTACT": 95, ...})

    # Whole book at once, with component breakdown
    result = score_fn.compute_frame(df)
    print(result.df[["CLIENT_ID", "RISK_SCORE", "RISK_CATEGORY"]])
    print(result.component_breakdown())
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import numpy as np
import pandas as pd
import pandera as pa

from .categories import categorize, categories_at_or_above, Category
from .components import (
    PlanScorer,
    RecencyScorer,
    UrgencyScorer,
    PremiumScorer,
    TenureScorer,
    IssueScorer,
)
from .config import ScoringConfig, DEFAULT_CONFIG
from .schemas import ATTRIBUTE_SCHEMA, REQUIRED_ATTRIBUTES, SCORE_OUTPUT_SCHEMA

logger = logging.getLogger(__name__)


class ScoreFunction(ABC):
    """
    Pure, deterministic mapping from an attribute snapshot to a score.

    Implementations must return an integer in [0, 100], must not perform
    I/O, and must return a neutral default instead of raising when the
    snapshot is incomplete.
    """

    name: str = "base"
    version: str = "0"

    @abstractmethod
    def compute(self, attributes: Mapping[str, Any]) -> int:
        """Compute the base risk score for one client."""


@dataclass
class ScoringResult:
    """
    Container for batch scoring results with component breakdown.

    Attributes:
        df: Input DataFrame with component and total score columns added
        component_columns: List of component score column names
    """

    df: pd.DataFrame
    component_columns: list[str]

    def get_at_or_above(self, min_category: str = "high") -> pd.DataFrame:
        """Rows whose category is at least as urgent as `min_category`."""
        keys = [c.key for c in categories_at_or_above(Category.parse(min_category))]
        return self.df[self.df["RISK_CATEGORY"].isin(keys)]

    def summary(self) -> pd.DataFrame:
        """Counts and average score by plan type and category."""
        return (
            self.df.groupby(["PLAN_TYPE", "RISK_CATEGORY"])
            .agg(
                count=("RISK_SCORE", "count"),
                avg_score=("RISK_SCORE", "mean"),
            )
            .round(1)
        )

    def component_breakdown(self) -> pd.DataFrame:
        """Average, max and min contribution of each component."""
        stats = {}
        for col in self.component_columns:
            component_name = col.replace("_score", "")
            stats[component_name] = {
                "mean": self.df[col].mean(),
                "max": self.df[col].max(),
                "min": self.df[col].min(),
            }
        return pd.DataFrame(stats).T.round(1)


class RuleWeightedScoreFunction(ScoreFunction):
    """
    Vectorized rule-weighted churn risk scoring.

    Components:
    - Plan Type (0-10)
    - Contact Recency (0-30)
    - Renewal Urgency (0-20)
    - Premium Change (0-15)
    - Tenure (0-10)
    - Service Issues (0-15)

    The total is capped at `config.max_score`. Snapshots that are missing
    a required attribute or fail ATTRIBUTE_SCHEMA score
    `config.neutral_score`.
    """

    name = "rule_weighted"

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self.version = self.config.version
        self.components = {
            "plan": PlanScorer(self.config),
            "recency": RecencyScorer(self.config),
            "urgency": UrgencyScorer(self.config),
            "premium": PremiumScorer(self.config),
            "tenure": TenureScorer(self.config),
            "issues": IssueScorer(self.config),
        }

    def compute(self, attributes: Mapping[str, Any]) -> int:
        missing = [col for col in REQUIRED_ATTRIBUTES if col not in attributes]
        if missing:
            logger.warning(
                "Attribute snapshot missing %s; using neutral score %d",
                missing, self.config.neutral_score,
            )
            return self.config.neutral_score

        df = pd.DataFrame([{col: attributes[col] for col in REQUIRED_ATTRIBUTES}])
        try:
            df = ATTRIBUTE_SCHEMA.validate(df)
        except (pa.errors.SchemaError, pa.errors.SchemaErrors) as exc:
            logger.warning(
                "Attribute snapshot failed validation (%s); using neutral score %d",
                exc, self.config.neutral_score,
            )
            return self.config.neutral_score

        total = self._component_frame(df).sum(axis=1).iloc[0]
        return int(min(total, self.config.max_score))

    def compute_frame(self, df: pd.DataFrame) -> ScoringResult:
        """
        Score every row of a DataFrame.

        Rows that fail validation get the neutral score and
        NEUTRAL_FALLBACK=True; component columns for those rows are 0.

        Raises:
            ValueError: If required columns are missing entirely
        """
        missing = set(REQUIRED_ATTRIBUTES) - set(df.columns)
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        result = df.copy()
        invalid_index = self._invalid_rows(result)
        valid = result.drop(index=invalid_index)
        valid = ATTRIBUTE_SCHEMA.validate(valid[REQUIRED_ATTRIBUTES])

        components = self._component_frame(valid).reindex(result.index, fill_value=0)
        component_cols = list(components.columns)
        for col in component_cols:
            result[col] = components[col].astype(int)

        total = components.sum(axis=1).clip(upper=self.config.max_score)
        fallback = result.index.isin(invalid_index)
        result["RISK_SCORE"] = np.where(
            fallback, self.config.neutral_score, total
        ).astype(int)
        result["NEUTRAL_FALLBACK"] = fallback
        result["RISK_CATEGORY"] = result["RISK_SCORE"].map(
            lambda score: categorize(int(score)).key
        )

        SCORE_OUTPUT_SCHEMA.validate(result)
        return ScoringResult(df=result, component_columns=component_cols)

    def _component_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        return pd.DataFrame(
            {
                f"{name}_score": component.score(df)
                for name, component in self.components.items()
            },
            index=df.index,
        )

    def _invalid_rows(self, df: pd.DataFrame) -> list:
        try:
            ATTRIBUTE_SCHEMA.validate(df[REQUIRED_ATTRIBUTES], lazy=True)
        except pa.errors.SchemaErrors as exc:
            failed = set(exc.failure_cases["index"].dropna().tolist())
            bad = [label for label in df.index if label in failed]
            logger.warning("%d rows failed attribute validation", len(bad))
            return bad
        return []


def generate_sample_attributes(n_clients: int = 100, seed: int = 42) -> pd.DataFrame:
    """
    Generate realistic synthetic attribute snapshots.

    - Plan mix: HMO 45%, PPO 25%, PDP 20%, SNP 10%
    - Contact recency skewed toward recent, with a long stale tail
    - Premium changes centred slightly above zero
    """
    rng = np.random.default_rng(seed)

    plans = rng.choice(
        ["HMO", "PPO", "PDP", "SNP"],
        size=n_clients,
        p=[0.45, 0.25, 0.20, 0.10],
    )
    days_since_contact = np.clip(
        rng.exponential(scale=60, size=n_clients).astype(int), 0, 400
    )
    months_until_renewal = rng.integers(0, 13, size=n_clients)
    premium_change = np.clip(
        rng.normal(loc=0.05, scale=0.15, size=n_clients), -0.5, 1.0
    ).round(2)
    tenure_months = np.clip(
        rng.normal(loc=30, scale=20, size=n_clients).astype(int), 0, 240
    )
    open_issues = rng.choice([0, 1, 2, 3, 4], size=n_clients, p=[0.6, 0.2, 0.1, 0.06, 0.04])

    return pd.DataFrame(
        {
            "CLIENT_ID": [f"CLIENT_{i:04d}" for i in range(n_clients)],
            "PLAN_TYPE": plans,
            "DAYS_SINCE_CONTACT": days_since_contact,
            "MONTHS_UNTIL_RENEWAL": months_until_renewal,
            "PREMIUM_CHANGE": premium_change,
            "TENURE_MONTHS": tenure_months,
            "OPEN_ISSUES": open_issues,
        }
    )
