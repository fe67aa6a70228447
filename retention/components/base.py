"""Base class for scoring components."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from ..config import ScoringConfig


class BaseScorer(ABC):
    """
    Abstract base class for scoring components.

    Each component calculates a single aspect of churn risk
    using vectorized pandas operations.
    """

    name: str = "base"

    def __init__(self, config: "ScoringConfig"):
        """
        Initialize scorer with configuration.

        Args:
            config: ScoringConfig instance with thresholds and points
        """
        self.config = config

    @abstractmethod
    def score(self, df: pd.DataFrame) -> pd.Series:
        """
        Calculate component score for all rows.

        Args:
            df: DataFrame with required columns

        Returns:
            Series of integer points
        """

    @property
    @abstractmethod
    def required_columns(self) -> list[str]:
        """List of columns required by this scorer."""

    def validate(self, df: pd.DataFrame) -> None:
        """Validate required columns exist."""
        missing = set(self.required_columns) - set(df.columns)
        if missing:
            raise ValueError(
                f"{self.__class__.__name__} requires columns: {missing}"
            )

    def _bucket_at_most(
        self,
        values: pd.Series,
        thresholds: Sequence[tuple],
        default: int,
    ) -> pd.Series:
        """Points for the first threshold with value <= bound."""
        conditions = [values <= bound for bound, _ in thresholds]
        choices = [points for _, points in thresholds]
        return pd.Series(
            np.select(conditions, choices, default=default),
            index=values.index,
            dtype=int,
        )

    def _bucket_at_least(
        self,
        values: pd.Series,
        thresholds: Sequence[tuple],
        default: int,
    ) -> pd.Series:
        """Points for the first threshold with value >= bound."""
        conditions = [values >= bound for bound, _ in thresholds]
        choices = [points for _, points in thresholds]
        return pd.Series(
            np.select(conditions, choices, default=default),
            index=values.index,
            dtype=int,
        )
