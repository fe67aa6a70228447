"""
Data schema definitions for client attribute snapshots.

Uses Pandera for runtime validation so that incomplete or out-of-range
snapshots are caught before scoring; the score function turns a failed
validation into the neutral default instead of an error.
"""

import pandera as pa
from pandera import Column, Check, DataFrameSchema

PLAN_TYPES = ["PDP", "HMO", "PPO", "SNP", "MEDSUPP", "OTHER"]

REQUIRED_ATTRIBUTES = [
    "PLAN_TYPE",
    "DAYS_SINCE_CONTACT",
    "MONTHS_UNTIL_RENEWAL",
    "PREMIUM_CHANGE",
    "TENURE_MONTHS",
    "OPEN_ISSUES",
]


# Schema for score function input
ATTRIBUTE_SCHEMA = DataFrameSchema(
    {
        "PLAN_TYPE": Column(
            str,
            nullable=False,
            checks=Check.isin(PLAN_TYPES),
            description="Plan type of the client's current coverage",
        ),
        "DAYS_SINCE_CONTACT": Column(
            int,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(0),
                Check.less_than_or_equal_to(3650),
            ],
            description="Days since last meaningful agent contact",
        ),
        "MONTHS_UNTIL_RENEWAL": Column(
            int,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(-12),  # Allow lapsed renewals
                Check.less_than_or_equal_to(24),
            ],
            description="Months until the plan renews (negative if lapsed)",
        ),
        "PREMIUM_CHANGE": Column(
            float,
            nullable=True,  # Unpublished premium change
            checks=[
                Check.greater_than_or_equal_to(-1.0),
                Check.less_than_or_equal_to(5.0),
            ],
            description="Fractional premium change at renewal (0.25 = +25%)",
        ),
        "TENURE_MONTHS": Column(
            int,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(0),
                Check.less_than_or_equal_to(600),
            ],
            description="Months as a client",
        ),
        "OPEN_ISSUES": Column(
            int,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(0),
                Check.less_than_or_equal_to(100),
            ],
            description="Unresolved service issues",
        ),
    },
    strict=False,  # Attribute sources may carry extra fields
    coerce=True,
    description="Schema for client attribute snapshots",
)


# Schema for score function output
SCORE_OUTPUT_SCHEMA = DataFrameSchema(
    {
        "RISK_SCORE": Column(
            int,
            nullable=False,
            checks=[
                Check.greater_than_or_equal_to(0),
                Check.less_than_or_equal_to(100),
            ],
        ),
        "RISK_CATEGORY": Column(
            str,
            nullable=False,
            checks=Check.isin(
                ["stable", "low", "moderate", "elevated", "high", "critical", "severe"]
            ),
        ),
    },
    strict=False,  # Allow component columns
    description="Schema for score function output",
)

SchemaError = pa.errors.SchemaError
