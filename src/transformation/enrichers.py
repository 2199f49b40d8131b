"""
Derived Attribute Engine

Computes fixed-threshold classifications on cleaned records:
- Tenure bucket
- Revenue flag
- Churn risk category
- Customer value (annualized monthly charges)
- Age bucket

Attributes are recomputed and overwritten on every run.
"""

import polars as pl
import structlog

from src.ingestion.schemas import UNKNOWN

logger = structlog.get_logger(__name__)

HIGH_REVENUE_THRESHOLD = 100.0
MONTHS_PER_YEAR = 12


def tenure_bucket(tenure_months: pl.Expr) -> pl.Expr:
    """<12 months, 12-24 months inclusive, above 24 months"""
    return (
        pl.when(tenure_months.is_null())
        .then(pl.lit(None, dtype=pl.Utf8))
        .when(tenure_months < 12)
        .then(pl.lit("LESS_THAN_1_YEAR"))
        .when(tenure_months <= 24)
        .then(pl.lit("1_TO_2_YEARS"))
        .otherwise(pl.lit("MORE_THAN_2_YEARS"))
    )


def revenue_flag(monthly_charges: pl.Expr) -> pl.Expr:
    return (
        pl.when(monthly_charges > HIGH_REVENUE_THRESHOLD)
        .then(pl.lit("HIGH_REVENUE"))
        .otherwise(pl.lit("NORMAL"))
    )


def risk_category(churn_score: pl.Expr) -> pl.Expr:
    """Null or out-of-range scores are UNKNOWN"""
    return (
        pl.when(churn_score.is_between(80, 100))
        .then(pl.lit("HIGH_RISK"))
        .when(churn_score.is_between(50, 79))
        .then(pl.lit("MEDIUM_RISK"))
        .when((churn_score >= 0) & (churn_score < 50))
        .then(pl.lit("LOW_RISK"))
        .otherwise(pl.lit(UNKNOWN))
    )


def customer_value(monthly_charges: pl.Expr) -> pl.Expr:
    return monthly_charges * MONTHS_PER_YEAR


def age_bucket(age: pl.Expr) -> pl.Expr:
    return (
        pl.when(age.is_null())
        .then(pl.lit(None, dtype=pl.Utf8))
        .when(age < 30)
        .then(pl.lit("UNDER_30"))
        .when(age <= 50)
        .then(pl.lit("30_TO_50"))
        .otherwise(pl.lit("OVER_50"))
    )


class DerivedAttributeEngine:
    """
    Applies the derived attributes to account records and customers.

    Example:
        engine = DerivedAttributeEngine()
        account = engine.derive_account(cleaned_account)
    """

    def derive_account(self, df: pl.DataFrame) -> pl.DataFrame:
        """
        Overwrite the account-level derived columns.

        Adds (or replaces):
        - tenure_bucket from tenure_months
        - revenue_flag from monthly_charges
        - risk_category from churn_score
        - customer_value from monthly_charges
        """
        df = df.with_columns([
            tenure_bucket(pl.col("tenure_months")).alias("tenure_bucket"),
            revenue_flag(pl.col("monthly_charges")).alias("revenue_flag"),
            risk_category(pl.col("churn_score")).alias("risk_category"),
            customer_value(pl.col("monthly_charges")).cast(pl.Float64).alias("customer_value"),
        ])

        logger.info(
            "Derived account attributes",
            rows=len(df),
            high_risk=df.filter(pl.col("risk_category") == "HIGH_RISK").height,
            high_revenue=df.filter(pl.col("revenue_flag") == "HIGH_REVENUE").height,
        )
        return df

    def derive_customers(self, customers: pl.DataFrame) -> pl.DataFrame:
        """Customer ids with their recomputed age bucket"""
        return customers.select([
            pl.col("customer_id"),
            age_bucket(pl.col("age")).alias("age_bucket"),
        ])
