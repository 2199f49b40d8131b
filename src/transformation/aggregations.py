"""
Aggregation Engine

Materialized rollups over the fact table and dimensions. Every table is a
pure function of its inputs and is rebuilt wholesale on each run.

Grains:
- customer, location (every dimension row, zero-customer rows included)
- contract, internet service (via the service dimension)
- time period (estimated contract-start date)
- demographic segment (gender x age bucket)
- churn trend (per quarter, keyed by the quarter's first day)
"""

from typing import Dict, List, Mapping, Optional

import polars as pl
import structlog

from src.ingestion.schemas import UNKNOWN
from .errors import RecordError
from .facts import date_key, unresolved_references

logger = structlog.get_logger(__name__)

COUNT_COLUMNS = ["customer_count", "churned_count"]
SUM_COLUMNS = ["total_monthly_charges", "total_charges"]

# Aggregate name -> grain key columns
GRAINS = {
    "customer": ["customer_id"],
    "location": ["location_id"],
    "contract": ["contract"],
    "time_period": ["time_id"],
    "internet_service": ["internet_service"],
    "demographic": ["gender", "age_bucket"],
    "churn_trend": ["time_id"],
}


def quarter_label(year: pl.Expr, quarter: pl.Expr) -> pl.Expr:
    return pl.format("{}-Q{}", year, quarter)


def churn_metrics() -> List[pl.Expr]:
    """Measures shared by every grain"""
    return [
        pl.len().alias("customer_count"),
        pl.col("is_churned").sum().alias("churned_count"),
        pl.col("monthly_charge").sum().alias("total_monthly_charges"),
        pl.col("monthly_charge").mean().alias("avg_monthly_charges"),
        pl.col("total_charge").sum().alias("total_charges"),
        pl.col("total_charge").mean().alias("avg_total_charges"),
    ]


def finalize_metrics(df: pl.DataFrame) -> pl.DataFrame:
    """Fill empty grains with zero counts and compute the churn rate (null without customers)"""
    return df.with_columns(
        [pl.col(c).fill_null(0).cast(pl.Int64) for c in COUNT_COLUMNS]
        + [pl.col(c).fill_null(0.0).cast(pl.Float64) for c in SUM_COLUMNS]
    ).with_columns(
        pl.when(pl.col("customer_count") > 0)
        .then(pl.col("churned_count") / pl.col("customer_count"))
        .otherwise(pl.lit(None, dtype=pl.Float64))
        .alias("churn_rate")
    )


class AggregationEngine:
    """
    Computes the seven rollup tables.

    Example:
        engine = AggregationEngine()
        tables = engine.compute(facts, dimensions, account)
        tables["location"]  # one row per location, churn_rate null where empty
    """

    def _base(self, facts: pl.DataFrame, account: pl.DataFrame) -> pl.DataFrame:
        """Facts with the churn flag from the account label"""
        labels = account.select(["customer_id", "churn_label"]).unique(subset=["customer_id"], keep="first")
        return facts.join(labels, on="customer_id", how="left").with_columns(
            (pl.col("churn_label").str.to_uppercase() == "YES").fill_null(False).alias("is_churned")
        )

    def _by_dimension(
        self,
        base: pl.DataFrame,
        dimension: pl.DataFrame,
        key: str,
        attributes: List[str],
    ) -> pl.DataFrame:
        """One row per dimension key, including keys without facts"""
        grouped = base.filter(pl.col(key).is_not_null()).group_by(key).agg(churn_metrics())
        rows = dimension.select([key] + attributes).join(grouped, on=key, how="left")
        return finalize_metrics(rows).sort(key)

    def _by_attribute(self, base: pl.DataFrame, columns: List[str]) -> pl.DataFrame:
        """One row per observed attribute combination; missing values grouped as UNKNOWN"""
        rows = (
            base.with_columns([pl.col(c).fill_null(UNKNOWN) for c in columns])
            .group_by(columns)
            .agg(churn_metrics())
        )
        return finalize_metrics(rows).sort(columns)

    def customer(self, base: pl.DataFrame, customers: pl.DataFrame) -> pl.DataFrame:
        return self._by_dimension(base, customers, "customer_id", [])

    def location(self, base: pl.DataFrame, locations: pl.DataFrame) -> pl.DataFrame:
        return self._by_dimension(base, locations, "location_id", ["zip_code", "city", "state"])

    def contract(self, base: pl.DataFrame, services: pl.DataFrame) -> pl.DataFrame:
        with_service = base.join(services.select(["service_id", "contract"]), on="service_id", how="left")
        return self._by_attribute(with_service, ["contract"])

    def internet_service(self, base: pl.DataFrame, services: pl.DataFrame) -> pl.DataFrame:
        with_service = base.join(
            services.select(["service_id", "internet_service"]), on="service_id", how="left"
        )
        return self._by_attribute(with_service, ["internet_service"])

    def demographic(self, base: pl.DataFrame, customers: pl.DataFrame) -> pl.DataFrame:
        with_customer = base.join(
            customers.select(["customer_id", "gender", "age_bucket"]), on="customer_id", how="left"
        )
        return self._by_attribute(with_customer, ["gender", "age_bucket"])

    def time_period(self, dated: pl.DataFrame) -> pl.DataFrame:
        rows = (
            dated.group_by("time_id")
            .agg(churn_metrics() + [
                quarter_label(pl.col("year"), pl.col("quarter")).first().alias("quarter_label"),
            ])
        )
        return finalize_metrics(rows).sort("time_id")

    def churn_trend(
        self,
        dated: pl.DataFrame,
        calendar: pl.DataFrame,
        errors: List[RecordError],
    ) -> pl.DataFrame:
        """Per-quarter metrics with a running churned total"""
        quarterly = dated.with_columns([
            date_key(pl.date(
                pl.col("year").cast(pl.Int32), ((pl.col("quarter") - 1) * 3 + 1).cast(pl.Int32), 1
            )).alias("time_id"),
            quarter_label(pl.col("year"), pl.col("quarter")).alias("quarter_label"),
        ])
        rows = (
            quarterly.group_by(["time_id", "quarter_label"])
            .agg(churn_metrics() + [
                pl.col("churn_score").mean().alias("avg_churn_score"),
                (pl.col("risk_category") == "HIGH_RISK").sum().alias("high_risk_count"),
            ])
        )

        unresolved = unresolved_references(
            rows, "time_id", calendar, "dim_time", "time_id", "agg_churn_trend", "quarter_label"
        )
        if unresolved:
            errors.extend(unresolved)
            rows = rows.join(calendar.select("time_id"), on="time_id", how="semi")

        return (
            finalize_metrics(rows)
            .sort("time_id")
            .with_columns([
                pl.col("high_risk_count").fill_null(0).cast(pl.Int64),
                pl.col("churned_count").cum_sum().cast(pl.Int64).alias("cumulative_churned"),
            ])
        )

    def compute(
        self,
        facts: pl.DataFrame,
        dimensions: Mapping[str, pl.DataFrame],
        account: pl.DataFrame,
        errors: Optional[List[RecordError]] = None,
    ) -> Dict[str, pl.DataFrame]:
        """
        Compute every rollup.

        Args:
            facts: Composed fact rows
            dimensions: Dimension contents keyed by table name
            account: Cleaned account records (churn label)
            errors: Collector for rows dropped over unresolved references

        Returns:
            Rollup frames keyed by aggregate name
        """
        errors = [] if errors is None else errors
        base = self._base(facts, account)
        calendar = dimensions["dim_time"]

        # Facts whose time key is absent from the calendar are left out of time grains
        unresolved = unresolved_references(
            base, "time_id", calendar, "dim_time", "time_id", "fact_customer_churn", "customer_id"
        )
        errors.extend(unresolved)
        dated = base.filter(pl.col("time_id").is_not_null()).join(
            calendar.select(["time_id", "year", "quarter"]), on="time_id", how="inner"
        )

        tables = {
            "customer": self.customer(base, dimensions["dim_customer"]),
            "location": self.location(base, dimensions["dim_location"]),
            "contract": self.contract(base, dimensions["dim_service"]),
            "time_period": self.time_period(dated),
            "internet_service": self.internet_service(base, dimensions["dim_service"]),
            "demographic": self.demographic(base, dimensions["dim_customer"]),
            "churn_trend": self.churn_trend(dated, calendar, errors),
        }

        logger.info(
            "Computed aggregates",
            facts=len(facts),
            unresolved=len(errors),
            **{name: len(df) for name, df in tables.items()},
        )
        return tables
