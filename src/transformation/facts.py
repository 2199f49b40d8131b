"""
Fact Composer

Builds the customer churn fact table: one row per cleaned account record,
linked to every dimension.

Link resolution, in order:
1. customer by customer_id (must exist)
2. location by zip code
3. service by customer_id
4. time from the most recent service quarter
5. time from the estimated contract start (anchor date minus tenure),
   which supersedes step 4 whenever tenure is known
6. churn status by customer_id, last candidate in (customer_id, category) order
"""

from dataclasses import dataclass, field
from datetime import date
from typing import List, Mapping, Optional, Tuple

import polars as pl
import structlog

from src.config import get_settings
from .dimensions import latest_quarter_per_customer
from .enrichers import customer_value
from .errors import AmbiguousLinkError, RecordError, UnresolvedReferenceError

logger = structlog.get_logger(__name__)
settings = get_settings()

SOURCE = "churn_account"

FACT_COLUMNS = [
    "fact_id",
    "customer_id",
    "location_id",
    "service_id",
    "time_id",
    "churn_status_id",
    "tenure_months",
    "monthly_charge",
    "total_charge",
    "churn_score",
    "lifetime_value",
    "tenure_bucket",
    "revenue_flag",
    "risk_category",
]

# Foreign key column -> (dimension table, dimension key)
REFERENCES = {
    "customer_id": ("dim_customer", "customer_id"),
    "location_id": ("dim_location", "location_id"),
    "service_id": ("dim_service", "service_id"),
    "time_id": ("dim_time", "time_id"),
    "churn_status_id": ("dim_churn_status", "churn_status_id"),
}


@dataclass
class FactComposition:
    """Composed fact rows and the record-level issues met while linking"""
    frame: pl.DataFrame
    errors: List[RecordError] = field(default_factory=list)


def months_before(anchor: date, months: pl.Expr) -> pl.Expr:
    """
    Calendar date ``months`` months before ``anchor``, day clamped to the month's length.

    Null where the result falls outside years 1..9999.
    """
    total = pl.lit(anchor.year * 12 + anchor.month - 1) - months
    year = (total // 12).cast(pl.Int64)
    in_range = year.is_between(1, 9999)
    # pl.date evaluates every row, so out-of-range components are swapped before building it
    safe_year = pl.when(in_range).then(year).otherwise(pl.lit(2000)).cast(pl.Int32)
    safe_month = pl.when(in_range).then(total % 12 + 1).otherwise(pl.lit(1)).cast(pl.Int32)
    last_day = pl.date(safe_year, safe_month, 1).dt.month_end().dt.day().cast(pl.Int32)
    day = pl.min_horizontal(pl.lit(anchor.day, dtype=pl.Int32), last_day)
    return pl.when(in_range).then(pl.date(safe_year, safe_month, day)).otherwise(None)



def date_key(value: pl.Expr) -> pl.Expr:
    """YYYYMMDD integer key of a date"""
    return value.dt.strftime("%Y%m%d").cast(pl.Int64)


def unresolved_references(
    frame: pl.DataFrame,
    column: str,
    dimension: pl.DataFrame,
    dimension_name: str,
    dimension_key: str,
    source: str,
    key_column: str,
) -> List[UnresolvedReferenceError]:
    """Errors for rows whose non-null ``column`` has no row in the dimension"""
    missing = (
        frame.filter(pl.col(column).is_not_null())
        .join(dimension.select(pl.col(dimension_key).alias(column)), on=column, how="anti")
    )
    return [
        UnresolvedReferenceError(
            source=source,
            key=row[key_column],
            column=column,
            value=row[column],
            dimension=dimension_name,
        )
        for row in missing.select(list(dict.fromkeys([key_column, column]))).iter_rows(named=True)
    ]


class FactComposer:
    """
    Links cleaned account records to the dimensions.

    Example:
        composer = FactComposer(anchor_date=date(2024, 6, 30))
        composition = composer.compose(account, services, dimensions)
    """

    def __init__(self, anchor_date: Optional[date] = None):
        self.anchor_date = anchor_date or settings.warehouse.effective_anchor_date

    def _link_churn_status(
        self,
        facts: pl.DataFrame,
        statuses: pl.DataFrame,
    ) -> Tuple[pl.DataFrame, List[AmbiguousLinkError]]:
        """Attach churn_status_id; customers with several candidates take the last one"""
        candidates = (
            statuses.sort(["customer_id", "churn_category"])
            .group_by("customer_id", maintain_order=True)
            .agg([
                pl.col("churn_category").alias("candidates"),
                pl.col("churn_category").last().alias("chosen"),
                pl.col("churn_status_id").last(),
            ])
            .join(facts.select("customer_id"), on="customer_id", how="semi")
        )

        errors = [
            AmbiguousLinkError(
                source=SOURCE,
                key=row["customer_id"],
                dimension="dim_churn_status",
                candidates=row["candidates"],
                chosen=row["chosen"],
            )
            for row in candidates.filter(pl.col("candidates").list.len() > 1).iter_rows(named=True)
        ]
        if errors:
            logger.warning("Ambiguous churn status links", customers=len(errors))

        facts = facts.join(
            candidates.select(["customer_id", "churn_status_id"]), on="customer_id", how="left"
        )
        return facts, errors

    def compose(
        self,
        account: pl.DataFrame,
        services: pl.DataFrame,
        dimensions: Mapping[str, pl.DataFrame],
    ) -> FactComposition:
        """
        Compose the fact table.

        Args:
            account: Cleaned and derived account records
            services: Cleaned service-quarter records
            dimensions: Current dimension contents keyed by table name

        Returns:
            FactComposition with rows ordered by customer_id and dense fact ids
        """
        errors: List[RecordError] = []

        facts = account.select([
            "customer_id",
            "zip_code",
            "tenure_months",
            pl.col("monthly_charges").alias("monthly_charge"),
            pl.col("total_charges").alias("total_charge"),
            "churn_score",
            pl.coalesce([pl.col("customer_value"), customer_value(pl.col("monthly_charges"))])
            .alias("lifetime_value"),
            "tenure_bucket",
            "revenue_flag",
            "risk_category",
        ])

        # 1. Customer
        customers = dimensions["dim_customer"]
        errors.extend(unresolved_references(
            facts, "customer_id", customers, "dim_customer", "customer_id", SOURCE, "customer_id"
        ))
        facts = facts.join(customers.select("customer_id"), on="customer_id", how="semi")

        # 2. Location
        facts = facts.join(
            dimensions["dim_location"].select(["zip_code", "location_id"]), on="zip_code", how="left"
        )

        # 3. Service
        facts = facts.join(
            dimensions["dim_service"].select(["customer_id", "service_id"]), on="customer_id", how="left"
        )

        # 4-5. Time: quarter start, superseded by the estimated contract start
        latest = latest_quarter_per_customer(services, self.anchor_date.year).select(
            ["customer_id", "quarter_start"]
        )
        facts = facts.join(latest, on="customer_id", how="left").with_columns(
            months_before(self.anchor_date, pl.col("tenure_months")).alias("contract_start")
        )
        # A tenure too large to place on the calendar cannot reference dim_time
        unresolved: List[UnresolvedReferenceError] = [
            UnresolvedReferenceError(
                source=SOURCE,
                key=row["customer_id"],
                column="tenure_months",
                value=row["tenure_months"],
                dimension="dim_time",
            )
            for row in facts.filter(
                pl.col("tenure_months").is_not_null() & pl.col("contract_start").is_null()
            ).select(["customer_id", "tenure_months"]).iter_rows(named=True)
        ]
        facts = facts.with_columns(
            date_key(
                pl.when(pl.col("tenure_months").is_not_null())
                .then(pl.col("contract_start"))
                .otherwise(pl.col("quarter_start"))
            ).alias("time_id")
        )

        # 6. Churn status
        facts, ambiguous = self._link_churn_status(facts, dimensions["dim_churn_status"])
        errors.extend(ambiguous)

        # Rows referencing a key absent from its dimension are skipped
        for column, (dimension, dimension_key) in REFERENCES.items():
            if column == "customer_id":
                continue
            unresolved.extend(unresolved_references(
                facts, column, dimensions[dimension], dimension, dimension_key, SOURCE, "customer_id"
            ))
        if unresolved:
            skipped = sorted({e.key for e in unresolved})
            facts = facts.filter(~pl.col("customer_id").is_in(skipped))
            logger.warning("Skipped fact rows with unresolved references", rows=len(skipped))
        errors.extend(unresolved)

        facts = (
            facts.sort("customer_id")
            .with_row_index("fact_id", offset=1)
            .with_columns(pl.col("fact_id").cast(pl.Int64))
            .select(FACT_COLUMNS)
        )

        unlinked = {
            column: facts[column].null_count()
            for column in REFERENCES
            if column != "customer_id" and facts[column].null_count()
        }
        if unlinked:
            logger.info("Fact rows with unlinked dimensions", **unlinked)

        logger.info(
            "Composed facts",
            input_rows=len(account),
            facts=len(facts),
            issues=len(errors),
            anchor_date=str(self.anchor_date),
        )
        return FactComposition(frame=facts, errors=errors)
