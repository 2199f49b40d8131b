"""
Dimension Builder

Resolves cleaned source records into the warehouse dimensions:
- Customer (natural key customer_id, attributes merged across sources)
- Location (surrogate location_id, one row per zip code)
- Service (surrogate service_id, one profile per customer)
- Time (YYYYMMDD keys, generated once for the configured span)
- Churn status (surrogate churn_status_id per customer and category)

Dimensions are insert-if-absent: existing rows are never updated here.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import polars as pl
import structlog

from src.config import get_settings
from src.ingestion.schemas import UNKNOWN

logger = structlog.get_logger(__name__)
settings = get_settings()


LOCATION_COLUMNS = ["zip_code", "country", "state", "city", "latitude", "longitude"]

ACCOUNT_SERVICE_COLUMNS = [
    "customer_id",
    "phone_service",
    "multiple_lines",
    "internet_service",
    "online_security",
    "online_backup",
    "device_protection",
    "tech_support",
    "streaming_tv",
    "streaming_movies",
    "contract",
    "paperless_billing",
    "payment_method",
]

USAGE_COLUMNS = ["avg_monthly_gb_download", "avg_monthly_long_distance_charges", "internet_type"]

CUSTOMER_FLAGS = ["senior_citizen", "partner", "dependents", "married"]


# =============================================================================
# SURROGATE KEYS
# =============================================================================

class IdAllocator(Protocol):
    """Hands out surrogate keys for a dimension"""

    def allocate(self, dimension: str, count: int, floor: int = 0) -> List[int]:
        ...


class SequenceAllocator:
    """
    Monotonic counter per dimension.

    Keys continue from the larger of the last key handed out and the current
    maximum key of the dimension (``floor``), so reruns never reuse a key.
    """

    def __init__(self):
        self._last: Dict[str, int] = {}

    def allocate(self, dimension: str, count: int, floor: int = 0) -> List[int]:
        start = max(self._last.get(dimension, 0), floor) + 1
        if count > 0:
            self._last[dimension] = start + count - 1
        return list(range(start, start + count))


# =============================================================================
# MERGE POLICY
# =============================================================================

class MergeRule(str, Enum):
    """How a merged column picks its value across sources"""
    PREFER = "prefer"                  # only the named source
    FIRST_NON_NULL = "first_non_null"  # candidate order, restricted to the named sources
    COALESCE = "coalesce"              # explicit source order


@dataclass(frozen=True)
class ColumnMerge:
    rule: MergeRule
    sources: Tuple[str, ...] = ()


def _is_present(value: Any) -> bool:
    return value is not None and value != UNKNOWN


class MergePolicy:
    """
    Column-by-column merge of one entity described by several sources.

    An ``UNKNOWN`` categorical counts as absent, so a known value from a
    lower-priority source is kept over it.
    """

    def __init__(self, rules: Mapping[str, ColumnMerge]):
        self.rules = dict(rules)

    def _order(self, rule: ColumnMerge, sources: Sequence[str]) -> List[str]:
        if rule.rule == MergeRule.PREFER:
            return list(rule.sources[:1])
        if rule.rule == MergeRule.COALESCE:
            return list(rule.sources)
        return [s for s in sources if not rule.sources or s in rule.sources]

    def resolve(self, candidates: Mapping[str, Optional[Mapping[str, Any]]]) -> Dict[str, Any]:
        """
        Resolve one entity from per-source records.

        Args:
            candidates: Source name -> record (or None), in candidate order

        Returns:
            Merged attributes
        """
        sources = list(candidates)
        merged = {}
        for column, rule in self.rules.items():
            merged[column] = None
            for source in self._order(rule, sources):
                value = (candidates.get(source) or {}).get(column)
                if _is_present(value):
                    merged[column] = value
                    break
        return merged

    def merge(self, frames: Mapping[str, pl.DataFrame], key: str, primary: str) -> pl.DataFrame:
        """
        Apply the policy to whole frames.

        Every source is left-joined onto the keys of the primary source; the
        merged columns are coalesced in each rule's source order.
        """
        sources = list(frames)
        merged = frames[primary].select(key).unique(maintain_order=True)

        for source, frame in frames.items():
            columns = [c for c in self.rules if c in frame.columns and c != key]
            renamed = (
                frame.select([key] + [pl.col(c).alias(f"{c}__{source}") for c in columns])
                .unique(subset=[key], keep="first", maintain_order=True)
            )
            merged = merged.join(renamed, on=key, how="left")

        exprs = []
        for column, rule in self.rules.items():
            parts = []
            for source in self._order(rule, sources):
                name = f"{column}__{source}"
                if name not in merged.columns:
                    continue
                part = pl.col(name)
                if merged.schema[name] == pl.Utf8:
                    part = pl.when(part == UNKNOWN).then(None).otherwise(part)
                parts.append(part)
            exprs.append(pl.coalesce(parts).alias(column) if parts else pl.lit(None).alias(column))

        return merged.select([pl.col(key)] + exprs)


CUSTOMER_MERGE_POLICY = MergePolicy({
    "gender": ColumnMerge(MergeRule.COALESCE, ("demographics", "churn_account")),
    "age": ColumnMerge(MergeRule.PREFER, ("demographics",)),
    "senior_citizen": ColumnMerge(MergeRule.FIRST_NON_NULL, ("churn_account", "demographics")),
    "partner": ColumnMerge(MergeRule.PREFER, ("churn_account",)),
    "dependents": ColumnMerge(MergeRule.FIRST_NON_NULL, ("churn_account", "demographics")),
    "married": ColumnMerge(MergeRule.PREFER, ("demographics",)),
    "number_of_dependents": ColumnMerge(MergeRule.PREFER, ("demographics",)),
})


# =============================================================================
# QUARTERS AND CALENDAR
# =============================================================================

def quarter_start(text: pl.Expr, default_year: int) -> pl.Expr:
    """
    First calendar day of a quarter label.

    Accepts ``Qn``, ``Qn-YYYY`` and ``YYYY-Qn``; labels without a year use
    ``default_year``. Unparseable labels yield null.
    """
    label = text.str.strip_chars().str.to_uppercase()
    quarter = pl.coalesce([
        label.str.extract(r"^Q([1-4])(?:-\d{4})?$", 1),
        label.str.extract(r"^\d{4}-Q([1-4])$", 1),
    ]).cast(pl.Int32)
    year = pl.coalesce([
        label.str.extract(r"^Q[1-4]-(\d{4})$", 1),
        label.str.extract(r"^(\d{4})-Q[1-4]$", 1),
    ]).cast(pl.Int32).fill_null(default_year)
    return pl.date(year, (quarter - 1) * 3 + 1, 1)


def latest_quarter_per_customer(services: pl.DataFrame, default_year: int) -> pl.DataFrame:
    """The most recent service-quarter record of each customer, with its quarter start"""
    return (
        services
        .with_columns(quarter_start(pl.col("quarter"), default_year).alias("quarter_start"))
        .sort(["customer_id", "quarter_start"], nulls_last=False)
        .unique(subset=["customer_id"], keep="last", maintain_order=True)
    )


def generate_time_dimension(start: date, end: date) -> pl.DataFrame:
    """One row per calendar date in [start, end]"""
    dates = pl.date_range(start, end, interval="1d", eager=True)
    return pl.DataFrame({"full_date": dates}).select([
        pl.col("full_date").dt.strftime("%Y%m%d").cast(pl.Int64).alias("time_id"),
        pl.col("full_date"),
        pl.col("full_date").dt.day().cast(pl.Int64).alias("day"),
        pl.col("full_date").dt.month().cast(pl.Int64).alias("month"),
        pl.col("full_date").dt.strftime("%B").alias("month_name"),
        pl.col("full_date").dt.quarter().cast(pl.Int64).alias("quarter"),
        pl.col("full_date").dt.year().cast(pl.Int64).alias("year"),
        pl.col("full_date").dt.weekday().cast(pl.Int64).alias("weekday"),
        pl.col("full_date").dt.strftime("%A").alias("weekday_name"),
    ])


def missing_time_rows(existing: pl.DataFrame, start: date, end: date) -> pl.DataFrame:
    """
    Calendar rows of [start, end] absent from the existing time dimension.

    Returns an empty frame without generating anything when the existing
    dimension already covers the range.
    """
    expected_days = (end - start).days + 1
    if not existing.is_empty():
        covered = existing.filter(pl.col("full_date").is_between(start, end))
        if len(covered) >= expected_days:
            return generate_time_dimension(start, start).clear()
    calendar = generate_time_dimension(start, end)
    if existing.is_empty():
        return calendar
    return calendar.join(existing.select("time_id"), on="time_id", how="anti")


# =============================================================================
# BUILDER
# =============================================================================

class DimensionBuilder:
    """
    Builds new dimension rows from cleaned sources.

    Example:
        builder = DimensionBuilder()
        new_locations = builder.build_locations(location, account, population, existing)
    """

    def __init__(
        self,
        allocator: Optional[IdAllocator] = None,
        anchor_date: Optional[date] = None,
        time_range: Optional[Tuple[date, date]] = None,
        customer_policy: MergePolicy = CUSTOMER_MERGE_POLICY,
    ):
        self.allocator = allocator or SequenceAllocator()
        self.anchor_date = anchor_date or settings.warehouse.effective_anchor_date
        self.time_range = time_range or (settings.warehouse.time_start, settings.warehouse.time_end)
        self.customer_policy = customer_policy

    def _insert_if_absent(
        self,
        candidates: pl.DataFrame,
        existing: pl.DataFrame,
        natural_key: List[str],
        surrogate_key: Optional[str] = None,
        dimension: str = "",
    ) -> pl.DataFrame:
        """Drop candidates already present, order by natural key and assign surrogate keys"""
        if not existing.is_empty():
            candidates = candidates.join(existing.select(natural_key), on=natural_key, how="anti")
        candidates = candidates.sort(natural_key)

        if surrogate_key is None:
            return candidates

        floor = 0
        if not existing.is_empty():
            floor = existing[surrogate_key].max() or 0
        ids = self.allocator.allocate(dimension, len(candidates), floor=floor)
        return candidates.with_columns(pl.Series(surrogate_key, ids, dtype=pl.Int64)).select(
            [surrogate_key] + [c for c in candidates.columns]
        )

    def resolve_customer(
        self,
        customer_id: str,
        candidates: Mapping[str, Optional[Mapping[str, Any]]],
    ) -> Dict[str, Any]:
        """Resolve a single customer row from its per-source records"""
        row = {"customer_id": customer_id, **self.customer_policy.resolve(candidates)}
        if row["gender"] is None:
            row["gender"] = UNKNOWN
        for flag in CUSTOMER_FLAGS:
            if row.get(flag) is None:
                row[flag] = False
        row["age_bucket"] = None
        return row

    def build_customers(
        self,
        account: pl.DataFrame,
        demographics: pl.DataFrame,
        existing: pl.DataFrame,
    ) -> pl.DataFrame:
        """Merge account and demographics records into new customer rows"""
        merged = self.customer_policy.merge(
            {"churn_account": account, "demographics": demographics},
            key="customer_id",
            primary="churn_account",
        )
        merged = merged.with_columns(
            [pl.col("gender").fill_null(UNKNOWN)]
            + [pl.col(flag).fill_null(False) for flag in CUSTOMER_FLAGS]
            + [pl.lit(None, dtype=pl.Utf8).alias("age_bucket")]
        )
        new_rows = self._insert_if_absent(merged, existing, ["customer_id"])
        logger.info("Resolved customers", candidates=len(merged), new=len(new_rows))
        return new_rows

    def build_locations(
        self,
        location: pl.DataFrame,
        account: pl.DataFrame,
        population: pl.DataFrame,
        existing: pl.DataFrame,
    ) -> pl.DataFrame:
        """Distinct zip codes from the location source, then the account source"""
        candidates = (
            pl.concat(
                [location.select(LOCATION_COLUMNS), account.select(LOCATION_COLUMNS)],
                how="vertical_relaxed",
            )
            .filter(pl.col("zip_code").is_not_null())
            .unique(subset=["zip_code"], keep="first", maintain_order=True)
        )

        populations = (
            population.select(["zip_code", "population"])
            .unique(subset=["zip_code"], keep="first", maintain_order=True)
        )
        candidates = candidates.join(populations, on="zip_code", how="left")

        new_rows = self._insert_if_absent(
            candidates, existing, ["zip_code"], surrogate_key="location_id", dimension="dim_location"
        )
        logger.info("Resolved locations", candidates=len(candidates), new=len(new_rows))
        return new_rows

    def build_services(
        self,
        account: pl.DataFrame,
        services: pl.DataFrame,
        existing: pl.DataFrame,
    ) -> pl.DataFrame:
        """Account service profile enriched with the latest quarter's usage"""
        latest = latest_quarter_per_customer(services, self.anchor_date.year).select(
            ["customer_id"] + USAGE_COLUMNS
        )
        candidates = account.select(ACCOUNT_SERVICE_COLUMNS).join(latest, on="customer_id", how="left")

        new_rows = self._insert_if_absent(
            candidates, existing, ["customer_id"], surrogate_key="service_id", dimension="dim_service"
        )
        logger.info("Resolved service profiles", candidates=len(candidates), new=len(new_rows))
        return new_rows

    def build_churn_statuses(self, status: pl.DataFrame, existing: pl.DataFrame) -> pl.DataFrame:
        """Distinct (customer, churn category) pairs"""
        candidates = (
            status.select(["customer_id", "churn_category"])
            .filter(pl.col("churn_category").is_not_null())
            .unique(maintain_order=True)
        )
        new_rows = self._insert_if_absent(
            candidates,
            existing,
            ["customer_id", "churn_category"],
            surrogate_key="churn_status_id",
            dimension="dim_churn_status",
        )
        logger.info("Resolved churn statuses", candidates=len(candidates), new=len(new_rows))
        return new_rows

    def build_time(self, existing: pl.DataFrame) -> pl.DataFrame:
        start, end = self.time_range
        new_rows = missing_time_rows(existing, start, end)
        logger.info("Resolved calendar", start=str(start), end=str(end), new=len(new_rows))
        return new_rows

    def build(self, cleaned: Mapping[str, pl.DataFrame], existing: Mapping[str, pl.DataFrame]) -> Dict[str, pl.DataFrame]:
        """
        New rows for every dimension.

        Args:
            cleaned: Cleaned frames keyed by source name
            existing: Current dimension contents keyed by table name

        Returns:
            Rows to append, keyed by dimension table name
        """
        account = cleaned["churn_account"]
        return {
            "dim_customer": self.build_customers(account, cleaned["demographics"], existing["dim_customer"]),
            "dim_location": self.build_locations(
                cleaned["location"], account, cleaned["population"], existing["dim_location"]
            ),
            "dim_service": self.build_services(account, cleaned["services"], existing["dim_service"]),
            "dim_time": self.build_time(existing["dim_time"]),
            "dim_churn_status": self.build_churn_statuses(cleaned["status"], existing["dim_churn_status"]),
        }
