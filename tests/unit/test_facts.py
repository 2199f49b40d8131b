"""
Unit Tests - Fact Composer
"""
from datetime import date

import polars as pl
import pytest

from src.transformation.dimensions import generate_time_dimension
from src.transformation.errors import AmbiguousLinkError, UnresolvedReferenceError
from src.transformation.facts import FACT_COLUMNS, FactComposer, date_key, months_before, unresolved_references


@pytest.fixture
def composer(anchor_date):
    return FactComposer(anchor_date=anchor_date)


class TestDateHelpers:

    def test_months_before_clamps_day(self):
        df = pl.DataFrame({"months": [0, 1, 13, None]}, schema={"months": pl.Int64})
        result = df.select(months_before(date(2024, 3, 31), pl.col("months")).alias("d"))["d"].to_list()
        assert result == [date(2024, 3, 31), date(2024, 2, 29), date(2023, 2, 28), None]

    def test_months_before_outside_calendar_is_null(self):
        df = pl.DataFrame({"months": [10_000_000, -10_000_000, 2]}, schema={"months": pl.Int64})
        result = df.select(months_before(date(2024, 6, 1), pl.col("months")).alias("d"))["d"].to_list()
        assert result == [None, None, date(2024, 4, 1)]

    def test_date_key(self):
        df = pl.DataFrame({"d": [date(2023, 7, 30), None]})
        assert df.select(date_key(pl.col("d")))["d"].to_list() == [20230730, None]

    def test_unresolved_references_on_the_key_column(self):
        frame = pl.DataFrame({"customer_id": ["C1", "C9", None]})
        dimension = pl.DataFrame({"customer_id": ["C1"]})

        errors = unresolved_references(
            frame, "customer_id", dimension, "dim_customer", "customer_id", "churn_account", "customer_id"
        )

        assert [(e.key, e.column, e.value) for e in errors] == [("C9", "customer_id", "C9")]
        assert unresolved_references(
            frame.head(1), "customer_id", dimension, "dim_customer", "customer_id", "churn_account", "customer_id"
        ) == []


class TestFactComposer:
    """Tests for FactComposer"""

    def test_links_every_dimension(self, composer, derived_account, cleaned_frames, dimensions):
        composition = composer.compose(derived_account, cleaned_frames["services"], dimensions)
        facts = composition.frame

        assert facts.columns == FACT_COLUMNS
        assert facts.select([
            "fact_id", "customer_id", "location_id", "service_id", "time_id", "churn_status_id"
        ]).rows() == [
            (1, "C1", 1, 1, 20230730, 1),
            (2, "C2", 2, 2, 20220630, 2),
            (3, "C3", 1, 3, 20220530, 4),
        ]
        assert facts["monthly_charge"].to_list() == [70.5, 100.0, 100.01]
        assert facts["total_charge"].to_list()[1] == 2400.0
        assert facts["risk_category"].to_list() == ["HIGH_RISK", "LOW_RISK", "UNKNOWN"]

    def test_ambiguous_churn_status_takes_last_candidate(self, composer, derived_account, cleaned_frames, dimensions):
        composition = composer.compose(derived_account, cleaned_frames["services"], dimensions)

        assert len(composition.errors) == 1
        error = composition.errors[0]
        assert isinstance(error, AmbiguousLinkError)
        assert error.key == "C3"
        assert error.candidates == ["ATTITUDE", "PRICE"]
        assert error.chosen == "PRICE"

    def test_quarter_start_when_tenure_unknown(self, composer, derived_account, cleaned_frames, dimensions):
        account = derived_account.with_columns(
            pl.when(pl.col("customer_id") == "C1").then(None).otherwise(pl.col("tenure_months"))
            .alias("tenure_months")
        )
        facts = composer.compose(account, cleaned_frames["services"], dimensions).frame

        # Latest service quarter of C1 is Q3 of the anchor year
        assert facts.filter(pl.col("customer_id") == "C1")["time_id"].to_list() == [20240701]

    def test_unknown_zip_leaves_location_unlinked(self, composer, derived_account, cleaned_frames, dimensions):
        account = derived_account.with_columns(
            pl.when(pl.col("customer_id") == "C2").then(99999).otherwise(pl.col("zip_code"))
            .alias("zip_code")
        )
        facts = composer.compose(account, cleaned_frames["services"], dimensions).frame

        assert facts["location_id"].to_list() == [1, None, 1]

    def test_customer_missing_from_dimension_is_skipped(
        self, composer, derived_account, cleaned_frames, dimensions
    ):
        dimensions["dim_customer"] = dimensions["dim_customer"].filter(pl.col("customer_id") != "C2")

        composition = composer.compose(derived_account, cleaned_frames["services"], dimensions)

        assert composition.frame["customer_id"].to_list() == ["C1", "C3"]
        assert composition.frame["fact_id"].to_list() == [1, 2]
        unresolved = [e for e in composition.errors if isinstance(e, UnresolvedReferenceError)]
        assert [(e.key, e.column) for e in unresolved] == [("C2", "customer_id")]

    def test_time_outside_calendar_is_skipped(self, composer, derived_account, cleaned_frames, dimensions):
        dimensions["dim_time"] = generate_time_dimension(date(2023, 1, 1), date(2024, 12, 31))

        composition = composer.compose(derived_account, cleaned_frames["services"], dimensions)

        assert composition.frame["customer_id"].to_list() == ["C1"]
        unresolved = sorted(
            (e.key, e.value) for e in composition.errors if isinstance(e, UnresolvedReferenceError)
        )
        assert unresolved == [("C2", 20220630), ("C3", 20220530)]

    def test_rerun_is_deterministic(self, composer, derived_account, cleaned_frames, dimensions):
        first = composer.compose(derived_account, cleaned_frames["services"], dimensions).frame
        second = composer.compose(derived_account, cleaned_frames["services"], dimensions).frame
        assert first.equals(second)

    def test_tenure_beyond_calendar_is_skipped(self, composer, derived_account, cleaned_frames, dimensions):
        account = derived_account.with_columns(
            pl.when(pl.col("customer_id") == "C2").then(10_000_000)
            .when(pl.col("customer_id") == "C3").then(-10_000_000)
            .otherwise(pl.col("tenure_months"))
            .alias("tenure_months")
        )

        composition = composer.compose(account, cleaned_frames["services"], dimensions)

        assert composition.frame["customer_id"].to_list() == ["C1"]
        unresolved = sorted(
            (e.key, e.column, e.dimension)
            for e in composition.errors
            if isinstance(e, UnresolvedReferenceError)
        )
        assert unresolved == [("C2", "tenure_months", "dim_time"), ("C3", "tenure_months", "dim_time")]
