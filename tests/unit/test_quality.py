"""
Unit Tests - Data Quality
"""
import polars as pl
import pytest

from src.quality.report import QualityReport, RecordIssue
from src.quality.validators import (
    DataValidator,
    ValidationSeverity,
    ValidationStatus,
    create_aggregate_validator,
    create_fact_validator,
)
from src.transformation.errors import AmbiguousLinkError, TypeCoercionError
from src.transformation.facts import FactComposer


class TestDataValidator:
    """Tests for DataValidator"""

    def test_not_null_check_passes(self):
        """Test not null check with valid data"""
        df = pl.DataFrame({"id": [1, 2, 3], "name": ["a", "b", "c"]})

        validator = DataValidator()
        validator.add_not_null_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == 1

    def test_not_null_check_fails(self):
        """Test not null check with null values"""
        df = pl.DataFrame({"id": [1, None, 3], "name": ["a", "b", "c"]})

        validator = DataValidator()
        validator.add_not_null_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.failed_checks == 1
        assert result.checks[0].failed_rows == 1

    def test_unique_check_on_column_combination(self):
        df = pl.DataFrame({"gender": ["MALE", "MALE", "FEMALE"], "age_bucket": ["UNDER_30", "OVER_50", "UNDER_30"]})

        assert DataValidator().add_unique_check(["gender", "age_bucket"]).validate(df).status == ValidationStatus.PASSED
        assert DataValidator().add_unique_check("gender").validate(df).status == ValidationStatus.FAILED

    def test_range_check_ignores_nulls(self):
        """Test range check with nulls and an out-of-range value"""
        df = pl.DataFrame({"churn_rate": [0.0, 0.5, None, 1.5]})

        result = DataValidator().add_range_check("churn_rate", min_value=0, max_value=1).validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1

    def test_enum_check(self):
        """Test enum check"""
        df = pl.DataFrame({"risk_category": ["HIGH_RISK", "LOW_RISK", "EXTREME"]})

        validator = DataValidator()
        validator.add_enum_check("risk_category", ["HIGH_RISK", "MEDIUM_RISK", "LOW_RISK", "UNKNOWN"])

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED

    def test_referential_integrity_check(self):
        reference = pl.DataFrame({"location_id": [1, 2]})
        df = pl.DataFrame({"location_id": [1, None, 3]})

        result = DataValidator().add_referential_integrity_check("location_id", reference, "location_id").validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].details["orphan_count"] == 1

    def test_warning_severity(self):
        """Test that warnings don't fail validation"""
        df = pl.DataFrame({"id": [1, None, 3]})

        validator = DataValidator()
        validator.add_not_null_check("id", severity=ValidationSeverity.WARNING)

        result = validator.validate(df)

        assert result.status == ValidationStatus.PARTIAL
        assert result.warning_count == 1
        assert result.errors == []

    def test_strict_mode(self):
        """Test strict mode fails on warnings"""
        df = pl.DataFrame({"id": [1, None, 3]})

        validator = DataValidator(strict_mode=True)
        validator.add_not_null_check("id", severity=ValidationSeverity.WARNING)

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED

    def test_missing_column(self):
        result = DataValidator().add_not_null_check("absent").validate(pl.DataFrame({"id": [1]}))

        assert result.status == ValidationStatus.FAILED
        assert "not found" in result.checks[0].message

    def test_success_rate(self):
        df = pl.DataFrame({"id": [1, 1]})
        result = DataValidator().add_not_null_check("id").add_unique_check("id").validate(df)

        assert result.success_rate == pytest.approx(50.0)


class TestWarehouseValidators:

    def test_fact_validator_passes(self, anchor_date, derived_account, cleaned_frames, dimensions):
        facts = FactComposer(anchor_date=anchor_date).compose(
            derived_account, cleaned_frames["services"], dimensions
        ).frame

        result = create_fact_validator(dimensions).validate(facts)

        assert result.status == ValidationStatus.PASSED

    def test_fact_validator_catches_orphans(self, anchor_date, derived_account, cleaned_frames, dimensions):
        facts = FactComposer(anchor_date=anchor_date).compose(
            derived_account, cleaned_frames["services"], dimensions
        ).frame.with_columns(pl.lit(999, dtype=pl.Int64).alias("service_id"))

        result = create_fact_validator(dimensions).validate(facts)

        assert result.status == ValidationStatus.FAILED
        assert [check.name for check in result.errors] == ["ref_integrity_service_id"]

    def test_aggregate_validator(self):
        df = pl.DataFrame({
            "location_id": [1, 2],
            "customer_count": [3, 0],
            "churn_rate": [0.5, None],
        })
        assert create_aggregate_validator(["location_id"]).validate(df).status == ValidationStatus.PASSED

        duplicated = pl.concat([df, df.head(1)])
        assert create_aggregate_validator(["location_id"]).validate(duplicated).status == ValidationStatus.FAILED


class TestQualityReport:
    """Tests for QualityReport"""

    def test_records_errors_by_stage_and_kind(self):
        report = QualityReport()
        report.record_errors("clean", [
            TypeCoercionError("churn_account", "C4", "customer_id", None, "text"),
            TypeCoercionError("population", 0, "zip_code", "abc", "integer"),
        ])
        report.record_errors("facts", [
            AmbiguousLinkError("churn_account", "C3", "dim_churn_status", ["ATTITUDE", "PRICE"], "PRICE"),
        ])

        assert report.total_issues == 3
        assert report.counts_by_stage == {"clean": 2, "facts": 1}
        assert report.counts_by_kind == {"TypeCoercionError": 2, "AmbiguousLinkError": 1}
        assert report.issues_of("AmbiguousLinkError")[0].key == "C3"

    def test_issue_from_error(self):
        issue = RecordIssue.from_error("clean", TypeCoercionError("demographics", "C9", "customer_id", "", "text"))

        assert issue.kind == "TypeCoercionError"
        assert issue.source == "demographics"
        assert "customer_id" in issue.message

    def test_summary(self):
        report = QualityReport()
        report.add_stats("clean", "population", {"total_rows": 2})
        report.add_validation("agg_location", DataValidator().validate(pl.DataFrame({"id": [1]})))

        summary = report.summary()

        assert summary["total_issues"] == 0
        assert summary["validations"] == {"agg_location": "passed"}
        assert report.stage_stats["clean"]["population"] == {"total_rows": 2}
