"""
Data Quality Module
"""
from .validators import (
    DataValidator,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    create_aggregate_validator,
    create_fact_validator,
)
from .report import QualityReport, RecordIssue

__all__ = [
    "DataValidator",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "create_aggregate_validator",
    "create_fact_validator",
    "QualityReport",
    "RecordIssue",
]
