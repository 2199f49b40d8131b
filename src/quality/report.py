"""
Quality Report

Collects record-level issues raised by the pipeline stages (rejected
records, unresolved references, ambiguous links) along with per-stage
statistics and validation results.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

import structlog

from .validators import ValidationResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecordIssue:
    """A single record-level problem"""
    kind: str
    stage: str
    source: str
    key: Any
    message: str

    @classmethod
    def from_error(cls, stage: str, error: Exception) -> "RecordIssue":
        return cls(
            kind=type(error).__name__,
            stage=stage,
            source=getattr(error, "source", ""),
            key=getattr(error, "key", None),
            message=str(error),
        )


@dataclass
class QualityReport:
    """
    Per-run collection of record-level issues.

    Example:
        report = QualityReport()
        report.record_errors("clean", cleaned.errors)
        report.log_stage("clean")
    """
    issues: List[RecordIssue] = field(default_factory=list)
    stage_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    validations: Dict[str, ValidationResult] = field(default_factory=dict)

    def record(self, issue: RecordIssue) -> None:
        self.issues.append(issue)

    def record_errors(self, stage: str, errors: Iterable[Exception]) -> int:
        """Add record-level errors raised in a stage"""
        count = 0
        for error in errors:
            self.record(RecordIssue.from_error(stage, error))
            count += 1
        return count

    def add_stats(self, stage: str, name: str, stats: Dict[str, Any]) -> None:
        self.stage_stats.setdefault(stage, {})[name] = stats

    def add_validation(self, name: str, result: ValidationResult) -> None:
        self.validations[name] = result

    @property
    def counts_by_kind(self) -> Dict[str, int]:
        return dict(Counter(issue.kind for issue in self.issues))

    @property
    def counts_by_stage(self) -> Dict[str, int]:
        return dict(Counter(issue.stage for issue in self.issues))

    def issues_of(self, kind: str) -> List[RecordIssue]:
        return [issue for issue in self.issues if issue.kind == kind]

    @property
    def total_issues(self) -> int:
        return len(self.issues)

    def summary(self) -> Dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "by_kind": self.counts_by_kind,
            "by_stage": self.counts_by_stage,
            "validations": {name: result.status.value for name, result in self.validations.items()},
        }

    def log_stage(self, stage: str) -> None:
        """Log the issues collected for one stage"""
        issues = [issue for issue in self.issues if issue.stage == stage]
        kinds = dict(Counter(issue.kind for issue in issues))
        if issues:
            logger.warning("Stage quality issues", stage=stage, issues=len(issues), **kinds)
        else:
            logger.info("Stage quality clean", stage=stage)
