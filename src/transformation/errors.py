"""
Warehouse Errors

Record-level errors (type coercion, unresolved references, ambiguous links)
are recovered locally and collected in the quality report. Stage-level errors
abort the run.
"""

from typing import Any, Optional, Sequence


class WarehouseError(Exception):
    """Base class for all warehouse errors"""


class RecordError(WarehouseError):
    """An error scoped to a single record; the batch continues"""

    def __init__(self, message: str, source: str, key: Any = None):
        super().__init__(message)
        self.source = source
        self.key = key

    @property
    def message(self) -> str:
        return str(self)


class TypeCoercionError(RecordError):
    """A mandatory column value is missing or cannot be cast to its declared type"""

    def __init__(self, source: str, key: Any, column: str, value: Any, expected: str):
        super().__init__(
            f"{source}: cannot coerce {column}={value!r} to {expected}",
            source=source,
            key=key,
        )
        self.column = column
        self.value = value
        self.expected = expected


class UnresolvedReferenceError(RecordError):
    """A row would reference a dimension key that does not exist"""

    def __init__(self, source: str, key: Any, column: str, value: Any, dimension: str):
        super().__init__(
            f"{source}: {column}={value!r} has no row in {dimension}",
            source=source,
            key=key,
        )
        self.column = column
        self.value = value
        self.dimension = dimension


class AmbiguousLinkError(RecordError):
    """More than one dimension row matches a natural-key join"""

    def __init__(self, source: str, key: Any, dimension: str, candidates: Sequence[Any], chosen: Any):
        super().__init__(
            f"{source}: {len(candidates)} {dimension} rows match {key!r}, using {chosen!r}",
            source=source,
            key=key,
        )
        self.dimension = dimension
        self.candidates = list(candidates)
        self.chosen = chosen


class StageFailedError(WarehouseError):
    """A pipeline stage failed; the run was aborted and rolled back"""

    def __init__(self, stage: str, reason: Optional[str] = None):
        super().__init__(f"Stage '{stage}' failed" + (f": {reason}" if reason else ""))
        self.stage = stage
        self.result = None  # PipelineResult of the aborted run, when raised by the pipeline


class StageTimeoutError(StageFailedError):
    """A pipeline stage exceeded its timeout"""

    def __init__(self, stage: str, timeout: float):
        super().__init__(stage, f"timed out after {timeout:.1f}s")
        self.timeout = timeout
