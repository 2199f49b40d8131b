"""
Data Transformation Module
"""
from .cleaners import CleanedSource, CleaningNormalizer, CleaningStats, clean_source
from .dimensions import (
    CUSTOMER_MERGE_POLICY,
    ColumnMerge,
    DimensionBuilder,
    IdAllocator,
    MergePolicy,
    MergeRule,
    SequenceAllocator,
    generate_time_dimension,
    missing_time_rows,
)
from .enrichers import DerivedAttributeEngine
from .facts import FactComposer, FactComposition
from .aggregations import AggregationEngine
from .errors import (
    AmbiguousLinkError,
    RecordError,
    StageFailedError,
    StageTimeoutError,
    TypeCoercionError,
    UnresolvedReferenceError,
    WarehouseError,
)
from .transformers import PipelineResult, PipelineStage, WarehousePipeline, run_pipeline

__all__ = [
    "CleanedSource",
    "CleaningNormalizer",
    "CleaningStats",
    "clean_source",
    "CUSTOMER_MERGE_POLICY",
    "ColumnMerge",
    "DimensionBuilder",
    "IdAllocator",
    "MergePolicy",
    "MergeRule",
    "SequenceAllocator",
    "generate_time_dimension",
    "missing_time_rows",
    "DerivedAttributeEngine",
    "FactComposer",
    "FactComposition",
    "AggregationEngine",
    "AmbiguousLinkError",
    "RecordError",
    "StageFailedError",
    "StageTimeoutError",
    "TypeCoercionError",
    "UnresolvedReferenceError",
    "WarehouseError",
    "PipelineResult",
    "PipelineStage",
    "WarehousePipeline",
    "run_pipeline",
]
