"""
Warehouse Pipeline

Orchestrates the transformation stages strictly in order:

    Clean -> Dimension Build -> Derive -> Fact Compose -> Aggregate

Each stage commits before the next starts. Independent tables within a stage
are processed concurrently. Every stage runs under a timeout; on timeout or
failure the warehouse is restored to the snapshot taken before the run.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import polars as pl
import structlog

from src.config import get_settings
from src.database.connection import close_database, init_database
from src.database.models import AGGREGATE_TABLES, DIMENSION_TABLES, DimCustomer, FACT_TABLE
from src.database.staging import STAGING_TABLES
from src.database.warehouse import WarehouseRepository
from src.ingestion.extracts import CsvExtractProvider, RawExtractProvider
from src.ingestion.schemas import SOURCE_SCHEMAS
from src.quality import QualityReport, ValidationStatus, create_aggregate_validator, create_fact_validator
from .aggregations import AggregationEngine, GRAINS
from .cleaners import CleaningNormalizer
from .dimensions import DimensionBuilder, IdAllocator
from .enrichers import DerivedAttributeEngine
from .errors import RecordError, StageFailedError, StageTimeoutError, WarehouseError
from .facts import FactComposer

logger = structlog.get_logger(__name__)
settings = get_settings()


class PipelineStage(str, Enum):
    """Pipeline stages in execution order"""
    CLEAN = "clean"
    DIMENSIONS = "dimensions"
    DERIVE = "derive"
    FACTS = "facts"
    AGGREGATES = "aggregates"


class PipelineStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def gather_or_cancel(*aws: Awaitable) -> list:
    """Gather concurrently; on the first failure cancel and await the siblings"""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class StageResult:
    """Result of one pipeline stage"""
    stage: PipelineStage
    started_at: datetime
    completed_at: datetime
    rows_written: Dict[str, int] = field(default_factory=dict)
    issues: int = 0

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class PipelineResult:
    """Result of a pipeline run"""
    status: PipelineStatus = PipelineStatus.RUNNING
    stages: List[StageResult] = field(default_factory=list)
    quality: QualityReport = field(default_factory=QualityReport)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or _utcnow()
        return (end - self.started_at).total_seconds()

    @property
    def rows_written(self) -> Dict[str, int]:
        rows: Dict[str, int] = {}
        for stage in self.stages:
            rows.update(stage.rows_written)
        return rows


class WarehousePipeline:
    """
    Runs the warehouse transformation end to end.

    Example:
        pipeline = WarehousePipeline(repository, CsvExtractProvider("./data/raw"))
        result = await pipeline.run()
    """

    def __init__(
        self,
        repository: WarehouseRepository,
        provider: RawExtractProvider,
        allocator: Optional[IdAllocator] = None,
        anchor_date: Optional[date] = None,
        stage_timeout: Optional[float] = None,
        time_range: Optional[Tuple[date, date]] = None,
        truthy_tokens: Optional[List[str]] = None,
    ):
        self.repository = repository
        self.provider = provider
        self.anchor_date = anchor_date or settings.warehouse.effective_anchor_date
        self.stage_timeout = stage_timeout or settings.warehouse.stage_timeout_seconds

        self.normalizer = CleaningNormalizer(truthy_tokens)
        self.builder = DimensionBuilder(allocator=allocator, anchor_date=self.anchor_date, time_range=time_range)
        self.deriver = DerivedAttributeEngine()
        self.composer = FactComposer(anchor_date=self.anchor_date)
        self.aggregator = AggregationEngine()

        self._cleaned: Dict[str, pl.DataFrame] = {}
        self._facts: Optional[pl.DataFrame] = None

    @property
    def stages(self) -> List[Tuple[PipelineStage, Callable[[QualityReport], Awaitable[Dict[str, int]]]]]:
        return [
            (PipelineStage.CLEAN, self._clean),
            (PipelineStage.DIMENSIONS, self._build_dimensions),
            (PipelineStage.DERIVE, self._derive),
            (PipelineStage.FACTS, self._compose_facts),
            (PipelineStage.AGGREGATES, self._aggregate),
        ]

    async def _clean(self, report: QualityReport) -> Dict[str, int]:
        """Clean every source and replace its staging table"""
        async def clean_one(name: str) -> Tuple[str, pl.DataFrame, int]:
            raw = await asyncio.to_thread(self.provider.fetch, name)
            cleaned = self.normalizer.clean(raw, SOURCE_SCHEMAS[name])
            report.record_errors(PipelineStage.CLEAN.value, cleaned.errors)
            report.add_stats(PipelineStage.CLEAN.value, name, asdict(cleaned.stats))
            written = await self.repository.replace(STAGING_TABLES[name], cleaned.frame)
            return name, cleaned.frame, written

        results = await gather_or_cancel(*(clean_one(name) for name in SOURCE_SCHEMAS))
        self._cleaned = {name: frame for name, frame, _ in results}
        return {STAGING_TABLES[name].name: written for name, _, written in results}

    async def _build_dimensions(self, report: QualityReport) -> Dict[str, int]:
        """Insert new dimension rows"""
        existing = await self.repository.read_tables(DIMENSION_TABLES)
        new_rows = self.builder.build(self._cleaned, existing)
        written = await gather_or_cancel(*(
            self.repository.append(table, new_rows[table.name]) for table in DIMENSION_TABLES
        ))
        return {table.name: count for table, count in zip(DIMENSION_TABLES, written)}

    async def _derive(self, report: QualityReport) -> Dict[str, int]:
        """Recompute derived attributes on the account staging table and customers"""
        account = self.deriver.derive_account(self._cleaned["churn_account"])
        self._cleaned["churn_account"] = account

        customers = await self.repository.read_table(DimCustomer.__table__)
        buckets = self.deriver.derive_customers(customers)

        account_rows, customer_rows = await gather_or_cancel(
            self.repository.replace(STAGING_TABLES["churn_account"], account),
            self.repository.update_rows(DimCustomer.__table__, "customer_id", buckets, ["age_bucket"]),
        )
        return {STAGING_TABLES["churn_account"].name: account_rows, DimCustomer.__tablename__: customer_rows}

    async def _compose_facts(self, report: QualityReport) -> Dict[str, int]:
        """Rebuild the fact table and check it against the dimensions"""
        dimensions = await self.repository.read_tables(DIMENSION_TABLES)
        composition = self.composer.compose(
            self._cleaned["churn_account"], self._cleaned["services"], dimensions
        )
        report.record_errors(PipelineStage.FACTS.value, composition.errors)

        validation = create_fact_validator(dimensions).validate(composition.frame)
        report.add_validation(FACT_TABLE.name, validation)
        if validation.status == ValidationStatus.FAILED:
            raise WarehouseError(
                f"{FACT_TABLE.name} failed validation: {[check.name for check in validation.errors]}"
            )

        written = await self.repository.replace(FACT_TABLE, composition.frame)
        self._facts = composition.frame
        return {FACT_TABLE.name: written}

    async def _aggregate(self, report: QualityReport) -> Dict[str, int]:
        """Rebuild every rollup table"""
        dimensions = await self.repository.read_tables(DIMENSION_TABLES)
        errors: List[RecordError] = []
        tables = self.aggregator.compute(self._facts, dimensions, self._cleaned["churn_account"], errors)
        report.record_errors(PipelineStage.AGGREGATES.value, errors)

        for name, frame in tables.items():
            validation = create_aggregate_validator(GRAINS[name]).validate(frame)
            report.add_validation(AGGREGATE_TABLES[name].name, validation)
            if validation.status == ValidationStatus.FAILED:
                raise WarehouseError(f"{AGGREGATE_TABLES[name].name} failed validation")

        written = await gather_or_cancel(*(
            self.repository.rebuild(AGGREGATE_TABLES[name], frame) for name, frame in tables.items()
        ))
        return {AGGREGATE_TABLES[name].name: count for name, count in zip(tables, written)}

    async def run(self) -> PipelineResult:
        """
        Run every stage in order.

        Returns:
            PipelineResult with stage results and the quality report

        Raises:
            StageTimeoutError: A stage exceeded the timeout (warehouse restored)
            StageFailedError: A stage raised (warehouse restored)
        """
        result = PipelineResult()
        self._cleaned = {}
        self._facts = None

        logger.info(
            "Starting warehouse pipeline",
            anchor_date=str(self.anchor_date),
            stage_timeout=self.stage_timeout,
        )

        await self.repository.create_schema()
        snapshot = await self.repository.snapshot()

        for stage, handler in self.stages:
            started_at = _utcnow()
            issues_before = result.quality.total_issues
            try:
                rows_written = await asyncio.wait_for(handler(result.quality), timeout=self.stage_timeout)
            except asyncio.TimeoutError:
                error: StageFailedError = StageTimeoutError(stage.value, self.stage_timeout)
                await self._abort(result, snapshot, stage, error)
                raise error from None
            except Exception as e:
                error = StageFailedError(stage.value, str(e))
                await self._abort(result, snapshot, stage, error)
                raise error from e

            stage_result = StageResult(
                stage=stage,
                started_at=started_at,
                completed_at=_utcnow(),
                rows_written=rows_written,
                issues=result.quality.total_issues - issues_before,
            )
            result.stages.append(stage_result)
            result.quality.log_stage(stage.value)
            logger.info(
                "Stage completed",
                stage=stage.value,
                duration_seconds=round(stage_result.duration_seconds, 3),
                rows_written=rows_written,
            )

        result.status = PipelineStatus.COMPLETED
        result.completed_at = _utcnow()
        logger.info(
            "Warehouse pipeline completed",
            duration_seconds=round(result.duration_seconds, 3),
            **result.quality.summary(),
        )
        return result

    async def _abort(
        self,
        result: PipelineResult,
        snapshot: Dict[str, pl.DataFrame],
        stage: PipelineStage,
        error: StageFailedError,
    ) -> None:
        """Restore the pre-run snapshot and mark the result failed"""
        logger.error("Stage failed, restoring snapshot", stage=stage.value, error=str(error))
        await self.repository.restore(snapshot)
        result.status = PipelineStatus.FAILED
        result.error = str(error)
        result.completed_at = _utcnow()
        error.result = result


async def run_pipeline(
    source_dir: Optional[str] = None,
    database_url: Optional[str] = None,
    anchor_date: Optional[date] = None,
) -> PipelineResult:
    """
    Convenience function to run the pipeline over a CSV directory.

    Args:
        source_dir: Directory holding ``<source>.csv`` extracts
        database_url: Warehouse database URL (defaults to configured URL)
        anchor_date: Reference date for contract-start estimation

    Returns:
        PipelineResult of the run
    """
    engine = await init_database(database_url)
    try:
        pipeline = WarehousePipeline(
            WarehouseRepository(engine),
            CsvExtractProvider(source_dir),
            anchor_date=anchor_date,
        )
        return await pipeline.run()
    finally:
        await close_database()
