"""
Integration Tests - Warehouse Pipeline

Runs the full pipeline against a temporary SQLite warehouse.
"""
import asyncio
from datetime import date

import polars as pl
import pytest
from polars.testing import assert_frame_equal

from src.database.connection import close_database
from src.database.models import AGGREGATE_TABLES, DIMENSION_TABLES, FACT_TABLE, DimCustomer, DimLocation
from src.database.staging import STAGING_TABLES
from src.ingestion.extracts import InMemoryExtractProvider
from src.main import build_parser
from src.transformation.errors import StageFailedError, StageTimeoutError
from src.transformation.transformers import (
    PipelineStage,
    PipelineStatus,
    WarehousePipeline,
    gather_or_cancel,
    run_pipeline,
)

FACT = FACT_TABLE
STG_ACCOUNT = STAGING_TABLES["churn_account"]


def make_pipeline(repository, provider, anchor_date, time_range, **kwargs):
    return WarehousePipeline(
        repository,
        provider,
        anchor_date=anchor_date,
        time_range=time_range,
        truthy_tokens=["yes", "1"],
        **kwargs,
    )


async def read_warehouse(repository):
    tables = DIMENSION_TABLES + [FACT] + list(AGGREGATE_TABLES.values()) + list(STAGING_TABLES.values())
    frames = await repository.read_tables(tables)
    # Whole-row ordering so reads compare independent of insertion order
    return {name: df.sort(df.columns, nulls_last=True) for name, df in frames.items()}


class TestWarehousePipeline:
    """End-to-end pipeline runs"""

    async def test_full_run(self, repository, provider, anchor_date, time_range):
        result = await make_pipeline(repository, provider, anchor_date, time_range).run()

        assert result.status == PipelineStatus.COMPLETED
        assert [s.stage for s in result.stages] == list(PipelineStage)
        assert result.rows_written["fact_customer_churn"] == 3
        assert result.rows_written["stg_churn_account"] == 3

        # One rejected account, one ambiguous churn status link
        assert result.quality.counts_by_kind == {"TypeCoercionError": 1, "AmbiguousLinkError": 1}
        assert result.quality.stage_stats["clean"]["churn_account"]["duplicates_removed"] == 1
        assert result.quality.validations["fact_customer_churn"].status.value == "passed"

    async def test_warehouse_contents(self, repository, provider, anchor_date, time_range):
        await make_pipeline(repository, provider, anchor_date, time_range).run()
        warehouse = await read_warehouse(repository)

        customers = warehouse["dim_customer"].sort("customer_id")
        assert customers["customer_id"].to_list() == ["C1", "C2", "C3"]
        assert customers["gender"].to_list() == ["MALE", "MALE", "UNKNOWN"]
        assert customers["age_bucket"].to_list() == ["30_TO_50", "UNDER_30", "OVER_50"]

        account = warehouse["stg_churn_account"].sort("customer_id")
        assert account["monthly_charges"].to_list() == [70.5, 100.0, 100.01]
        assert account["total_charges"].to_list()[1] == 2400.0
        assert account["tenure_bucket"].to_list() == ["LESS_THAN_1_YEAR", "1_TO_2_YEARS", "MORE_THAN_2_YEARS"]
        assert account["risk_category"].to_list() == ["HIGH_RISK", "LOW_RISK", "UNKNOWN"]

        facts = warehouse["fact_customer_churn"].sort("fact_id")
        assert facts.select(["customer_id", "time_id", "churn_status_id"]).rows() == [
            ("C1", 20230730, 1),
            ("C2", 20220630, 2),
            ("C3", 20220530, 4),
        ]

        locations = warehouse["agg_location"].sort("zip_code")
        assert locations["churn_rate"].to_list() == [1.0, 0.0, None]
        assert locations["customer_count"].to_list() == [2, 1, 0]

        start, end = time_range
        assert len(warehouse["dim_time"]) == (end - start).days + 1

    async def test_referential_integrity(self, repository, provider, anchor_date, time_range):
        await make_pipeline(repository, provider, anchor_date, time_range).run()
        warehouse = await read_warehouse(repository)
        facts = warehouse["fact_customer_churn"].sort("fact_id")

        for column, table, key in [
            ("customer_id", "dim_customer", "customer_id"),
            ("location_id", "dim_location", "location_id"),
            ("service_id", "dim_service", "service_id"),
            ("time_id", "dim_time", "time_id"),
            ("churn_status_id", "dim_churn_status", "churn_status_id"),
        ]:
            orphans = facts.filter(pl.col(column).is_not_null()).join(
                warehouse[table].select(pl.col(key).alias(column)), on=column, how="anti"
            )
            assert orphans.is_empty(), column

    async def test_rerun_is_idempotent(self, repository, provider, anchor_date, time_range):
        await make_pipeline(repository, provider, anchor_date, time_range).run()
        first = await read_warehouse(repository)

        await make_pipeline(repository, provider, anchor_date, time_range).run()
        second = await read_warehouse(repository)

        assert set(first) == set(second)
        for name in first:
            assert_frame_equal(first[name], second[name])

    async def test_new_records_extend_dimensions(self, repository, raw_extracts, anchor_date, time_range):
        await make_pipeline(repository, InMemoryExtractProvider(raw_extracts), anchor_date, time_range).run()

        new_account = dict(raw_extracts["churn_account"][0], customer_id="C5", zip_code="90004")
        raw_extracts["churn_account"].append(new_account)
        await make_pipeline(repository, InMemoryExtractProvider(raw_extracts), anchor_date, time_range).run()

        customers = await repository.read_table(DimCustomer.__table__)
        locations = (await repository.read_table(DimLocation.__table__)).sort("location_id")
        facts = await repository.read_table(FACT)

        assert sorted(customers["customer_id"].to_list()) == ["C1", "C2", "C3", "C5"]
        # Existing keys are kept, new keys continue after them
        assert locations.select(["location_id", "zip_code"]).rows() == [
            (1, 90001), (2, 90002), (3, 90003), (4, 90004),
        ]
        assert facts.sort("fact_id")["customer_id"].to_list() == ["C1", "C2", "C3", "C5"]


class TestPipelineRollback:
    """Failed and timed-out runs leave the warehouse as it was"""

    async def test_timeout_restores_snapshot(self, repository, raw_extracts, anchor_date, time_range):
        await make_pipeline(repository, InMemoryExtractProvider(raw_extracts), anchor_date, time_range).run()
        before = await read_warehouse(repository)

        raw_extracts["churn_account"].append(dict(raw_extracts["churn_account"][0], customer_id="C5"))
        pipeline = make_pipeline(
            repository, InMemoryExtractProvider(raw_extracts), anchor_date, time_range, stage_timeout=2.0
        )

        async def slow_aggregate(report):
            await asyncio.sleep(30)
            return {}

        pipeline._aggregate = slow_aggregate

        with pytest.raises(StageTimeoutError) as exc_info:
            await pipeline.run()

        assert exc_info.value.stage == PipelineStage.AGGREGATES.value
        assert exc_info.value.result.status == PipelineStatus.FAILED
        assert len(exc_info.value.result.stages) == 4

        after = await read_warehouse(repository)
        assert "C5" not in after["dim_customer"]["customer_id"].to_list()
        assert len(after["stg_churn_account"]) == 3
        for name in before:
            assert_frame_equal(before[name], after[name])

    async def test_failure_restores_snapshot(self, repository, raw_extracts, anchor_date, time_range):
        await make_pipeline(repository, InMemoryExtractProvider(raw_extracts), anchor_date, time_range).run()
        before = await read_warehouse(repository)

        broken = {name: rows for name, rows in raw_extracts.items() if name != "status"}
        broken["churn_account"] = raw_extracts["churn_account"][:1]

        with pytest.raises(StageFailedError) as exc_info:
            await make_pipeline(repository, InMemoryExtractProvider(broken), anchor_date, time_range).run()

        assert exc_info.value.stage == PipelineStage.CLEAN.value
        assert not isinstance(exc_info.value, StageTimeoutError)
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

        after = await read_warehouse(repository)
        for name in before:
            assert_frame_equal(before[name], after[name])

    async def test_failure_on_empty_warehouse(self, repository, raw_extracts, anchor_date, time_range):
        broken = {name: rows for name, rows in raw_extracts.items() if name != "churn_account"}

        with pytest.raises(StageFailedError):
            await make_pipeline(repository, InMemoryExtractProvider(broken), anchor_date, time_range).run()

        assert (await repository.read_table(STG_ACCOUNT)).is_empty()
        assert (await repository.read_table(FACT)).is_empty()


class TestGatherOrCancel:

    async def test_siblings_are_cancelled(self):
        finished = []

        async def fail():
            await asyncio.sleep(0.01)
            raise ValueError("boom")

        async def slow():
            await asyncio.sleep(1)
            finished.append("slow")

        with pytest.raises(ValueError):
            await gather_or_cancel(fail(), slow())

        await asyncio.sleep(0)
        assert finished == []

    async def test_results_in_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert await gather_or_cancel(value(1, 0.02), value(2, 0)) == [1, 2]


class TestEntryPoints:

    async def test_run_pipeline_over_csv_directory(self, tmp_path, raw_extracts):
        source_dir = tmp_path / "raw"
        source_dir.mkdir()
        for name, rows in raw_extracts.items():
            pl.DataFrame(rows).write_csv(source_dir / f"{name}.csv")

        try:
            result = await run_pipeline(
                source_dir=str(source_dir),
                database_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}",
                anchor_date=date(2024, 6, 30),
            )
        finally:
            await close_database()

        assert result.status == PipelineStatus.COMPLETED
        assert result.rows_written["fact_customer_churn"] == 3

    def test_parser(self):
        args = build_parser().parse_args(["--source-dir", "in", "--anchor-date", "2024-06-30"])

        assert args.source_dir == "in"
        assert args.anchor_date == date(2024, 6, 30)

    def test_parser_rejects_bad_date(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--anchor-date", "30/06/2024"])
