"""
Prefect Workflow Orchestration - Warehouse ETL

Scheduled workflow for the telco churn warehouse with:
- Database preflight check
- Full pipeline run with retries
- Post-run referential integrity check
- Alerting on completion and failure
"""

from datetime import date
from typing import Optional

from prefect import flow, task, get_run_logger

from src.config import get_settings
from src.database.connection import check_database_health, close_database, init_database
from src.database.models import DIMENSION_TABLES, FACT_TABLE
from src.database.warehouse import WarehouseRepository
from src.quality.validators import create_fact_validator
from src.transformation.errors import StageFailedError
from src.transformation.transformers import run_pipeline

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="check_database",
    description="Verify the warehouse database is reachable",
    retries=3,
    retry_delay_seconds=30,
)
async def check_database(database_url: Optional[str] = None) -> dict:
    """Preflight connectivity check"""
    logger = get_run_logger()

    await init_database(database_url)
    try:
        health = await check_database_health()
    finally:
        await close_database()

    if health["status"] != "healthy":
        raise ConnectionError(f"Warehouse database unhealthy: {health.get('error')}")

    logger.info(f"Database healthy ({health['latency_ms']} ms)")
    return health


@task(
    name="run_warehouse_pipeline",
    description="Clean, build dimensions, derive, compose facts and aggregate",
    retries=1,
    retry_delay_seconds=120,
)
async def run_warehouse_pipeline(
    source_dir: str,
    database_url: Optional[str] = None,
    anchor_date: Optional[date] = None,
) -> dict:
    """Run the warehouse pipeline over a directory of raw extracts"""
    logger = get_run_logger()

    result = await run_pipeline(source_dir=source_dir, database_url=database_url, anchor_date=anchor_date)

    logger.info(
        f"Pipeline {result.status.value} in {result.duration_seconds:.1f}s "
        f"with {result.quality.total_issues} record issues"
    )

    return {
        "status": result.status.value,
        "duration_seconds": result.duration_seconds,
        "rows_written": result.rows_written,
        "quality": result.quality.summary(),
    }


@task(
    name="verify_fact_integrity",
    description="Check fact foreign keys against the persisted dimensions",
)
async def verify_fact_integrity(database_url: Optional[str] = None) -> dict:
    """Validate the persisted fact table"""
    logger = get_run_logger()

    engine = await init_database(database_url)
    try:
        repository = WarehouseRepository(engine)
        dimensions = await repository.read_tables(DIMENSION_TABLES)
        facts = await repository.read_table(FACT_TABLE)
    finally:
        await close_database()

    result = create_fact_validator(dimensions).validate(facts)
    logger.info(
        f"Fact validation {result.status.value}: "
        f"{result.passed_checks}/{result.total_checks} checks passed"
    )

    return {
        "passed": result.status.value == "passed",
        "total_checks": result.total_checks,
        "passed_checks": result.passed_checks,
        "failed_checks": result.failed_checks,
        "success_rate": result.success_rate,
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    if severity in ("critical", "error"):
        logger.error(f"[{severity.upper()}] {alert_type}: {message}")
    else:
        logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="telco_warehouse_etl",
    description="Scheduled telco churn warehouse build",
)
async def telco_warehouse_etl(
    source_dir: Optional[str] = None,
    database_url: Optional[str] = None,
    anchor_date: Optional[date] = None,
) -> dict:
    """
    Warehouse ETL flow.

    Steps:
    1. Check the database
    2. Run the pipeline (rolled back on stage failure)
    3. Verify fact integrity
    4. Send completion notification
    """
    logger = get_run_logger()

    source_dir = source_dir or settings.warehouse.source_dir
    logger.info(f"Starting warehouse ETL from {source_dir}")

    results = {"source_dir": source_dir, "steps": {}}

    try:
        results["steps"]["preflight"] = await check_database(database_url)
        results["steps"]["pipeline"] = await run_warehouse_pipeline(source_dir, database_url, anchor_date)
        results["steps"]["integrity"] = await verify_fact_integrity(database_url)

        issues = results["steps"]["pipeline"]["quality"]["total_issues"]
        await send_alert(
            alert_type="Warehouse ETL Complete",
            message=f"Warehouse rebuilt from {source_dir} ({issues} record issues)",
            severity="warning" if issues else "info",
        )
        results["status"] = "success"

    except StageFailedError as e:
        logger.error(f"Warehouse pipeline aborted at stage {e.stage}: {e}")
        await send_alert(
            alert_type="Warehouse ETL Failed",
            message=f"Stage '{e.stage}' failed and the warehouse was restored: {e}",
            severity="critical",
        )
        results["status"] = "failed"
        results["error"] = str(e)
        raise

    except Exception as e:
        logger.error(f"Warehouse ETL failed: {e}")
        await send_alert(
            alert_type="Warehouse ETL Failed",
            message=f"Warehouse ETL failed: {str(e)}",
            severity="critical",
        )
        results["status"] = "failed"
        results["error"] = str(e)
        raise

    return results


if __name__ == "__main__":
    import asyncio

    asyncio.run(telco_warehouse_etl())
