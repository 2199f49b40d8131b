"""
Command Line Entry Point

Runs the warehouse pipeline once over a directory of raw extracts.

Usage:
    python -m src.main --source-dir ./data/raw --anchor-date 2024-06-30
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import List, Optional

import structlog

from src.config import get_settings
from src.config.logging import configure_logging
from src.transformation.errors import StageFailedError
from src.transformation.transformers import run_pipeline

settings = get_settings()
logger = structlog.get_logger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="telco-warehouse",
        description="Build the telco churn star schema and rollups from raw extracts",
    )
    parser.add_argument(
        "--source-dir",
        default=settings.warehouse.source_dir,
        help="Directory holding <source>.csv extracts (default: %(default)s)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Warehouse database URL (default: from POSTGRES_* settings)",
    )
    parser.add_argument(
        "--anchor-date",
        type=_parse_date,
        default=None,
        help="Reference date for contract-start estimation (default: today)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL setting)",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "text"],
        help="Log renderer (default: LOG_FORMAT setting)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    try:
        result = asyncio.run(run_pipeline(
            source_dir=args.source_dir,
            database_url=args.database_url,
            anchor_date=args.anchor_date,
        ))
    except StageFailedError as e:
        logger.error("Warehouse build aborted", stage=e.stage, error=str(e))
        return 1

    logger.info(
        "Warehouse build finished",
        status=result.status.value,
        rows_written=result.rows_written,
        **result.quality.summary(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
