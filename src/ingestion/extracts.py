"""
Raw Extract Providers

Supplies raw tabular records per source table. Values are delivered as read
from the source; typing and normalization belong to the cleaning stage.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

import polars as pl
import structlog

from src.config import get_settings
from .schemas import SOURCE_SCHEMAS

logger = structlog.get_logger(__name__)
settings = get_settings()

NULL_VALUES = ["", "NULL", "null", "None", "NA", "N/A"]


class RawExtractProvider(Protocol):
    """Provider of raw records for a named source table"""

    def fetch(self, source: str) -> pl.DataFrame:
        ...


def _empty_extract(source: str) -> pl.DataFrame:
    schema = SOURCE_SCHEMAS[source]
    return pl.DataFrame(schema={c.name: pl.Utf8 for c in schema.raw_columns})


class CsvExtractProvider:
    """
    Reads one CSV file per source from a directory.

    All columns are read as strings so that the cleaning stage sees the raw
    values.

    Example:
        provider = CsvExtractProvider("data/raw")
        accounts = provider.fetch("churn_account")
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        file_names: Optional[Dict[str, str]] = None,
        delimiter: str = ",",
        encoding: str = "utf8",
    ):
        self.directory = Path(directory or settings.warehouse.source_dir)
        self.file_names = file_names or {name: f"{name}.csv" for name in SOURCE_SCHEMAS}
        self.delimiter = delimiter
        self.encoding = encoding

    def _path(self, source: str) -> Path:
        return self.directory / self.file_names[source]

    def fetch(self, source: str) -> pl.DataFrame:
        """Read a source extract"""
        path = self._path(source)

        if not path.exists():
            if SOURCE_SCHEMAS[source].required:
                raise FileNotFoundError(f"File not found: {path}")
            logger.warning("Optional extract missing, using empty extract", source=source, file=str(path))
            return _empty_extract(source)

        df = pl.read_csv(
            path,
            separator=self.delimiter,
            encoding=self.encoding,
            null_values=NULL_VALUES,
            infer_schema_length=0,
        )
        # Headers like "Customer ID" map onto snake_case column names
        df = df.rename({c: c.strip().lower().replace(" ", "_") for c in df.columns})

        logger.info("Read raw extract", source=source, file=str(path), rows=len(df))
        return df


class InMemoryExtractProvider:
    """Serves extracts held in memory, as DataFrames or lists of row mappings"""

    def __init__(self, extracts: Mapping[str, Union[pl.DataFrame, Sequence[Mapping[str, Any]]]]):
        self._extracts: Dict[str, pl.DataFrame] = {}
        for source, data in extracts.items():
            if isinstance(data, pl.DataFrame):
                self._extracts[source] = data
            else:
                rows: List[Mapping[str, Any]] = list(data)
                self._extracts[source] = pl.DataFrame(rows, infer_schema_length=None) if rows else _empty_extract(source)

    def fetch(self, source: str) -> pl.DataFrame:
        if source in self._extracts:
            return self._extracts[source]
        if SOURCE_SCHEMAS[source].required:
            raise FileNotFoundError(f"No extract for source: {source}")
        return _empty_extract(source)
