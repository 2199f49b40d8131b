"""
Cleaning Normalizer

Normalizes raw extracts against their source declarations.
Handles:
- Type coercion with record-level rejection for mandatory columns
- Whitespace trimming and upper-casing
- Closed-world boolean normalization
- Unknown categorical values mapped to a sentinel
- Missing value defaults
- Deduplication per natural key
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import polars as pl
import structlog

from src.config import get_settings
from src.ingestion.schemas import ColumnSpec, ColumnType, SourceSchema, SOURCE_SCHEMAS, UNKNOWN
from .errors import TypeCoercionError

logger = structlog.get_logger(__name__)
settings = get_settings()

ROW_INDEX = "__row"
RAW_PREFIX = "__raw_"

POLARS_TYPES = {
    ColumnType.TEXT: pl.Utf8,
    ColumnType.CATEGORICAL: pl.Utf8,
    ColumnType.INTEGER: pl.Int64,
    ColumnType.FLOAT: pl.Float64,
    ColumnType.BOOLEAN: pl.Boolean,
}


@dataclass
class CleaningStats:
    """Statistics from cleaning one source"""
    source: str
    total_rows: int
    rows_after_cleaning: int
    records_rejected: int
    nulls_filled: int
    duplicates_removed: int
    unknown_categories: int


@dataclass
class CleanedSource:
    """Cleaned records of one source with the record-level errors raised on the way"""
    schema: SourceSchema
    frame: pl.DataFrame
    stats: CleaningStats
    errors: List[TypeCoercionError] = field(default_factory=list)


class CleaningNormalizer:
    """
    Source-driven cleaner for raw telco extracts.

    Example:
        normalizer = CleaningNormalizer()
        cleaned = normalizer.clean(raw_df, SOURCE_SCHEMAS["churn_account"])
    """

    def __init__(self, truthy_tokens: Optional[Iterable[str]] = None):
        tokens = settings.warehouse.truthy_tokens if truthy_tokens is None else truthy_tokens
        self.truthy_tokens = sorted({t.strip().lower() for t in tokens})

    def _trim_strings(self, df: pl.DataFrame, spec: ColumnSpec) -> pl.Expr:
        """Raw value as trimmed text; empty strings count as missing"""
        col = pl.col(spec.name)
        dtype = df.schema[spec.name]
        if dtype == pl.Boolean:
            col = col.cast(pl.Int8)
        elif spec.kind == ColumnType.BOOLEAN and dtype.is_float():
            # 1.0 must read as the token "1"
            col = col.cast(pl.Int64, strict=False)
        text = col.cast(pl.Utf8).str.strip_chars()
        return pl.when(text == "").then(None).otherwise(text)

    def _normalize_currency(self, text: pl.Expr) -> pl.Expr:
        """Remove currency symbols and thousands separators"""
        return text.str.replace_all(r"[$€£¥,]", "").str.strip_chars()

    def _normalize_case(self, text: pl.Expr, spec: ColumnSpec) -> pl.Expr:
        return text if spec.preserve_case else text.str.to_uppercase()

    def _normalize_boolean(self, text: pl.Expr) -> pl.Expr:
        """Truthy tokens map to true; everything else, null included, to false"""
        return text.str.to_lowercase().is_in(self.truthy_tokens).fill_null(False)

    def _normalize_category(self, text: pl.Expr, spec: ColumnSpec) -> pl.Expr:
        upper = text.str.to_uppercase()
        allowed = list(spec.allowed or ())
        return (
            pl.when(upper.is_null() | upper.is_in(allowed))
            .then(upper)
            .otherwise(pl.lit(UNKNOWN))
        )

    def _parse(self, text: pl.Expr, spec: ColumnSpec) -> pl.Expr:
        """Cast trimmed text to the column's semantic type (null where impossible)"""
        if spec.kind == ColumnType.BOOLEAN:
            return self._normalize_boolean(text)
        if spec.kind == ColumnType.INTEGER:
            return (
                self._normalize_currency(text)
                .cast(pl.Float64, strict=False)
                .cast(pl.Int64, strict=False)
            )
        if spec.kind == ColumnType.FLOAT:
            return self._normalize_currency(text).cast(pl.Float64, strict=False)
        if spec.kind == ColumnType.CATEGORICAL:
            return self._normalize_category(text, spec)
        return self._normalize_case(text, spec)

    def _fill_nulls(self, df: pl.DataFrame, fill_values: Dict[str, Any]) -> pl.DataFrame:
        """Fill null values with specified defaults"""
        for col, value in fill_values.items():
            if col in df.columns:
                df = df.with_columns(pl.col(col).fill_null(value).alias(col))
        return df

    def _remove_duplicates(self, df: pl.DataFrame, subset: List[str]) -> pl.DataFrame:
        """Keep the first-seen record per natural key"""
        return df.unique(subset=subset, keep="first", maintain_order=True)

    def _rejections(
        self,
        rejected: pl.DataFrame,
        schema: SourceSchema,
        mandatory: List[ColumnSpec],
    ) -> List[TypeCoercionError]:
        errors = []
        for row in rejected.iter_rows(named=True):
            key = tuple(row[f"{RAW_PREFIX}{k}"] for k in schema.natural_key)
            for spec in mandatory:
                if row[spec.name] is None:
                    errors.append(TypeCoercionError(
                        source=schema.name,
                        key=key if len(key) > 1 else key[0],
                        column=spec.name,
                        value=row[f"{RAW_PREFIX}{spec.name}"],
                        expected=spec.kind.value,
                    ))
        return errors

    def clean(self, raw: pl.DataFrame, schema: SourceSchema) -> CleanedSource:
        """
        Clean a raw extract.

        Args:
            raw: Raw records (any column may be absent or null)
            schema: Declaration of the source

        Returns:
            CleanedSource with the cleaned frame, statistics and rejections
        """
        total_rows = len(raw)
        df = raw.with_row_index(ROW_INDEX)

        missing = [c.name for c in schema.raw_columns if c.name not in df.columns]
        if missing:
            logger.debug("Source is missing declared columns", source=schema.name, columns=missing)
            df = df.with_columns([pl.lit(None, dtype=pl.Utf8).alias(name) for name in missing])

        mandatory = [c for c in schema.raw_columns if c.mandatory]
        texts = {spec.name: self._trim_strings(df, spec) for spec in schema.raw_columns}

        parsed = df.select(
            [pl.col(ROW_INDEX)]
            + [self._parse(texts[spec.name], spec).alias(spec.name) for spec in schema.raw_columns]
            + [texts[spec.name].alias(f"{RAW_PREFIX}{spec.name}") for spec in mandatory]
        )

        # Records failing a mandatory column are rejected, the batch continues
        errors: List[TypeCoercionError] = []
        if mandatory:
            failed = pl.any_horizontal([pl.col(spec.name).is_null() for spec in mandatory])
            errors = self._rejections(parsed.filter(failed), schema, mandatory)
            parsed = parsed.filter(~failed)
        records_rejected = total_rows - len(parsed)

        defaults = {c.name: c.default for c in schema.raw_columns if c.default is not None}
        nulls_filled = sum(parsed[name].null_count() for name in defaults)
        parsed = self._fill_nulls(parsed, defaults)

        categorical = [c.name for c in schema.raw_columns if c.kind == ColumnType.CATEGORICAL]
        unknown_categories = sum(int((parsed[name] == UNKNOWN).sum()) for name in categorical)

        before_dedup = len(parsed)
        parsed = self._remove_duplicates(parsed, list(schema.natural_key))
        duplicates_removed = before_dedup - len(parsed)

        frame = parsed.sort(list(schema.natural_key)).select([
            pl.col(spec.name) if not spec.derived
            else pl.lit(None, dtype=POLARS_TYPES[spec.kind]).alias(spec.name)
            for spec in schema.columns
        ])

        stats = CleaningStats(
            source=schema.name,
            total_rows=total_rows,
            rows_after_cleaning=len(frame),
            records_rejected=records_rejected,
            nulls_filled=nulls_filled,
            duplicates_removed=duplicates_removed,
            unknown_categories=unknown_categories,
        )

        if errors:
            logger.warning(
                "Records rejected during cleaning",
                source=schema.name,
                rejected=records_rejected,
                sample=errors[0].message,
            )
        logger.info("Cleaned source", **asdict(stats))

        return CleanedSource(schema=schema, frame=frame, stats=stats, errors=errors)


def clean_source(df: pl.DataFrame, source: str, truthy_tokens: Optional[Iterable[str]] = None) -> pl.DataFrame:
    """
    Convenience function to clean a raw extract by source name.

    Args:
        df: Raw extract
        source: Name of a declared source (e.g. "churn_account")

    Returns:
        Cleaned DataFrame
    """
    return CleaningNormalizer(truthy_tokens).clean(df, SOURCE_SCHEMAS[source]).frame
