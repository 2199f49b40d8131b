"""
Raw Source Schemas

Declares the column typing, nullability, defaults and natural keys of each raw
extract. The same declarations drive the cleaning normalizer and the shape of
the staging tables.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ColumnType(str, Enum):
    """Semantic column types"""
    TEXT = "text"
    CATEGORICAL = "categorical"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"


UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ColumnSpec:
    """Declaration of a single source column"""
    name: str
    kind: ColumnType
    mandatory: bool = False
    default: Any = None
    preserve_case: bool = False
    allowed: Optional[Tuple[str, ...]] = None
    derived: bool = False  # filled by the derive stage, never read from raw input

    @property
    def is_numeric(self) -> bool:
        return self.kind in (ColumnType.INTEGER, ColumnType.FLOAT)


@dataclass(frozen=True)
class SourceSchema:
    """Declaration of a raw source table"""
    name: str
    columns: Tuple[ColumnSpec, ...]
    natural_key: Tuple[str, ...]
    required: bool = True

    @property
    def raw_columns(self) -> List[ColumnSpec]:
        """Columns read from the raw extract"""
        return [c for c in self.columns if not c.derived]

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnSpec:
        for spec in self.columns:
            if spec.name == name:
                return spec
        raise KeyError(f"{self.name} has no column '{name}'")


def _text(name: str, **kwargs) -> ColumnSpec:
    return ColumnSpec(name, ColumnType.TEXT, **kwargs)


def _flag(name: str) -> ColumnSpec:
    return ColumnSpec(name, ColumnType.BOOLEAN)


def _int(name: str, **kwargs) -> ColumnSpec:
    return ColumnSpec(name, ColumnType.INTEGER, **kwargs)


def _float(name: str, **kwargs) -> ColumnSpec:
    return ColumnSpec(name, ColumnType.FLOAT, **kwargs)


def _category(name: str, allowed: Tuple[str, ...], **kwargs) -> ColumnSpec:
    return ColumnSpec(name, ColumnType.CATEGORICAL, allowed=allowed, **kwargs)


def _customer_id() -> ColumnSpec:
    return _text("customer_id", mandatory=True, preserve_case=True)


GENDERS = ("MALE", "FEMALE")
YES_NO = ("YES", "NO")
INTERNET_SERVICES = ("DSL", "FIBER OPTIC", "NO")
INTERNET_TYPES = ("DSL", "FIBER OPTIC", "CABLE", "NONE")
CONTRACTS = ("MONTH-TO-MONTH", "ONE YEAR", "TWO YEAR")
PAYMENT_METHODS = (
    "ELECTRONIC CHECK",
    "MAILED CHECK",
    "BANK TRANSFER (AUTOMATIC)",
    "CREDIT CARD (AUTOMATIC)",
)
CUSTOMER_STATUSES = ("STAYED", "CHURNED", "JOINED")
CHURN_CATEGORIES = ("COMPETITOR", "DISSATISFACTION", "ATTITUDE", "PRICE", "OTHER")
NOT_CHURNED = "NOT_CHURNED"


CHURN_ACCOUNT = SourceSchema(
    name="churn_account",
    natural_key=("customer_id",),
    columns=(
        _customer_id(),
        _category("gender", GENDERS),
        _flag("senior_citizen"),
        _flag("partner"),
        _flag("dependents"),
        _text("country"),
        _text("state"),
        _text("city"),
        _int("zip_code", default=0),
        _float("latitude"),
        _float("longitude"),
        _int("tenure_months", default=0),
        _flag("phone_service"),
        _flag("multiple_lines"),
        _category("internet_service", INTERNET_SERVICES),
        _flag("online_security"),
        _flag("online_backup"),
        _flag("device_protection"),
        _flag("tech_support"),
        _flag("streaming_tv"),
        _flag("streaming_movies"),
        _category("contract", CONTRACTS),
        _flag("paperless_billing"),
        _category("payment_method", PAYMENT_METHODS),
        _float("monthly_charges", default=0.0),
        _float("total_charges", default=0.0),
        _category("churn_label", YES_NO),
        _int("churn_score"),
        _int("cltv"),
        _text("churn_reason"),
        # Derived attributes
        _text("tenure_bucket", derived=True),
        _text("revenue_flag", derived=True),
        _text("risk_category", derived=True),
        _float("customer_value", derived=True),
    ),
)

DEMOGRAPHICS = SourceSchema(
    name="demographics",
    natural_key=("customer_id",),
    columns=(
        _customer_id(),
        _category("gender", GENDERS),
        _int("age", default=0),
        _flag("senior_citizen"),
        _flag("married"),
        _flag("dependents"),
        _int("number_of_dependents", default=0),
    ),
)

LOCATION = SourceSchema(
    name="location",
    natural_key=("customer_id",),
    columns=(
        _customer_id(),
        _text("country"),
        _text("state"),
        _text("city"),
        _int("zip_code", default=0),
        _float("latitude"),
        _float("longitude"),
    ),
)

POPULATION = SourceSchema(
    name="population",
    natural_key=("zip_code",),
    required=False,
    columns=(
        _int("zip_code", mandatory=True),
        _int("population"),
    ),
)

SERVICES = SourceSchema(
    name="services",
    natural_key=("customer_id", "quarter"),
    columns=(
        _customer_id(),
        _text("quarter", mandatory=True),
        _flag("referred_a_friend"),
        _int("number_of_referrals", default=0),
        _int("tenure_in_months", default=0),
        _text("offer"),
        _flag("phone_service"),
        _float("avg_monthly_long_distance_charges", default=0.0),
        _flag("multiple_lines"),
        _flag("internet_service"),
        _category("internet_type", INTERNET_TYPES),
        _float("avg_monthly_gb_download", default=0.0),
        _flag("unlimited_data"),
        _category("contract", CONTRACTS),
        _flag("paperless_billing"),
        _text("payment_method"),
        _float("monthly_charge", default=0.0),
        _float("total_charges", default=0.0),
        _float("total_revenue", default=0.0),
    ),
)

STATUS = SourceSchema(
    name="status",
    natural_key=("customer_id", "quarter"),
    columns=(
        _customer_id(),
        _text("quarter", mandatory=True),
        _int("satisfaction_score"),
        _category("customer_status", CUSTOMER_STATUSES),
        _category("churn_label", YES_NO),
        _int("churn_value", default=0),
        _int("churn_score"),
        _int("cltv"),
        _category("churn_category", CHURN_CATEGORIES, default=NOT_CHURNED),
        _text("churn_reason"),
    ),
)


SOURCE_SCHEMAS: Dict[str, SourceSchema] = {
    schema.name: schema
    for schema in (CHURN_ACCOUNT, DEMOGRAPHICS, LOCATION, POPULATION, SERVICES, STATUS)
}
