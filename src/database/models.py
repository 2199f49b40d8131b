"""
Database Models - Star Schema Design

This module defines the warehouse data models following a star schema design
pattern for churn analytics. The schema consists of:

Fact Tables:
- FactCustomerChurn: One row per account customer with churn measures

Dimension Tables:
- DimCustomer: Customer demographics (natural key: customer id)
- DimLocation: Geographic dimension keyed by zip code
- DimService: Service profile per customer
- DimTime: Calendar dimension with YYYYMMDD keys
- DimChurnStatus: Churn category per customer

Aggregate Tables:
- Seven rollups rebuilt wholesale on every pipeline run
"""

from datetime import date
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# DIMENSION TABLES
# =============================================================================

class DimTime(Base):
    """
    Time Dimension Table

    Pre-populated calendar dimension generated once for the configured span.
    Rows are pure functions of the date and are never updated.
    """
    __tablename__ = "dim_time"

    time_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)  # YYYYMMDD format
    full_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    month_name: Mapped[str] = mapped_column(String(20), nullable=False)
    quarter: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 1=Monday
    weekday_name: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        Index("ix_dim_time_year_quarter", "year", "quarter"),
    )


class DimCustomer(Base):
    """
    Customer Dimension Table

    One row per customer identifier. Attributes are merged from the account
    and demographics sources; rows are inserted once and never replaced.
    """
    __tablename__ = "dim_customer"

    customer_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Demographics
    gender: Mapped[str] = mapped_column(String(20), nullable=False, default="UNKNOWN")
    age: Mapped[Optional[int]] = mapped_column(Integer)
    senior_citizen: Mapped[bool] = mapped_column(Boolean, default=False)
    partner: Mapped[bool] = mapped_column(Boolean, default=False)
    dependents: Mapped[bool] = mapped_column(Boolean, default=False)
    married: Mapped[bool] = mapped_column(Boolean, default=False)
    number_of_dependents: Mapped[Optional[int]] = mapped_column(Integer)

    # Derived
    age_bucket: Mapped[Optional[str]] = mapped_column(String(20))

    __table_args__ = (
        Index("ix_dim_customer_gender_age", "gender", "age_bucket"),
    )


class DimLocation(Base):
    """
    Location Dimension Table

    At most one row per zip code, with population left-joined from the
    population reference.
    """
    __tablename__ = "dim_location"

    location_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    zip_code: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)

    # Geographic hierarchy
    country: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))

    # Coordinates
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)

    population: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_dim_location_state_city", "state", "city"),
    )


class DimService(Base):
    """
    Service Dimension Table

    One service profile per customer: subscribed services, billing attributes
    and average usage from the most recent service quarter.
    """
    __tablename__ = "dim_service"

    service_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    customer_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # Services
    phone_service: Mapped[bool] = mapped_column(Boolean, default=False)
    multiple_lines: Mapped[bool] = mapped_column(Boolean, default=False)
    internet_service: Mapped[Optional[str]] = mapped_column(String(30))
    internet_type: Mapped[Optional[str]] = mapped_column(String(30))
    online_security: Mapped[bool] = mapped_column(Boolean, default=False)
    online_backup: Mapped[bool] = mapped_column(Boolean, default=False)
    device_protection: Mapped[bool] = mapped_column(Boolean, default=False)
    tech_support: Mapped[bool] = mapped_column(Boolean, default=False)
    streaming_tv: Mapped[bool] = mapped_column(Boolean, default=False)
    streaming_movies: Mapped[bool] = mapped_column(Boolean, default=False)

    # Billing
    contract: Mapped[Optional[str]] = mapped_column(String(30))
    paperless_billing: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))

    # Usage
    avg_monthly_gb_download: Mapped[Optional[float]] = mapped_column(Float)
    avg_monthly_long_distance_charges: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_dim_service_contract", "contract"),
        Index("ix_dim_service_internet", "internet_service"),
    )


class DimChurnStatus(Base):
    """
    Churn Status Dimension Table

    One row per (customer, churn category) combination.
    """
    __tablename__ = "dim_churn_status"

    churn_status_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    churn_category: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("customer_id", "churn_category", name="uq_churn_status_customer_category"),
        Index("ix_dim_churn_status_customer", "customer_id"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class FactCustomerChurn(Base):
    """
    Customer Churn Fact Table

    Central fact table with grain at account-customer level.
    Contains keys to all relevant dimensions and additive measures.
    Rebuilt wholesale on every run.
    """
    __tablename__ = "fact_customer_churn"

    fact_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    # Dimension foreign keys
    customer_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("dim_customer.customer_id"), nullable=False
    )
    location_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dim_location.location_id")
    )
    service_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dim_service.service_id")
    )
    time_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dim_time.time_id")
    )
    churn_status_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("dim_churn_status.churn_status_id")
    )

    # Measures
    tenure_months: Mapped[int] = mapped_column(Integer, default=0)
    monthly_charge: Mapped[float] = mapped_column(Float, default=0)
    total_charge: Mapped[float] = mapped_column(Float, default=0)
    churn_score: Mapped[Optional[int]] = mapped_column(Integer)
    lifetime_value: Mapped[Optional[float]] = mapped_column(Float)

    # Derived classifications
    tenure_bucket: Mapped[Optional[str]] = mapped_column(String(30))
    revenue_flag: Mapped[Optional[str]] = mapped_column(String(30))
    risk_category: Mapped[Optional[str]] = mapped_column(String(30))

    __table_args__ = (
        UniqueConstraint("customer_id", name="uq_fact_customer_churn_customer"),
        Index("ix_fact_customer_churn_location", "location_id"),
        Index("ix_fact_customer_churn_service", "service_id"),
        Index("ix_fact_customer_churn_time", "time_id"),
    )


# =============================================================================
# ANALYTICS AGGREGATES
# =============================================================================

class ChurnMetricsMixin:
    """Measures shared by every aggregate grain"""
    customer_count: Mapped[int] = mapped_column(Integer, default=0)
    churned_count: Mapped[int] = mapped_column(Integer, default=0)
    total_monthly_charges: Mapped[float] = mapped_column(Float, default=0)
    avg_monthly_charges: Mapped[Optional[float]] = mapped_column(Float)
    total_charges: Mapped[float] = mapped_column(Float, default=0)
    avg_total_charges: Mapped[Optional[float]] = mapped_column(Float)
    churn_rate: Mapped[Optional[float]] = mapped_column(Float)  # NULL when no customers


class AggCustomer(ChurnMetricsMixin, Base):
    """Per-customer rollup"""
    __tablename__ = "agg_customer"

    customer_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("dim_customer.customer_id"), primary_key=True
    )


class AggLocation(ChurnMetricsMixin, Base):
    """Per-location rollup, including locations without customers"""
    __tablename__ = "agg_location"

    location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_location.location_id"), primary_key=True, autoincrement=False
    )
    zip_code: Mapped[int] = mapped_column(Integer, nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))


class AggContract(ChurnMetricsMixin, Base):
    """Per-contract-type rollup"""
    __tablename__ = "agg_contract"

    contract: Mapped[str] = mapped_column(String(30), primary_key=True)


class AggTimePeriod(ChurnMetricsMixin, Base):
    """Per-date rollup of estimated contract starts"""
    __tablename__ = "agg_time_period"

    time_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_time.time_id"), primary_key=True, autoincrement=False
    )
    quarter_label: Mapped[str] = mapped_column(String(10), nullable=False)


class AggInternetService(ChurnMetricsMixin, Base):
    """Per-internet-service rollup"""
    __tablename__ = "agg_internet_service"

    internet_service: Mapped[str] = mapped_column(String(30), primary_key=True)


class AggDemographic(ChurnMetricsMixin, Base):
    """Per-demographic-segment rollup (gender x age bucket)"""
    __tablename__ = "agg_demographic"

    gender: Mapped[str] = mapped_column(String(20), primary_key=True)
    age_bucket: Mapped[str] = mapped_column(String(20), primary_key=True)


class AggChurnTrend(ChurnMetricsMixin, Base):
    """Per-quarter churn trend, keyed by the quarter's first day"""
    __tablename__ = "agg_churn_trend"

    time_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dim_time.time_id"), primary_key=True, autoincrement=False
    )
    quarter_label: Mapped[str] = mapped_column(String(10), nullable=False)
    avg_churn_score: Mapped[Optional[float]] = mapped_column(Float)
    high_risk_count: Mapped[int] = mapped_column(Integer, default=0)
    cumulative_churned: Mapped[int] = mapped_column(Integer, default=0)


DIMENSION_TABLES = [
    DimCustomer.__table__,
    DimLocation.__table__,
    DimService.__table__,
    DimTime.__table__,
    DimChurnStatus.__table__,
]

FACT_TABLE = FactCustomerChurn.__table__

AGGREGATE_TABLES = {
    "customer": AggCustomer.__table__,
    "location": AggLocation.__table__,
    "contract": AggContract.__table__,
    "time_period": AggTimePeriod.__table__,
    "internet_service": AggInternetService.__table__,
    "demographic": AggDemographic.__table__,
    "churn_trend": AggChurnTrend.__table__,
}
