"""
Test Suite Configuration
"""
from datetime import date
from typing import AsyncGenerator, Dict, List

import polars as pl
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from src.config import Settings
from src.database.connection import create_engine
from src.database.warehouse import WarehouseRepository
from src.ingestion.extracts import InMemoryExtractProvider
from src.ingestion.schemas import SOURCE_SCHEMAS
from src.transformation.cleaners import CleaningNormalizer
from src.transformation.dimensions import DimensionBuilder, SequenceAllocator
from src.transformation.enrichers import DerivedAttributeEngine

ANCHOR_DATE = date(2024, 6, 30)
TIME_RANGE = (date(2018, 1, 1), date(2024, 12, 31))
DIMENSION_NAMES = ("dim_customer", "dim_location", "dim_service", "dim_time", "dim_churn_status")


def _account(customer_id: str, **overrides) -> Dict[str, str]:
    row = {
        "customer_id": customer_id,
        "gender": "Female",
        "senior_citizen": "No",
        "partner": "Yes",
        "dependents": "No",
        "country": "United States",
        "state": "California",
        "city": "Los Angeles",
        "zip_code": "90001",
        "latitude": "33.97",
        "longitude": "-118.24",
        "tenure_months": "11",
        "phone_service": "Yes",
        "multiple_lines": "No",
        "internet_service": "DSL",
        "online_security": "Yes",
        "online_backup": "No",
        "device_protection": "No",
        "tech_support": "Yes",
        "streaming_tv": "No",
        "streaming_movies": "No",
        "contract": "Month-to-month",
        "paperless_billing": "Yes",
        "payment_method": "Electronic check",
        "monthly_charges": "$70.50",
        "total_charges": "775.50",
        "churn_label": "Yes",
        "churn_score": "80",
        "cltv": "3000",
        "churn_reason": "Competitor made better offer",
    }
    row.update(overrides)
    return row


def _service(customer_id: str, quarter: str, **overrides) -> Dict[str, str]:
    row = {
        "customer_id": customer_id,
        "quarter": quarter,
        "referred_a_friend": "No",
        "number_of_referrals": "0",
        "tenure_in_months": "11",
        "offer": "None",
        "phone_service": "Yes",
        "avg_monthly_long_distance_charges": "10.5",
        "multiple_lines": "No",
        "internet_service": "Yes",
        "internet_type": "DSL",
        "avg_monthly_gb_download": "10",
        "unlimited_data": "Yes",
        "contract": "Month-to-month",
        "paperless_billing": "Yes",
        "payment_method": "Bank Withdrawal",
        "monthly_charge": "70.50",
        "total_charges": "775.50",
        "total_revenue": "800.00",
    }
    row.update(overrides)
    return row


def _status(customer_id: str, quarter: str, category: str, **overrides) -> Dict[str, str]:
    row = {
        "customer_id": customer_id,
        "quarter": quarter,
        "satisfaction_score": "3",
        "customer_status": "Churned" if category else "Stayed",
        "churn_label": "Yes" if category else "No",
        "churn_value": "1" if category else "0",
        "churn_score": "80",
        "cltv": "3000",
        "churn_category": category,
        "churn_reason": "",
    }
    row.update(overrides)
    return row


@pytest.fixture
def raw_extracts() -> Dict[str, List[Dict[str, str]]]:
    """Raw extracts for three valid customers, one duplicate and one broken record"""
    return {
        "churn_account": [
            _account("C1"),
            _account("C2", gender="Male", zip_code="90002", tenure_months="24",
                     monthly_charges="100", total_charges="2,400.00", churn_label="No", churn_score="49"),
            _account("C1", gender="Male", partner="No", monthly_charges="10"),
            _account("C3", gender="", tenure_months="25", monthly_charges="100.01",
                     total_charges="2500.25", churn_score="", internet_service="Fiber Optic",
                     contract="Two year"),
            _account("", gender="Male"),
        ],
        "demographics": [
            {"customer_id": "C1", "gender": "Male", "age": "45", "senior_citizen": "No",
             "married": "Yes", "dependents": "No", "number_of_dependents": "0"},
            {"customer_id": "C2", "gender": "", "age": "25", "senior_citizen": "No",
             "married": "No", "dependents": "No", "number_of_dependents": "0"},
            {"customer_id": "C3", "gender": "Other", "age": "65", "senior_citizen": "Yes",
             "married": "Yes", "dependents": "Yes", "number_of_dependents": "2"},
        ],
        "location": [
            {"customer_id": "C1", "country": "United States", "state": "California",
             "city": "Los Angeles", "zip_code": "90001", "latitude": "33.97", "longitude": "-118.24"},
            {"customer_id": "C2", "country": "United States", "state": "California",
             "city": "Los Angeles", "zip_code": "90002", "latitude": "33.95", "longitude": "-118.25"},
            {"customer_id": "C3", "country": "United States", "state": "California",
             "city": "Los Angeles", "zip_code": "90001", "latitude": "33.97", "longitude": "-118.24"},
            {"customer_id": "C9", "country": "United States", "state": "California",
             "city": "Los Angeles", "zip_code": "90003", "latitude": "33.96", "longitude": "-118.27"},
        ],
        "population": [
            {"zip_code": "90001", "population": "57000"},
            {"zip_code": "90002", "population": "44000"},
        ],
        "services": [
            _service("C1", "Q2", avg_monthly_gb_download="5"),
            _service("C1", "Q3", avg_monthly_gb_download="20"),
            _service("C2", "Q3"),
            _service("C3", "Q1-2024", internet_type="Fiber Optic"),
        ],
        "status": [
            _status("C1", "Q3", "Competitor"),
            _status("C2", "Q3", ""),
            _status("C3", "Q2", "Attitude"),
            _status("C3", "Q3", "Price"),
        ],
    }


@pytest.fixture
def provider(raw_extracts) -> InMemoryExtractProvider:
    return InMemoryExtractProvider(raw_extracts)


@pytest.fixture
def raw_frames(raw_extracts) -> Dict[str, pl.DataFrame]:
    return {name: pl.DataFrame(rows) for name, rows in raw_extracts.items()}


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(app_env="testing")


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite warehouse per test"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'warehouse.db'}", echo=False)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def repository(engine) -> WarehouseRepository:
    repository = WarehouseRepository(engine)
    await repository.create_schema()
    return repository


@pytest.fixture
def cleaned_frames(raw_frames) -> Dict[str, pl.DataFrame]:
    """Raw frames run through the cleaning normalizer"""
    normalizer = CleaningNormalizer(truthy_tokens=["yes", "1"])
    return {
        name: normalizer.clean(frame, SOURCE_SCHEMAS[name]).frame
        for name, frame in raw_frames.items()
    }


@pytest.fixture
def anchor_date() -> date:
    return ANCHOR_DATE


@pytest.fixture
def time_range():
    return TIME_RANGE


@pytest.fixture
def derived_account(cleaned_frames) -> pl.DataFrame:
    return DerivedAttributeEngine().derive_account(cleaned_frames["churn_account"])


@pytest.fixture
def dimensions(cleaned_frames) -> Dict[str, pl.DataFrame]:
    """Dimensions built from the cleaned frames into an empty warehouse, age buckets applied"""
    builder = DimensionBuilder(allocator=SequenceAllocator(), anchor_date=ANCHOR_DATE, time_range=TIME_RANGE)
    empty = {name: pl.DataFrame() for name in DIMENSION_NAMES}
    built = builder.build(cleaned_frames, empty)
    customers = built["dim_customer"]
    built["dim_customer"] = customers.drop("age_bucket").join(
        DerivedAttributeEngine().derive_customers(customers), on="customer_id", how="left"
    )
    return built
