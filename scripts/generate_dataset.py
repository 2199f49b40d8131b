"""
Telco Raw Extract Generator
Generates synthetic raw extracts for every warehouse source using vectorized operations.

Writes churn_account.csv, demographics.csv, location.csv, population.csv,
services.csv and status.csv with raw-looking values (mixed case, currency
symbols, blanks, a few duplicates) for exercising the cleaning stage.
"""

import argparse
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker

fake = Faker("en_US")
np.random.seed(42)
Faker.seed(42)

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "raw"

CONTRACTS = ["Month-to-month", "One year", "Two year"]
INTERNET = ["DSL", "Fiber optic", "No"]
PAYMENTS = ["Electronic check", "Mailed check", "Bank transfer (automatic)", "Credit card (automatic)"]
CATEGORIES = ["Competitor", "Dissatisfaction", "Attitude", "Price", "Other"]


def yes_no(n, p_yes=0.5):
    return np.where(np.random.random(n) < p_yes, "Yes", "No")


# ==========================================
# LOCATIONS
# ==========================================
def generate_zip_codes(n_zips=400):
    print(f"📊 Generating {n_zips:,} zip codes...")
    zips = np.random.choice(np.arange(90001, 96162), size=n_zips, replace=False)
    return pl.DataFrame({
        "Zip Code": zips.astype(str),
        "City": [fake.city() for _ in range(n_zips)],
        "Latitude": np.round(np.random.uniform(32.5, 42.0, n_zips), 6).astype(str),
        "Longitude": np.round(np.random.uniform(-124.4, -114.1, n_zips), 6).astype(str),
    })


def generate_population(zips: pl.DataFrame, out: Path):
    df = pl.DataFrame({
        "Zip Code": zips["Zip Code"],
        "Population": np.random.randint(500, 110000, len(zips)).astype(str),
    })
    df.write_csv(out / "population.csv")
    print(f"   ✅ population.csv: {len(df):,} rows")


# ==========================================
# ACCOUNTS
# ==========================================
def generate_accounts(n: int, zips: pl.DataFrame, out: Path) -> pl.DataFrame:
    print(f"📊 Generating {n:,} customer accounts...")

    ids = [f"{np.random.randint(1000, 9999)}-{fake.lexify('?????').upper()}" for _ in range(n)]
    picks = np.random.randint(0, len(zips), n)
    tenure = np.random.randint(0, 73, n)
    monthly = np.round(np.random.uniform(18.0, 120.0, n), 2)
    churn_score = np.random.randint(5, 100, n)
    churned = np.random.random(n) < 0.27

    df = pl.DataFrame({
        "Customer ID": ids,
        "Gender": np.random.choice(["Male", "Female", " male ", ""], n, p=[0.48, 0.48, 0.02, 0.02]),
        "Senior Citizen": yes_no(n, 0.16),
        "Partner": yes_no(n, 0.48),
        "Dependents": yes_no(n, 0.23),
        "Country": ["United States"] * n,
        "State": ["California"] * n,
        "City": zips["City"].gather(picks),
        "Zip Code": zips["Zip Code"].gather(picks),
        "Latitude": zips["Latitude"].gather(picks),
        "Longitude": zips["Longitude"].gather(picks),
        "Tenure Months": tenure.astype(str),
        "Phone Service": yes_no(n, 0.9),
        "Multiple Lines": yes_no(n, 0.42),
        "Internet Service": np.random.choice(INTERNET, n, p=[0.34, 0.44, 0.22]),
        "Online Security": yes_no(n, 0.29),
        "Online Backup": yes_no(n, 0.34),
        "Device Protection": yes_no(n, 0.34),
        "Tech Support": yes_no(n, 0.29),
        "Streaming TV": yes_no(n, 0.38),
        "Streaming Movies": yes_no(n, 0.39),
        "Contract": np.random.choice(CONTRACTS, n, p=[0.55, 0.21, 0.24]),
        "Paperless Billing": yes_no(n, 0.59),
        "Payment Method": np.random.choice(PAYMENTS, n),
        "Monthly Charges": [f"${m:,.2f}" if i % 7 == 0 else f"{m:.2f}" for i, m in enumerate(monthly)],
        "Total Charges": [f"{m * max(t, 1):.2f}" if i % 50 else " " for i, (m, t) in enumerate(zip(monthly, tenure))],
        "Churn Label": np.where(churned, "Yes", "No"),
        "Churn Score": churn_score.astype(str),
        "CLTV": np.random.randint(2000, 6500, n).astype(str),
        "Churn Reason": np.where(churned, np.random.choice(["Competitor offered more data", "Price too high", "Moved"], n), ""),
    })

    # A few duplicated accounts with conflicting values
    duplicates = df.sample(max(n // 100, 1), seed=42).with_columns(pl.lit("No").alias("Partner"))
    raw = pl.concat([df, duplicates])

    raw.write_csv(out / "churn_account.csv")
    print(f"   ✅ churn_account.csv: {len(raw):,} rows")
    return df


def generate_demographics(accounts: pl.DataFrame, out: Path):
    n = len(accounts)
    df = pl.DataFrame({
        "Customer ID": accounts["Customer ID"],
        "Gender": accounts["Gender"],
        "Age": np.random.randint(19, 80, n).astype(str),
        "Under 30": yes_no(n, 0.2),
        "Senior Citizen": accounts["Senior Citizen"],
        "Married": accounts["Partner"],
        "Dependents": accounts["Dependents"],
        "Number of Dependents": np.random.choice(["0", "1", "2", "3"], n, p=[0.77, 0.1, 0.09, 0.04]),
    })
    df.write_csv(out / "demographics.csv")
    print(f"   ✅ demographics.csv: {n:,} rows")


def generate_location(accounts: pl.DataFrame, out: Path):
    df = accounts.select([
        "Customer ID",
        "Country",
        "State",
        "City",
        "Zip Code",
        "Latitude",
        "Longitude",
    ])
    df.write_csv(out / "location.csv")
    print(f"   ✅ location.csv: {len(df):,} rows")


def generate_services(accounts: pl.DataFrame, out: Path):
    n = len(accounts)
    frames = []
    # Two consecutive quarters per customer
    for quarter in ("Q2", "Q3"):
        frames.append(pl.DataFrame({
            "Customer ID": accounts["Customer ID"],
            "Quarter": [quarter] * n,
            "Referred a Friend": yes_no(n, 0.46),
            "Number of Referrals": np.random.randint(0, 11, n).astype(str),
            "Tenure in Months": accounts["Tenure Months"],
            "Offer": np.random.choice(["None", "Offer A", "Offer B", "Offer C"], n),
            "Phone Service": accounts["Phone Service"],
            "Avg Monthly Long Distance Charges": np.round(np.random.uniform(0, 50, n), 2).astype(str),
            "Multiple Lines": accounts["Multiple Lines"],
            "Internet Service": np.where(accounts["Internet Service"].to_numpy() == "No", "No", "Yes"),
            "Internet Type": np.where(
                accounts["Internet Service"].to_numpy() == "No",
                "None",
                np.random.choice(["DSL", "Fiber Optic", "Cable"], n),
            ),
            "Avg Monthly GB Download": np.random.randint(0, 86, n).astype(str),
            "Unlimited Data": yes_no(n, 0.67),
            "Contract": accounts["Contract"],
            "Paperless Billing": accounts["Paperless Billing"],
            "Payment Method": accounts["Payment Method"],
            "Monthly Charge": accounts["Monthly Charges"],
            "Total Charges": accounts["Total Charges"],
            "Total Revenue": np.round(np.random.uniform(20, 12000, n), 2).astype(str),
        }))
    df = pl.concat(frames)
    df.write_csv(out / "services.csv")
    print(f"   ✅ services.csv: {len(df):,} rows")


def generate_status(accounts: pl.DataFrame, out: Path):
    n = len(accounts)
    churned = accounts["Churn Label"].to_numpy() == "Yes"
    df = pl.DataFrame({
        "Customer ID": accounts["Customer ID"],
        "Quarter": ["Q3"] * n,
        "Satisfaction Score": np.random.randint(1, 6, n).astype(str),
        "Customer Status": np.where(churned, "Churned", np.random.choice(["Stayed", "Joined"], n, p=[0.85, 0.15])),
        "Churn Label": accounts["Churn Label"],
        "Churn Value": np.where(churned, "1", "0"),
        "Churn Score": accounts["Churn Score"],
        "CLTV": accounts["CLTV"],
        "Churn Category": np.where(churned, np.random.choice(CATEGORIES, n), ""),
        "Churn Reason": accounts["Churn Reason"],
    })
    df.write_csv(out / "status.csv")
    print(f"   ✅ status.csv: {n:,} rows")


def main():
    parser = argparse.ArgumentParser(description="Generate synthetic telco raw extracts")
    parser.add_argument("--customers", type=int, default=7043)
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR)
    args = parser.parse_args()

    out = args.output_dir
    out.mkdir(parents=True, exist_ok=True)

    print("=" * 50)
    print("🚀 TELCO RAW EXTRACT GENERATOR")
    print("=" * 50)

    zips = generate_zip_codes()
    generate_population(zips, out)
    accounts = generate_accounts(args.customers, zips, out)
    generate_demographics(accounts, out)
    generate_location(accounts, out)
    generate_services(accounts, out)
    generate_status(accounts, out)

    print("=" * 50)
    print(f"✅ Raw extracts written to {out}")
    print("=" * 50)


if __name__ == "__main__":
    main()
