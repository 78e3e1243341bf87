"""
Ingest service - daily stock prices from a csv into the enriched dataset

- reads date,symbol,open,close,low,high,volume, any malformed cell aborts the load
- keeps years >= MIN_YEAR, sorts by symbol and date
- adds year/month/day, percent change vs the previous record and up/down direction
"""

import os
import numpy as np
import pandas as pd
from pathlib import Path

from libs.schemas import raw_market_schema, enriched_market_schema

# Configuration
PRICES_CSV = Path(os.getenv("PRICES_CSV", "data/prices.csv"))
DATA_ENRICHED = Path("data/enriched/prices_enriched.csv")

# history before this year is dropped before any change is computed
MIN_YEAR = 2016

RAW_COLUMNS = ["date", "symbol", "open", "close", "low", "high", "volume"]
NUMERIC_COLUMNS = ["open", "close", "low", "high", "volume"]


class PriceParseError(ValueError):
    """Raised when the price file has a missing column or a malformed value"""
    pass


def load_prices(path=PRICES_CSV) -> pd.DataFrame:
    """
    Read the raw price csv and return a typed DF with the columns:
    date, symbol, open, close, low, high, volume

    Every value is read as text first so a bad cell fails loudly instead of
    turning the whole column into object dtype.

    Raises:
        FileNotFoundError: path does not exist
        PriceParseError: missing column, unparseable date or number
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"price file not found at {path}. "
            f"export daily prices with header {','.join(RAW_COLUMNS)} or set PRICES_CSV"
        )

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower() for c in df.columns]

    missing = set(RAW_COLUMNS) - set(df.columns)
    if missing:
        raise PriceParseError(f"Missing columns {sorted(missing)} in {path}")

    df = df[RAW_COLUMNS].copy()

    dates = df["date"].str.strip()
    # to_datetime reads "" as NaT
    if (dates == "").any():
        raise PriceParseError(f"malformed date in {path}: empty value")
    try:
        df["date"] = pd.to_datetime(dates, format="ISO8601").dt.normalize()
    except (ValueError, TypeError) as exc:
        raise PriceParseError(f"malformed date in {path}: {exc}") from exc
    if df["date"].isna().any():
        raise PriceParseError(f"malformed date in {path}: {df['date'].isna().sum()} unparsed values")

    for col in NUMERIC_COLUMNS:
        values = df[col].str.strip()
        # to_numeric reads "" as nan
        if (values == "").any():
            raise PriceParseError(f"malformed number in column '{col}' of {path}: empty value")
        try:
            df[col] = pd.to_numeric(values).astype(float)
        except (ValueError, TypeError) as exc:
            raise PriceParseError(f"malformed number in column '{col}' of {path}: {exc}") from exc

    df["symbol"] = df["symbol"].str.strip()

    return raw_market_schema.validate(df)


def add_calendar_fields(df: pd.DataFrame) -> pd.DataFrame:
    """Add integer year, month, day columns derived from date"""
    out = df.copy()
    out["year"] = out["date"].dt.year.astype(int)
    out["month"] = out["date"].dt.month.astype(int)
    out["day"] = out["date"].dt.day.astype(int)
    return out


def filter_years(df: pd.DataFrame, min_year: int = MIN_YEAR) -> pd.DataFrame:
    """Keep rows with year >= min_year"""
    return df[df["year"] >= min_year].reset_index(drop=True)


def sort_records(df: pd.DataFrame) -> pd.DataFrame:
    """Stable sort by (symbol, date); percent change relies on this order"""
    return df.sort_values(["symbol", "date"], kind="mergesort").reset_index(drop=True)


def compute_percent_change(df: pd.DataFrame) -> pd.DataFrame:
    """
    Percent change of close vs the previous record of the same symbol.

    Expects df sorted by (symbol, date). The previous record is the row right
    above, whatever the date gap. The first row of every symbol gets 0.0.
    A previous close of 0 gives inf (nan for 0/0) and is left as is.
    """
    out = df.copy()

    prev_close = out["close"].shift(1)
    first_of_symbol = out["symbol"].ne(out["symbol"].shift(1))

    change = (out["close"] - prev_close) / prev_close * 100
    out["percent_change"] = change.where(~first_of_symbol, 0.0).astype(float)

    return out


def label_direction(df: pd.DataFrame) -> pd.DataFrame:
    """direction is 'up' when percent_change >= 0 (0.0 counts as up), else 'down'"""
    out = df.copy()
    out["direction"] = np.where(out["percent_change"] >= 0, "up", "down")
    return out


def build_enriched(raw: pd.DataFrame, min_year: int = MIN_YEAR) -> pd.DataFrame:
    """
    Build the enriched view:
    date, symbol, open, close, low, high, volume, year, month, day, percent_change, direction
    """
    df = add_calendar_fields(raw)
    df = filter_years(df, min_year)
    df = sort_records(df)
    df = compute_percent_change(df)
    df = label_direction(df)

    return enriched_market_schema.validate(df)


def write_enriched(df: pd.DataFrame, path=DATA_ENRICHED) -> Path:
    """Write the enriched dataset as a single csv"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False, date_format="%Y-%m-%d")
    return path


def main():
    print("=" * 60)
    print("Ingest Service")
    print("=" * 60)

    print(f"\nLoading prices from {PRICES_CSV}...")
    raw = load_prices(PRICES_CSV)
    print(f"Loaded {len(raw)} rows, {raw['symbol'].nunique()} symbols")

    print(f"Building enriched prices (year >= {MIN_YEAR})...")
    enriched = build_enriched(raw, MIN_YEAR)
    print(f"Kept {len(enriched)} rows")

    print("Writing enriched prices...")
    outpath = write_enriched(enriched, DATA_ENRICHED)
    print(f"Wrote {outpath}")

    print("\n" + "=" * 60)
    print("✅ Ingestion complete")
    print("=" * 60)


if __name__ == "__main__":
    main()
