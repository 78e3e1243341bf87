import pandera as pa
from pandera import Check, Column, DataFrameSchema

# raw prices: exactly as read from the csv
raw_market_schema = DataFrameSchema({
    "date": Column(pa.DateTime),
    "symbol": Column(str),
    "open": Column(float),
    "close": Column(float),
    "low": Column(float),
    "high": Column(float),
    "volume": Column(float),  # csv volume can be int, coerced to float on load
})

# enriched prices: sorted by symbol and date, one quarter or more of history
enriched_market_schema = DataFrameSchema({
    "date": Column(pa.DateTime),
    "symbol": Column(str),
    "open": Column(float),
    "close": Column(float),
    "low": Column(float),
    "high": Column(float),
    "volume": Column(float),
    "year": Column(int),
    "month": Column(int, Check.in_range(1, 12)),
    "day": Column(int, Check.in_range(1, 31)),
    "percent_change": Column(float, nullable=True),  # nan only when previous close was 0 and close is 0
    "direction": Column(str, Check.isin(["up", "down"])),
})

# cross validation output: one row per held out symbol
fold_result_schema = DataFrameSchema({
    "id": Column(int, Check.ge(1)),
    "symbol": Column(str),
    "observed": Column(str, Check.isin(["up", "down"])),
    "fold": Column(int, Check.ge(1)),
    "prob_up": Column(float, Check.in_range(0.0, 1.0), nullable=True),
    "predicted": Column(str, Check.isin(["up", "down"]), nullable=True),  # None when prob_up is missing
})
