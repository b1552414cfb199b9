"""Summarise recent insider transactions from the market feed."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import pandas as pd

from valuation_mcp.utils.numbers import safe_float

WINDOW_DAYS = 182
TOP_INSIDERS = 5

# Net activity is one-sided when one side exceeds the other by this factor
NET_ACTIVITY_RATIO = 1.2

_BUY_WORDS = ("purchase", "buy")
_SELL_WORDS = ("sale", "sell")


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def classify_transaction(text: str | None, transaction: str | None = None) -> str | None:
    """'buy', 'sell', or None for grants, gifts and option exercises."""
    blob = f"{transaction or ''} {text or ''}".lower()
    if any(word in blob for word in _BUY_WORDS):
        return "buy"
    if any(word in blob for word in _SELL_WORDS):
        return "sell"
    return None


@dataclass
class InsiderTotals:
    name: str
    position: str | None = None
    buy_value: float = 0.0
    sell_value: float = 0.0
    buy_shares: float = 0.0
    sell_shares: float = 0.0
    transactions: int = 0

    @property
    def net_value(self) -> float:
        return self.buy_value - self.sell_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "position": self.position,
            "buy_value": round(self.buy_value, 2),
            "sell_value": round(self.sell_value, 2),
            "net_value": round(self.net_value, 2),
            "buy_shares": self.buy_shares,
            "sell_shares": self.sell_shares,
            "transactions": self.transactions,
        }


@dataclass
class InsiderActivity:
    window_start: str
    window_end: str
    buy_count: int = 0
    sell_count: int = 0
    buy_value: float = 0.0
    sell_value: float = 0.0
    insiders: list[InsiderTotals] = field(default_factory=list)

    @property
    def net_value(self) -> float:
        return self.buy_value - self.sell_value

    @property
    def net_activity(self) -> str:
        if self.buy_value > self.sell_value * NET_ACTIVITY_RATIO:
            return "NET_BUY"
        if self.sell_value > self.buy_value * NET_ACTIVITY_RATIO:
            return "NET_SELL"
        return "NEUTRAL"

    def to_dict(self) -> dict[str, Any]:
        ranked = sorted(self.insiders, key=lambda i: abs(i.net_value), reverse=True)
        return {
            "window_start": self.window_start,
            "window_end": self.window_end,
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "buy_value": round(self.buy_value, 2),
            "sell_value": round(self.sell_value, 2),
            "net_value": round(self.net_value, 2),
            "net_activity": self.net_activity,
            "insiders": [i.to_dict() for i in ranked],
            "top_insiders": [i.name for i in ranked[:TOP_INSIDERS]],
        }


def summarize_insider_activity(
    df: pd.DataFrame | None,
    as_of: date,
    window_days: int = WINDOW_DAYS,
) -> InsiderActivity:
    """
    Aggregate buys and sells inside the trailing window, per insider.

    Expects yfinance's insider_transactions columns (Insider, Position,
    Transaction, Text, Shares, Value, Start Date). Rows outside the window or
    that are neither a purchase nor a sale are ignored.
    """
    start = as_of - timedelta(days=window_days)
    activity = InsiderActivity(window_start=start.isoformat(), window_end=as_of.isoformat())
    if df is None or df.empty or "Start Date" not in df.columns:
        return activity

    dates = pd.to_datetime(df["Start Date"], errors="coerce").dt.date
    by_name: dict[str, InsiderTotals] = {}

    for (_, row), when in zip(df.iterrows(), dates):
        if pd.isna(when) or when < start or when > as_of:
            continue
        side = classify_transaction(_text(row.get("Text")), _text(row.get("Transaction")))
        if side is None:
            continue

        value = abs(safe_float(row.get("Value")) or 0.0)
        shares = abs(safe_float(row.get("Shares")) or 0.0)
        name = _text(row.get("Insider")) or "UNKNOWN"
        totals = by_name.setdefault(name, InsiderTotals(name=name, position=_text(row.get("Position"))))
        totals.transactions += 1

        if side == "buy":
            activity.buy_count += 1
            activity.buy_value += value
            totals.buy_value += value
            totals.buy_shares += shares
        else:
            activity.sell_count += 1
            activity.sell_value += value
            totals.sell_value += value
            totals.sell_shares += shares

    activity.insiders = list(by_name.values())
    return activity
