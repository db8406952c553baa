"""
Thin wrapper over yfinance returning the quote and chart shapes the site widgets use.

Quote:  {"symbol", "name", "price", "change", "changePercent"}
Chart:  {"time", "value", "volume"}
"""

from __future__ import annotations

import logging
import math
from typing import Any

import yfinance as yf

logger = logging.getLogger(__name__)


class MarketDataError(RuntimeError):
    pass


# Display symbol -> (Yahoo symbol, display name)
SYMBOL_MAP: dict[str, tuple[str, str]] = {
    "SPX": ("^GSPC", "S&P 500"),
    "IXIC": ("^IXIC", "NASDAQ"),
    "DJI": ("^DJI", "DOW"),
    "RUT": ("^RUT", "Russell 2000"),
    "BTC": ("BTC-USD", "Bitcoin"),
    "ETH": ("ETH-USD", "Ethereum"),
    "GC": ("GC=F", "Gold"),
    "CL": ("CL=F", "Crude Oil"),
}
YAHOO_TO_DISPLAY = {yahoo: display for display, (yahoo, _name) in SYMBOL_MAP.items()}
INDEX_SYMBOLS = ("SPX", "IXIC", "DJI", "RUT", "BTC", "ETH", "GC", "CL")

CHART_INTERVALS = {"1d": "5m", "5d": "15m"}
MOVERS_COUNT = 5


def yahoo_symbol(symbol: str) -> str:
    entry = SYMBOL_MAP.get(symbol)
    return entry[0] if entry else symbol


def display_symbol(yahoo: str) -> str:
    return YAHOO_TO_DISPLAY.get(yahoo, yahoo)


def symbol_name(symbol: str, fallback: str | None = None) -> str:
    entry = SYMBOL_MAP.get(symbol)
    return entry[1] if entry else (fallback or symbol)


def _num(value: Any) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(f) else f


def get_quotes(symbols: list[str]) -> list[dict]:
    """Latest price and day change for each display symbol."""
    quotes = []
    for symbol in symbols:
        try:
            info = yf.Ticker(yahoo_symbol(symbol)).fast_info
            price = _num(getattr(info, "last_price", None))
            prev_close = _num(getattr(info, "previous_close", None))
        except Exception as e:
            logger.error("Error fetching quote for %s: %s", symbol, e)
            raise MarketDataError(f"Failed to fetch quote for {symbol}") from e
        change = price - prev_close if prev_close else 0.0
        quotes.append(
            {
                "symbol": symbol,
                "name": symbol_name(symbol),
                "price": round(price, 4),
                "change": round(change, 4),
                "changePercent": round(change / prev_close * 100, 4) if prev_close else 0.0,
            }
        )
    return quotes


def get_market_indices() -> list[dict]:
    return get_quotes(list(INDEX_SYMBOLS))


def _screen(screen_id: str) -> list[dict]:
    try:
        result = yf.screen(screen_id, count=MOVERS_COUNT)
    except Exception as e:
        logger.error("Error running screener %s: %s", screen_id, e)
        raise MarketDataError(f"Failed to fetch {screen_id}") from e

    movers = []
    for q in (result or {}).get("quotes", [])[:MOVERS_COUNT]:
        symbol = q.get("symbol") or ""
        movers.append(
            {
                "symbol": symbol,
                "name": q.get("shortName") or q.get("longName") or symbol,
                "price": _num(q.get("regularMarketPrice")),
                "change": _num(q.get("regularMarketChange")),
                "changePercent": _num(q.get("regularMarketChangePercent")),
            }
        )
    return movers


def get_top_gainers() -> list[dict]:
    return _screen("day_gainers")


def get_top_losers() -> list[dict]:
    return _screen("day_losers")


def _format_time(ts, period: str) -> str:
    if period in CHART_INTERVALS:
        return ts.strftime("%I:%M %p")
    return f"{ts:%b} {ts.day}"


def get_chart_data(symbol: str, period: str = "1mo") -> list[dict]:
    """Close prices over ``period``; 5m bars for 1d, 15m for 5d, daily otherwise."""
    try:
        hist = yf.Ticker(yahoo_symbol(symbol)).history(period=period, interval=CHART_INTERVALS.get(period, "1d"))
    except Exception as e:
        logger.error("Error fetching chart data for %s: %s", symbol, e)
        raise MarketDataError(f"Failed to fetch chart data for {symbol}") from e

    if hist is None or hist.empty:
        return []

    points = []
    for ts, row in hist.iterrows():
        close = row.get("Close")
        if close is None or (isinstance(close, float) and math.isnan(close)):
            continue
        volume = row.get("Volume")
        points.append(
            {
                "time": _format_time(ts, period),
                "value": round(float(close), 4),
                "volume": int(volume) if volume is not None and not math.isnan(float(volume)) else None,
            }
        )
    return points
