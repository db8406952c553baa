from __future__ import annotations

import threading
import time
from typing import Any

from flask import Blueprint, current_app, jsonify, request

from app.fiscalwire.modules.market import client as market
from app.fiscalwire.rate_limit import rate_limited
from app.fiscalwire.validations import (
    ValidationFailed,
    normalize_chart_period,
    parse_quote_symbols,
    validation_error_response,
)

bp = Blueprint("market", __name__)

NO_CACHE = "no-cache, no-store, must-revalidate"
MOVERS_CACHE_TTL = 60  # seconds

_MOVERS_CACHE: dict[str, tuple[float, Any]] = {}
_MOVERS_CACHE_LOCK = threading.Lock()
_LAST_KNOWN_GOOD: dict[str, Any] = {}

# Served when Yahoo is unreachable and nothing has been fetched yet.
STATIC_FALLBACK_GAINERS = [
    {"symbol": "NVDA", "name": "NVIDIA Corporation", "price": 140.50, "change": 5.25, "changePercent": 3.88},
    {"symbol": "TSLA", "name": "Tesla, Inc.", "price": 425.00, "change": 12.50, "changePercent": 3.03},
    {"symbol": "AMD", "name": "Advanced Micro Devices", "price": 125.75, "change": 3.25, "changePercent": 2.65},
    {"symbol": "META", "name": "Meta Platforms, Inc.", "price": 605.00, "change": 14.50, "changePercent": 2.46},
    {"symbol": "AAPL", "name": "Apple Inc.", "price": 248.50, "change": 4.75, "changePercent": 1.95},
]
STATIC_FALLBACK_LOSERS = [
    {"symbol": "INTC", "name": "Intel Corporation", "price": 20.25, "change": -0.85, "changePercent": -4.03},
    {"symbol": "BA", "name": "The Boeing Company", "price": 175.50, "change": -5.25, "changePercent": -2.90},
    {"symbol": "DIS", "name": "The Walt Disney Company", "price": 112.75, "change": -2.50, "changePercent": -2.17},
    {"symbol": "NKE", "name": "NIKE, Inc.", "price": 76.25, "change": -1.45, "changePercent": -1.87},
    {"symbol": "PFE", "name": "Pfizer Inc.", "price": 26.50, "change": -0.45, "changePercent": -1.67},
]


def clear_cache() -> None:
    with _MOVERS_CACHE_LOCK:
        _MOVERS_CACHE.clear()
        _LAST_KNOWN_GOOD.clear()


def _cache_get(key: str) -> Any | None:
    with _MOVERS_CACHE_LOCK:
        entry = _MOVERS_CACHE.get(key)
    if entry and time.time() - entry[0] < MOVERS_CACHE_TTL:
        return entry[1]
    return None


def _cache_set(key: str, data: Any) -> None:
    with _MOVERS_CACHE_LOCK:
        _MOVERS_CACHE[key] = (time.time(), data)
        if key in ("gainers", "losers"):
            _LAST_KNOWN_GOOD[key] = data


def _respond(data: Any, cache_state: str | None = None, status: int = 200):
    resp = jsonify(data)
    resp.status_code = status
    resp.headers["Cache-Control"] = NO_CACHE
    if cache_state:
        resp.headers["X-Cache"] = cache_state
    return resp


@bp.get("/quotes")
@rate_limited("market")
def quotes():
    raw = (request.args.get("symbols") or "").strip()
    try:
        if raw:
            data = market.get_quotes(parse_quote_symbols(raw))
        else:
            data = market.get_market_indices()
    except ValidationFailed as e:
        return validation_error_response(e.details)
    except market.MarketDataError:
        current_app.logger.exception("Error in /api/market/quotes")
        return jsonify({"error": "Failed to fetch quotes"}), 500
    return _respond({"quotes": data})


@bp.get("/chart")
@rate_limited("market")
def chart():
    symbol = (request.args.get("symbol") or "").strip().upper()
    if not symbol:
        return jsonify({"error": "Symbol parameter is required"}), 400
    period = normalize_chart_period(request.args.get("period"))
    try:
        data = market.get_chart_data(symbol, period)
    except market.MarketDataError:
        current_app.logger.exception("Error in /api/market/chart")
        return jsonify({"error": "Failed to fetch chart data"}), 500
    return _respond({"symbol": symbol, "period": period, "data": data})


def _fetch_movers(kind: str | None) -> Any:
    if kind == "gainers":
        data = market.get_top_gainers()
        _cache_set("gainers", data)
        return data
    if kind == "losers":
        data = market.get_top_losers()
        _cache_set("losers", data)
        return data
    gainers, losers = market.get_top_gainers(), market.get_top_losers()
    _cache_set("gainers", gainers)
    _cache_set("losers", losers)
    data = {"gainers": gainers, "losers": losers}
    _cache_set("all", data)
    return data


@bp.get("/movers")
@rate_limited("market")
def movers():
    kind = request.args.get("type")
    if kind not in ("gainers", "losers"):
        kind = None
    key = kind or "all"

    cached = _cache_get(key)
    if cached is not None:
        return _respond(cached, "HIT")

    try:
        return _respond(_fetch_movers(kind), "MISS")
    except market.MarketDataError:
        current_app.logger.exception("Error in /api/market/movers")

    with _MOVERS_CACHE_LOCK:
        stale = dict(_LAST_KNOWN_GOOD)
    fallback = {"gainers": STATIC_FALLBACK_GAINERS, "losers": STATIC_FALLBACK_LOSERS}
    if stale:
        current_app.logger.info("Returning last known good movers data")
        if kind:
            if kind in stale:
                return _respond(stale[kind], "STALE")
        else:
            # A side that never loaded comes from the static list so both keys are present.
            return _respond({side: stale.get(side, fallback[side]) for side in ("gainers", "losers")}, "STALE")

    current_app.logger.info("Returning static fallback movers data")
    return _respond(fallback[kind] if kind else fallback, "STATIC-FALLBACK")
