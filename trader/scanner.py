"""
Market scanner for fetching active markets from Polymarket.

This module handles the retrieval and normalization of market data from the
Polymarket Gamma API into MarketSnapshot objects. It performs no trading
logic - only data fetching and transformation.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from trader.config import Config
from trader.models import MarketSnapshot
from trader.utils import safe_float

# Configure module logger
logger = logging.getLogger(__name__)

_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "PredictionMarketTrader/1.0",
}


def fetch_markets(limit: Optional[int] = None, now: Optional[datetime] = None) -> list[MarketSnapshot]:
    """
    Fetch active markets from the Polymarket Gamma API.

    Handles API failures gracefully and returns an empty list on error.

    Args:
        limit: Maximum number of markets to fetch. If None, uses Config.MARKETS_TO_DISCOVER.
        now: Reference time for time-to-close (default: current UTC time)

    Returns:
        List of MarketSnapshot objects. Empty on API failure.
    """
    if limit is None:
        limit = Config.MARKETS_TO_DISCOVER

    url = f"{Config.POLYMARKET_GAMMA_URL}/markets"
    params = {
        "limit": limit,
        "active": "true",
        "closed": "false",
        "accepting_orders": "true",
        "order": "volume24hr",
        "ascending": "false",
    }

    logger.info(f"Fetching up to {limit} active markets from Polymarket")
    data = _get_json(url, params=params)
    if data is None:
        return []

    if not isinstance(data, list):
        logger.warning(f"Expected list of markets, got {type(data)}")
        return []

    snapshots = _normalize_markets(data, now)
    logger.info(f"Normalized {len(snapshots)} of {len(data)} markets")
    return snapshots


def fetch_market(market_id: str, now: Optional[datetime] = None) -> Optional[MarketSnapshot]:
    """
    Fetch a single market by ID.

    Args:
        market_id: Polymarket market identifier
        now: Reference time for time-to-close

    Returns:
        MarketSnapshot, or None if the market could not be fetched or parsed
    """
    url = f"{Config.POLYMARKET_GAMMA_URL}/markets/{market_id}"
    data = _get_json(url)
    if not isinstance(data, dict):
        return None
    return parse_market(data, now)


def _get_json(url: str, params: Optional[dict] = None) -> Optional[Any]:
    try:
        logger.debug(f"Requesting {url} with params: {params}")
        response = requests.get(url, params=params, headers=_HEADERS, timeout=Config.API_TIMEOUT)
        response.raise_for_status()
        return response.json()

    except Timeout:
        logger.error(f"Request to Polymarket API timed out after {Config.API_TIMEOUT}s")
        return None

    except ConnectionError as e:
        logger.error(f"Connection error while calling Polymarket API: {e}")
        return None

    except RequestException as e:
        logger.error(f"Polymarket API request failed: {e}")
        if getattr(e, "response", None) is not None:
            logger.error(f"Response status: {e.response.status_code}")
            logger.error(f"Response body: {e.response.text[:500]}")
        return None

    except ValueError as e:
        logger.error(f"Failed to parse JSON response: {e}")
        return None


def _normalize_markets(api_data: list[dict], now: Optional[datetime]) -> list[MarketSnapshot]:
    snapshots: list[MarketSnapshot] = []
    for idx, market_data in enumerate(api_data):
        snapshot = parse_market(market_data, now)
        if snapshot is None:
            logger.debug(f"Skipping unparseable market at index {idx}")
            continue
        snapshots.append(snapshot)
    return snapshots


def parse_market(data: dict, now: Optional[datetime] = None) -> Optional[MarketSnapshot]:
    """
    Parse a Gamma API market object into a MarketSnapshot.

    Gamma encodes `outcomes` and `outcomePrices` as JSON strings; numeric
    fields may be strings or numbers.

    Args:
        data: Market dictionary from the API
        now: Reference time for time-to-close (default: current UTC time)

    Returns:
        MarketSnapshot, or None if the entry has no ID or unusable outcomes
    """
    if not isinstance(data, dict):
        return None

    market_id = data.get("id")
    if not market_id:
        logger.debug("Market missing 'id' field, skipping")
        return None

    outcomes = [str(o) for o in _parse_list(data.get("outcomes"))]
    prices = [safe_float(p, 0.0) for p in _parse_list(data.get("outcomePrices"))]
    if not outcomes:
        outcomes = ["Yes", "No"]
    if prices and len(prices) != len(outcomes):
        logger.debug(f"Market {market_id}: {len(outcomes)} outcomes but {len(prices)} prices")
        return None

    now = now or datetime.now(timezone.utc)
    end_date = parse_end_date(data.get("endDate") or data.get("end_date"))
    time_to_close = end_date - now if end_date else None

    liquidity = safe_float(data.get("liquidityNum"), -1.0)
    if liquidity < 0:
        liquidity = safe_float(data.get("liquidity"), 0.0) or (
            safe_float(data.get("liquidityClob")) + safe_float(data.get("liquidityAmm"))
        )

    volume_24h = safe_float(data.get("volume24hr"), -1.0)
    if volume_24h < 0:
        volume_24h = safe_float(data.get("volume24hrClob")) + safe_float(data.get("volume24hrAmm"))

    order_book = data.get("enableOrderBook")
    accepting = data.get("acceptingOrders")

    return MarketSnapshot(
        id=str(market_id),
        question=data.get("question") or data.get("title") or "",
        price=_extract_price(outcomes, prices),
        liquidity=liquidity,
        volume_24h=volume_24h,
        time_to_close=time_to_close,
        spread=safe_float(data.get("spread"), 0.0),
        outcomes=tuple(outcomes),
        outcome_prices=tuple(prices),
        description=data.get("description") or "",
        order_book_enabled=bool(order_book if order_book is not None else accepting),
        active=bool(data.get("active", True)) and not bool(data.get("closed", False)),
        category=data.get("category") or "",
        end_date=end_date,
        total_volume=safe_float(data.get("volumeNum"), 0.0) or safe_float(data.get("volume"), 0.0),
    )


def _parse_list(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _extract_price(outcomes: list[str], prices: list[float]) -> float:
    """
    Implied price of the Yes outcome, or the leading outcome for
    multi-outcome markets. Defaults to 0.5 without price data.
    """
    if not prices:
        return 0.5

    lowered = [o.strip().lower() for o in outcomes]
    if "yes" in lowered:
        return prices[lowered.index("yes")]
    return max(prices)


def parse_end_date(date_str: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 end date into a timezone-aware UTC datetime.

    Returns:
        Datetime, or None if the string is missing or unparseable
    """
    if not date_str:
        return None

    try:
        parsed = datetime.fromisoformat(str(date_str).replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
            try:
                parsed = datetime.strptime(str(date_str), fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        logger.debug(f"Could not parse end_date: {date_str}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
