"""
Market data and watchlist endpoints.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from quotefeed.context import AppContext
from quotefeed.errors import ValidationError, error_from_message
from quotefeed.routes_realtime import get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/market", tags=["market"])
watchlist_router = APIRouter(prefix="/watchlist", tags=["watchlist"])


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/search")
async def search(q: str = Query("", max_length=64), ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Symbol search restricted to Canadian listings."""
    result = await ctx.market_data.search_stocks(q)
    if not result.success:
        raise error_from_message(result.error)
    return _dump(result)


@router.get("/quote/{symbol}")
async def quote(symbol: str, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    result = await ctx.market_data.get_stock_quote(symbol)
    if not result.success:
        logger.warning(f"Quote lookup failed for {symbol}: {result.error}")
        raise error_from_message(result.error)
    return _dump(result)


@router.get("/chart/{symbol}")
async def chart(
    symbol: str,
    period: str = Query("1D"),
    interval: str = Query("5min"),
    ctx: AppContext = Depends(get_context)
) -> Dict[str, Any]:
    """
    OHLCV bars for a symbol.

    Args:
        period: 1D (intraday) or 5D/1M/3M/6M/1Y/MAX (daily bars)
        interval: intraday bar size, only used for 1D
    """
    result = await ctx.market_data.get_chart_data(symbol, period.upper(), interval)
    if not result.success:
        raise error_from_message(result.error)
    return _dump(result)


@router.get("/status")
async def market_status(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Provider probe plus TSX session status."""
    status = await ctx.market_data.get_market_status(fresh=False)
    return _dump(status)


@router.get("/popular")
async def popular(ctx: AppContext = Depends(get_context)) -> List[Dict[str, Any]]:
    return [_dump(stock) for stock in ctx.market_data.get_popular_stocks()]


@watchlist_router.get("")
async def get_watchlist(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    return {"symbols": ctx.watchlist.symbols, "count": len(ctx.watchlist)}


@watchlist_router.post("/{symbol}")
async def add_to_watchlist(symbol: str, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Save a symbol and start tracking it live."""
    normalized = symbol.strip().upper()
    if not normalized:
        raise ValidationError("Symbol is required")

    added = ctx.watchlist.add(normalized)
    ctx.realtime.subscribe(normalized)
    if added:
        logger.info(f"Added {normalized} to watchlist")
    return {"symbol": normalized, "added": added, "symbols": ctx.watchlist.symbols}


@watchlist_router.delete("/{symbol}")
async def remove_from_watchlist(symbol: str, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    normalized = symbol.strip().upper()
    if not normalized:
        raise ValidationError("Symbol is required")

    removed = ctx.watchlist.remove(normalized)
    ctx.realtime.unsubscribe(normalized)
    if removed:
        logger.info(f"Removed {normalized} from watchlist")
    return {"symbol": normalized, "removed": removed, "symbols": ctx.watchlist.symbols}
