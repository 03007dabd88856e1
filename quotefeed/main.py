"""
TSX Quote Feed - FastAPI Backend

Polled real-time market data for TSX symbols: connection management,
subscriptions, a watchlist, and a WebSocket event stream.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quotefeed import __version__
from quotefeed.config import settings
from quotefeed.context import AppContext
from quotefeed.middleware.error_handler import register_error_handlers
from quotefeed.observability.logs import configure_logging, setup_log_rotation
from quotefeed.routes_market import router as market_router, watchlist_router
from quotefeed.routes_realtime import router as realtime_router

logger = logging.getLogger(__name__)


def create_app(context: Optional[AppContext] = None, *, log_to_file: bool = True) -> FastAPI:
    """
    Build the app. A prepared context replaces the one built from settings
    at startup (tests pass one wired to fakes).
    """
    app = FastAPI(title="TSX Quote Feed", version=__version__)

    register_error_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(realtime_router)
    app.include_router(market_router)
    app.include_router(watchlist_router)

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup."""
        if log_to_file:
            setup_log_rotation()

        if not settings.api_key_configured and context is None:
            logger.warning("ALPHA_VANTAGE_API_KEY not set; quote requests will fail until it is configured")

        ctx = context or AppContext.from_settings()
        app.state.context = ctx
        await ctx.init()
        logger.info(
            f"[startup] realtime service ready, subscriptions={ctx.realtime.get_subscriptions()} "
            f"autoconnect={ctx.autoconnect}"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup services on shutdown."""
        ctx: Optional[AppContext] = getattr(app.state, "context", None)
        if ctx is None:
            return
        try:
            await ctx.dispose()
            logger.info("[shutdown] services stopped")
        except Exception as e:
            logger.error(f"Error stopping services: {e}")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        ctx: AppContext = app.state.context
        snapshot = ctx.realtime.get_connection_state()
        return {
            "status": "ok",
            "version": __version__,
            "connection": snapshot.state.value,
            "online": snapshot.is_online,
            "subscriptions": len(snapshot.subscribed_symbols),
            "api_key_configured": settings.api_key_configured,
        }

    return app


configure_logging()
app = create_app()
