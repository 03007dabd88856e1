"""
Application context: the one set of long-lived services the app owns.
"""

import asyncio
import logging
from typing import Optional, Union

from quotefeed.config import settings
from quotefeed.services.market_data import MarketDataService
from quotefeed.services.network_status import ManualNetworkStatus, ProbeNetworkStatus
from quotefeed.services.realtime import RealTimeDataService, RealtimeConfig
from quotefeed.services.stock_api import StockApiClient
from quotefeed.services.watchlist import LocalStore, Watchlist

logger = logging.getLogger(__name__)


class AppContext:
    """Owns the market data client, watchlist, network provider and manager."""

    def __init__(
        self,
        market_data: MarketDataService,
        watchlist: Watchlist,
        network: Union[ManualNetworkStatus, ProbeNetworkStatus],
        realtime: RealTimeDataService,
        *,
        autoconnect: bool = True,
        subscribe_watchlist: bool = True
    ):
        self.market_data = market_data
        self.watchlist = watchlist
        self.network = network
        self.realtime = realtime
        self.autoconnect = autoconnect
        self.subscribe_watchlist = subscribe_watchlist
        self._connect_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls) -> "AppContext":
        api = StockApiClient()
        market_data = MarketDataService(api)
        watchlist = Watchlist(LocalStore(settings.WATCHLIST_PATH))

        if settings.NETWORK_PROBE_ENABLED:
            network = ProbeNetworkStatus(
                settings.NETWORK_PROBE_URL,
                settings.NETWORK_PROBE_INTERVAL_S,
                timeout_s=settings.API_TIMEOUT_S
            )
        else:
            network = ManualNetworkStatus()

        realtime = RealTimeDataService(market_data, network, RealtimeConfig.from_settings())
        return cls(
            market_data,
            watchlist,
            network,
            realtime,
            autoconnect=settings.REALTIME_AUTOCONNECT,
            subscribe_watchlist=settings.REALTIME_SUBSCRIBE_WATCHLIST
        )

    async def init(self) -> None:
        """Start the network probe, restore subscriptions, kick off the first connect."""
        if isinstance(self.network, ProbeNetworkStatus):
            await self.network.start()

        if self.subscribe_watchlist:
            for symbol in self.watchlist.symbols:
                self.realtime.subscribe(symbol)
            logger.info(f"[context] Restored {len(self.watchlist)} watchlist subscriptions")

        if self.autoconnect:
            # The first probe can take seconds; don't hold up startup for it
            self._connect_task = asyncio.create_task(self.realtime.connect(), name="realtime_initial_connect")

    async def dispose(self) -> None:
        """Tear everything down in reverse order of init()."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)
        self._connect_task = None

        await self.realtime.aclose()
        if isinstance(self.network, ProbeNetworkStatus):
            await self.network.stop()
        await self.market_data.aclose()
        logger.info("[context] Disposed")
