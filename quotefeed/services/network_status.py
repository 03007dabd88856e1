"""
Network status providers.
Replace browser online/offline events with an injectable capability.
"""

import asyncio
import logging
from typing import Callable, List, Optional

import httpx

from quotefeed.protocols.network_status import NetworkChangeHandler

logger = logging.getLogger("network_status")


class ManualNetworkStatus:
    """Online flag driven by the caller; handlers fire only on real changes."""

    def __init__(self, online: bool = True):
        self._online = online
        self._handlers: List[NetworkChangeHandler] = []

    def is_online(self) -> bool:
        return self._online

    def on_change(self, handler: NetworkChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _detach() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _detach

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info(f"[network_status] Network connection {'restored' if online else 'lost'}")
        for handler in list(self._handlers):
            try:
                handler(online)
            except Exception as e:
                logger.error(f"[network_status] Change handler failed: {e}", exc_info=True)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)


class ProbeNetworkStatus(ManualNetworkStatus):
    """Online flag maintained by a periodic HTTP reachability check."""

    def __init__(
        self,
        url: str,
        interval_s: float = 15.0,
        *,
        timeout_s: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        online: bool = True
    ):
        super().__init__(online=online)
        self.url = url
        self.interval_s = interval_s
        self.timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None
        self._task: Optional[asyncio.Task] = None
        self.running = False
        self.checks = 0

    async def start(self) -> None:
        """Start the probe loop."""
        if self.running:
            return
        self.running = True
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        self._task = asyncio.create_task(self._probe_loop(), name="network_probe")
        logger.info(f"[network_status] Probing {self.url} every {self.interval_s}s")

    async def stop(self) -> None:
        """Stop the probe loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("[network_status] Probe stopped")

    async def check(self) -> bool:
        """One reachability check; any HTTP response counts as online."""
        self.checks += 1
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        try:
            await self._client.head(self.url)
            reachable = True
        except httpx.HTTPError as e:
            logger.debug(f"[network_status] Probe failed: {e}")
            reachable = False
        except httpx.InvalidURL as e:
            logger.error(f"[network_status] Invalid probe URL {self.url!r}: {e}")
            reachable = False
        self.set_online(reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while self.running:
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[network_status] Reachability check error: {e}", exc_info=True)
            await asyncio.sleep(self.interval_s)
