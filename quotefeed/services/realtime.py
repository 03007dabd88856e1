"""
Real-time data service.
Keeps one logical "live data" connection over a stateless quote API: probes
connectivity, polls subscribed symbols on a fixed cadence, retries with
bounded exponential backoff and fans results out through the event bus.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from quotefeed.config import settings
from quotefeed.errors import (
    ConfigurationError, NetworkError, QuoteFeedError, ValidationError, is_connectivity_error
)
from quotefeed.protocols.network_status import NetworkStatusProvider
from quotefeed.protocols.quote_source import QuoteSource
from quotefeed.schemas.market import BatchQuoteResult, MarketStatus
from quotefeed.schemas.realtime import (
    BaseEvent, ConnectionSnapshot, ConnectionState, ConnectionStateChanged, EventType,
    Heartbeat, HeartbeatFailed, NetworkStateChanged, PriceUpdate, PriceUpdateCompleted,
    PriceUpdateError, PriceUpdateStarted, PriceUpdatesStarted, PriceUpdatesStopped,
    SymbolSubscribed, SymbolUnsubscribed, SyncCompleted, SyncError, SyncStarted,
)
from quotefeed.services.event_bus import EventBus, EventHandler
from quotefeed.util.async_tools import PeriodicTask, call_later, cancel_task, timeout

logger = logging.getLogger("realtime")

MAX_ATTEMPTS_MESSAGE = "Max reconnection attempts reached"


@dataclass
class RealtimeConfig:
    """Timer cadence and retry bounds, in seconds."""
    update_interval_s: float = 30.0
    heartbeat_interval_s: float = 60.0
    max_reconnect_attempts: int = 5
    reconnect_base_delay_s: float = 1.0
    reconnect_schedule_delay_s: float = 1.0
    online_reconnect_delay_s: float = 1.0
    probe_timeout_s: float = 15.0

    @classmethod
    def from_settings(cls) -> "RealtimeConfig":
        return cls(
            update_interval_s=settings.REALTIME_UPDATE_INTERVAL_S,
            heartbeat_interval_s=settings.REALTIME_HEARTBEAT_INTERVAL_S,
            max_reconnect_attempts=settings.REALTIME_MAX_RECONNECT_ATTEMPTS,
            reconnect_base_delay_s=settings.REALTIME_RECONNECT_BASE_DELAY_S,
            reconnect_schedule_delay_s=settings.REALTIME_RECONNECT_SCHEDULE_DELAY_S,
            online_reconnect_delay_s=settings.REALTIME_ONLINE_RECONNECT_DELAY_S,
            probe_timeout_s=settings.REALTIME_PROBE_TIMEOUT_S,
        )

    def backoff_delay(self, attempt: int) -> float:
        return self.reconnect_base_delay_s * (2 ** (attempt - 1))


class RealTimeDataService:
    """
    Connection/subscription manager for polled market data.

    State machine: disconnected -> connecting -> connected, with
    reconnecting entered only through the backoff path. Every timer callback
    catches its own failures and reports them as events; nothing raised
    inside a timer reaches the caller.
    """

    def __init__(
        self,
        quote_source: QuoteSource,
        network: NetworkStatusProvider,
        config: Optional[RealtimeConfig] = None,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self.quote_source = quote_source
        self.network = network
        self.config = config or RealtimeConfig.from_settings()
        self.bus = bus or EventBus()
        self._clock = clock or (lambda: int(time.time() * 1000))

        # Connection state
        self.connection_state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0

        # Subscriptions (dict keeps insertion order)
        self._subscriptions: Dict[str, None] = {}
        self.last_update_time: Optional[int] = None
        self.last_heartbeat: Optional[int] = None

        # Timers
        self._price_updates: Optional[PeriodicTask] = None
        self._heartbeat: Optional[PeriodicTask] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._destroyed = False

        # Network state
        self.is_online = network.is_online()
        self._detach_network: Optional[Callable[[], None]] = network.on_change(self._handle_network_change)

    # ------------------------------------------------------------------
    # Event bus
    # ------------------------------------------------------------------

    def on(self, event_type: Union[str, EventType], handler: EventHandler) -> Callable[[], None]:
        return self.bus.on(event_type, handler)

    def off(self, event_type: Union[str, EventType], handler: EventHandler) -> None:
        self.bus.off(event_type, handler)

    def _now(self) -> int:
        return self._clock()

    def _emit(self, event: BaseEvent) -> None:
        if self._destroyed:
            return
        self.bus.emit(event)

    def _emit_state(self, **fields) -> None:
        self._emit(ConnectionStateChanged(state=self.connection_state, timestamp=self._now(), **fields))

    def _set_state(self, state: ConnectionState) -> None:
        old_state = self.connection_state
        self.connection_state = state
        if old_state != state:
            logger.info(f"[realtime] Connection state changed: {old_state.value} -> {state.value}")

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Explicit connect; also re-arms an exhausted retry budget."""
        if self._destroyed or self.connection_state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return
        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            logger.info("[realtime] Retry budget reset by explicit connect")
            self.reconnect_attempts = 0
        await self._connect()

    async def _connect(self) -> None:
        if self._destroyed or self.connection_state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return

        self._set_state(ConnectionState.CONNECTING)
        self._emit_state()

        try:
            status = await self._probe()
            if not status:
                raise NetworkError("Connection test failed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._destroyed or self.connection_state != ConnectionState.CONNECTING:
                return
            logger.error(f"[realtime] Connection failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            self._emit_state(error=str(e))
            if isinstance(e, ConfigurationError):
                logger.error("[realtime] Not retrying: configuration error")
            else:
                self._schedule_reconnect()
            return

        # disconnect() or destroy() may have run while the probe was outstanding
        if self._destroyed or self.connection_state != ConnectionState.CONNECTING:
            return

        self._set_state(ConnectionState.CONNECTED)
        self.reconnect_attempts = 0
        self._start_heartbeat()
        self._emit_state(message="Successfully connected to market data service")

        if self._subscriptions:
            self._start_price_updates()

    def disconnect(self) -> None:
        """User-initiated disconnect; terminal until connect() is called again."""
        self._set_state(ConnectionState.DISCONNECTED)
        self._stop_price_updates()
        self._stop_heartbeat()
        self._cancel_reconnect()
        self._emit_state(message="Disconnected by user", user_initiated=True)

    async def reconnect(self) -> None:
        """One backoff step: wait base * 2^(attempt-1) then connect."""
        if self._destroyed:
            return

        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            logger.error(f"[realtime] {MAX_ATTEMPTS_MESSAGE}")
            self._set_state(ConnectionState.DISCONNECTED)
            self._emit_state(error=MAX_ATTEMPTS_MESSAGE)
            return

        self.reconnect_attempts += 1
        self._set_state(ConnectionState.RECONNECTING)
        self._emit_state(
            attempt=self.reconnect_attempts,
            max_attempts=self.config.max_reconnect_attempts
        )

        delay = self.config.backoff_delay(self.reconnect_attempts)
        logger.info(
            f"[realtime] Reconnect attempt {self.reconnect_attempts}/"
            f"{self.config.max_reconnect_attempts} in {delay:.2f}s"
        )
        await asyncio.sleep(delay)

        # An explicit connect()/disconnect() during the wait takes precedence
        if self._destroyed or self.connection_state != ConnectionState.RECONNECTING:
            return
        await self._connect()

    def _schedule_reconnect(self) -> None:
        if self._destroyed:
            return
        if not self.is_online:
            logger.info("[realtime] Offline - postponing reconnection")
            return
        pending = self._reconnect_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            return

        async def _fire():
            if self.connection_state == ConnectionState.DISCONNECTED:
                await self.reconnect()

        self._reconnect_task = self._spawn_later(
            self.config.reconnect_schedule_delay_s, _fire, "realtime_reconnect"
        )

    def _cancel_reconnect(self) -> None:
        cancel_task(self._reconnect_task)
        self._reconnect_task = None

    def _spawn_later(self, delay: float, func: Callable[[], Awaitable[None]], name: str) -> Optional[asyncio.Task]:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[realtime] No running event loop, cannot schedule {name}")
            return None
        return call_later(delay, func, name=name)

    def _degrade(self, error: str) -> None:
        """Connected -> disconnected after a failed heartbeat or fetch."""
        if self.connection_state != ConnectionState.CONNECTED:
            return
        self._set_state(ConnectionState.DISCONNECTED)
        self._stop_heartbeat()
        self._emit_state(error=error)
        self._schedule_reconnect()

    async def _probe(self):
        return await timeout(self.quote_source.get_market_status(), self.config.probe_timeout_s)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize(symbol: str) -> str:
        normalized = (symbol or "").strip().upper()
        if not normalized:
            raise ValidationError("Symbol is required")
        return normalized

    def subscribe(self, symbol: str) -> bool:
        """Add a symbol; returns False when it was already subscribed."""
        normalized = self._normalize(symbol)
        if normalized in self._subscriptions:
            return False

        self._subscriptions[normalized] = None
        self._emit(SymbolSubscribed(
            symbol=normalized,
            total_subscriptions=len(self._subscriptions),
            timestamp=self._now()
        ))

        if self.connection_state == ConnectionState.CONNECTED and not self.price_updates_running:
            self._start_price_updates()

        logger.info(f"[realtime] Subscribed to {normalized}. Total subscriptions: {len(self._subscriptions)}")
        return True

    def unsubscribe(self, symbol: str) -> bool:
        """Remove a symbol; returns False when it was not subscribed."""
        normalized = self._normalize(symbol)
        if normalized not in self._subscriptions:
            return False

        del self._subscriptions[normalized]
        self._emit(SymbolUnsubscribed(
            symbol=normalized,
            total_subscriptions=len(self._subscriptions),
            timestamp=self._now()
        ))

        if not self._subscriptions:
            self._stop_price_updates()

        logger.info(f"[realtime] Unsubscribed from {normalized}. Total subscriptions: {len(self._subscriptions)}")
        return True

    def get_subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    # ------------------------------------------------------------------
    # Price updates
    # ------------------------------------------------------------------

    @property
    def price_updates_running(self) -> bool:
        return self._price_updates is not None and self._price_updates.running

    def _start_price_updates(self) -> None:
        if self.price_updates_running or not self._subscriptions:
            return

        logger.info(f"[realtime] Starting price updates for {len(self._subscriptions)} symbols")
        self._emit(PriceUpdatesStarted(
            symbols=self.get_subscriptions(),
            interval_ms=int(self.config.update_interval_s * 1000),
            timestamp=self._now()
        ))
        self._price_updates = PeriodicTask(
            self._update_prices,
            self.config.update_interval_s,
            name="realtime_price_updates",
            run_immediately=True
        )
        self._price_updates.start()

    def _stop_price_updates(self) -> None:
        if self._price_updates is None:
            return
        self._price_updates.stop()
        self._price_updates = None
        self._emit(PriceUpdatesStopped(timestamp=self._now()))
        logger.info("[realtime] Price updates stopped")

    async def _update_prices(self) -> None:
        """One refresh cycle."""
        if not self.is_online:
            logger.debug("[realtime] Offline - skipping price update")
            return
        if self.connection_state != ConnectionState.CONNECTED:
            logger.debug("[realtime] Not connected - skipping price update")
            return
        if not self._subscriptions:
            return

        try:
            self._emit(PriceUpdateStarted(timestamp=self._now()))

            quotes = await self.quote_source.get_multiple_quotes(self.get_subscriptions())
            if self._destroyed:
                return

            succeeded = quotes.succeeded
            if not quotes.success and not succeeded:
                raise QuoteFeedError(quotes.error or "Unknown price update error", "PRICE_UPDATE_ERROR")

            self.last_update_time = self._now()
            for symbol, quote in succeeded.items():
                self._emit(PriceUpdate(symbol=symbol, data=quote, timestamp=self.last_update_time))

            self._emit(PriceUpdateCompleted(
                quotes=quotes.data,
                symbols_updated=len(quotes.data),
                error=quotes.error,
                timestamp=self.last_update_time
            ))
            if quotes.error:
                logger.warning(f"[realtime] Partial price update: {quotes.error}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._destroyed:
                return
            logger.error(f"[realtime] Price update error: {e}")
            self._emit(PriceUpdateError(error=str(e), timestamp=self._now()))

            if is_connectivity_error(e):
                self._degrade(str(e))

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat = PeriodicTask(
            self._heartbeat_tick,
            self.config.heartbeat_interval_s,
            name="realtime_heartbeat",
            run_immediately=False
        )
        self._heartbeat.start()

    def _stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None

    async def _heartbeat_tick(self) -> None:
        try:
            status = await self._probe()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._destroyed:
                return
            logger.error(f"[realtime] Heartbeat failed: {e}")
            self._emit(HeartbeatFailed(error=str(e), timestamp=self._now()))
            self._degrade(str(e))
            return

        if self._destroyed:
            return
        self.last_heartbeat = self._now()
        self._emit(Heartbeat(
            market_status=status if isinstance(status, MarketStatus) else None,
            timestamp=self.last_heartbeat
        ))

    # ------------------------------------------------------------------
    # Network state
    # ------------------------------------------------------------------

    def _handle_network_change(self, online: bool) -> None:
        if self._destroyed or online == self.is_online:
            return

        self.is_online = online
        self._emit(NetworkStateChanged(is_online=online, timestamp=self._now()))

        if online:
            logger.info("[realtime] Network connection restored")
            if self.connection_state == ConnectionState.DISCONNECTED:
                self.reconnect_attempts = 0
                self._cancel_reconnect()
                self._reconnect_task = self._spawn_later(
                    self.config.online_reconnect_delay_s, self._connect_if_disconnected, "realtime_online_connect"
                )
        else:
            logger.info("[realtime] Network connection lost")
            self._stop_price_updates()
            if self.connection_state == ConnectionState.CONNECTED:
                self._set_state(ConnectionState.DISCONNECTED)
                self._stop_heartbeat()
                self._emit_state(error="Network offline")

    async def _connect_if_disconnected(self) -> None:
        if self.connection_state == ConnectionState.DISCONNECTED:
            await self._connect()

    # ------------------------------------------------------------------
    # Queries and sync
    # ------------------------------------------------------------------

    def get_connection_state(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(
            state=self.connection_state,
            is_online=self.is_online,
            subscribed_symbols=self.get_subscriptions(),
            last_update_time=self.last_update_time,
            last_heartbeat=self.last_heartbeat,
            reconnect_attempts=self.reconnect_attempts
        )

    async def sync_data(self) -> BatchQuoteResult:
        """Forced refresh outside the timer cadence; fails fast when not live."""
        if self.connection_state != ConnectionState.CONNECTED or not self.is_online:
            return BatchQuoteResult(success=False, error="Not connected or offline")

        try:
            self._emit(SyncStarted(timestamp=self._now()))

            if not self._subscriptions:
                return BatchQuoteResult(success=True, data={}, message="No symbols to sync")

            quotes = await self.quote_source.get_multiple_quotes(self.get_subscriptions())
            if quotes.succeeded:
                self.last_update_time = self._now()
            self._emit(SyncCompleted(quotes=quotes.data, success=quotes.success, timestamp=self._now()))
            return quotes
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[realtime] Sync failed: {e}")
            self._emit(SyncError(error=str(e), timestamp=self._now()))
            return BatchQuoteResult(success=False, error=str(e))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Stop every timer, drop listeners, detach from network signals. Idempotent."""
        if self._destroyed:
            return
        self.disconnect()
        self._destroyed = True
        self._cancel_reconnect()
        self.bus.clear()
        if self._detach_network is not None:
            self._detach_network()
            self._detach_network = None
        logger.info("[realtime] Service destroyed")

    async def aclose(self) -> None:
        """destroy() and wait for cancelled timer tasks to unwind."""
        tasks = [
            task for task in (
                self._price_updates.task if self._price_updates else None,
                self._heartbeat.task if self._heartbeat else None,
                self._reconnect_task,
            )
            if task is not None and task is not asyncio.current_task()
        ]
        self.destroy()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
