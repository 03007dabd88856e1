"""
Real-time feed schemas: connection state, snapshots and the typed event union.

Every event carries a ``type`` discriminator (the wire event name) and an
epoch-millisecond ``timestamp``.
"""

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from quotefeed.schemas.market import CamelModel, MarketStatus, Quote, SymbolQuoteResult


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class EventType(str, Enum):
    CONNECTION_STATE_CHANGED = "connectionStateChanged"
    NETWORK_STATE_CHANGED = "networkStateChanged"
    SYMBOL_SUBSCRIBED = "symbolSubscribed"
    SYMBOL_UNSUBSCRIBED = "symbolUnsubscribed"
    PRICE_UPDATES_STARTED = "priceUpdatesStarted"
    PRICE_UPDATES_STOPPED = "priceUpdatesStopped"
    PRICE_UPDATE_STARTED = "priceUpdateStarted"
    PRICE_UPDATE = "priceUpdate"
    PRICE_UPDATE_COMPLETED = "priceUpdateCompleted"
    PRICE_UPDATE_ERROR = "priceUpdateError"
    HEARTBEAT = "heartbeat"
    HEARTBEAT_FAILED = "heartbeatFailed"
    SYNC_STARTED = "syncStarted"
    SYNC_COMPLETED = "syncCompleted"
    SYNC_ERROR = "syncError"


class ConnectionSnapshot(CamelModel):
    """Read-only view of the manager state."""
    state: ConnectionState
    is_online: bool
    subscribed_symbols: List[str]
    last_update_time: Optional[int] = None     # ms epoch
    last_heartbeat: Optional[int] = None       # ms epoch
    reconnect_attempts: int = 0


class BaseEvent(CamelModel):
    timestamp: int                              # ms epoch


class ConnectionStateChanged(BaseEvent):
    type: Literal["connectionStateChanged"] = "connectionStateChanged"
    state: ConnectionState
    message: Optional[str] = None
    error: Optional[str] = None
    attempt: Optional[int] = None
    max_attempts: Optional[int] = None
    user_initiated: bool = False


class NetworkStateChanged(BaseEvent):
    type: Literal["networkStateChanged"] = "networkStateChanged"
    is_online: bool


class SymbolSubscribed(BaseEvent):
    type: Literal["symbolSubscribed"] = "symbolSubscribed"
    symbol: str
    total_subscriptions: int


class SymbolUnsubscribed(BaseEvent):
    type: Literal["symbolUnsubscribed"] = "symbolUnsubscribed"
    symbol: str
    total_subscriptions: int


class PriceUpdatesStarted(BaseEvent):
    type: Literal["priceUpdatesStarted"] = "priceUpdatesStarted"
    symbols: List[str]
    interval_ms: int


class PriceUpdatesStopped(BaseEvent):
    type: Literal["priceUpdatesStopped"] = "priceUpdatesStopped"


class PriceUpdateStarted(BaseEvent):
    type: Literal["priceUpdateStarted"] = "priceUpdateStarted"


class PriceUpdate(BaseEvent):
    type: Literal["priceUpdate"] = "priceUpdate"
    symbol: str
    data: Quote


class PriceUpdateCompleted(BaseEvent):
    type: Literal["priceUpdateCompleted"] = "priceUpdateCompleted"
    quotes: Dict[str, SymbolQuoteResult]
    symbols_updated: int
    error: Optional[str] = None


class PriceUpdateError(BaseEvent):
    type: Literal["priceUpdateError"] = "priceUpdateError"
    error: str


class Heartbeat(BaseEvent):
    type: Literal["heartbeat"] = "heartbeat"
    market_status: Optional[MarketStatus] = None


class HeartbeatFailed(BaseEvent):
    type: Literal["heartbeatFailed"] = "heartbeatFailed"
    error: str


class SyncStarted(BaseEvent):
    type: Literal["syncStarted"] = "syncStarted"


class SyncCompleted(BaseEvent):
    type: Literal["syncCompleted"] = "syncCompleted"
    quotes: Dict[str, SymbolQuoteResult]
    success: bool


class SyncError(BaseEvent):
    type: Literal["syncError"] = "syncError"
    error: str


RealtimeEvent = Annotated[
    Union[
        ConnectionStateChanged,
        NetworkStateChanged,
        SymbolSubscribed,
        SymbolUnsubscribed,
        PriceUpdatesStarted,
        PriceUpdatesStopped,
        PriceUpdateStarted,
        PriceUpdate,
        PriceUpdateCompleted,
        PriceUpdateError,
        Heartbeat,
        HeartbeatFailed,
        SyncStarted,
        SyncCompleted,
        SyncError,
    ],
    Field(discriminator="type"),
]

event_adapter: TypeAdapter = TypeAdapter(RealtimeEvent)


def event_to_wire(event: BaseEvent) -> dict:
    """JSON-ready camelCase payload for browser clients."""
    return event.model_dump(mode="json", by_alias=True)


def event_from_wire(payload: dict) -> BaseEvent:
    """Parse a wire payload back into its typed event."""
    return event_adapter.validate_python(payload)
