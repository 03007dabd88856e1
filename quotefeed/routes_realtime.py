"""
Real-time connection endpoints.
HTTP control over the connection manager plus a WebSocket event stream.
"""

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from quotefeed.context import AppContext
from quotefeed.errors import NotConnectedError, error_from_message
from quotefeed.schemas.realtime import BaseEvent, event_to_wire

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])

# Events buffered per WebSocket client before new ones are dropped
EVENT_QUEUE_SIZE = 1000


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _state(ctx: AppContext) -> Dict[str, Any]:
    return ctx.realtime.get_connection_state().model_dump(mode="json", by_alias=True)


@router.get("/state")
async def get_state(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Connection snapshot: state, online flag, subscriptions and timestamps."""
    return _state(ctx)


@router.get("/subscriptions")
async def get_subscriptions(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    symbols = ctx.realtime.get_subscriptions()
    return {"symbols": symbols, "count": len(symbols)}


@router.post("/connect")
async def connect(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Run one connection attempt and report the resulting state."""
    await ctx.realtime.connect()
    logger.info(f"Connect requested, state={ctx.realtime.connection_state.value}")
    return _state(ctx)


@router.post("/disconnect")
async def disconnect(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    ctx.realtime.disconnect()
    return _state(ctx)


@router.post("/sync")
async def sync(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    """Force a refresh of every subscribed symbol."""
    result = await ctx.realtime.sync_data()
    if not result.success and not result.data:
        if result.error == NotConnectedError().message:
            raise NotConnectedError(result.error)
        raise error_from_message(result.error)
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/subscriptions/{symbol}")
async def subscribe(symbol: str, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    changed = ctx.realtime.subscribe(symbol)
    return {
        "symbol": symbol.strip().upper(),
        "subscribed": changed,
        "subscriptions": ctx.realtime.get_subscriptions()
    }


@router.delete("/subscriptions/{symbol}")
async def unsubscribe(symbol: str, ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
    changed = ctx.realtime.unsubscribe(symbol)
    return {
        "symbol": symbol.strip().upper(),
        "unsubscribed": changed,
        "subscriptions": ctx.realtime.get_subscriptions()
    }


@router.websocket("/events")
async def events(websocket: WebSocket):
    """Stream every manager event to the client as camelCase JSON."""
    ctx: AppContext = websocket.app.state.context
    queue: "asyncio.Queue[BaseEvent]" = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def _enqueue(event: BaseEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping {event.type}")

    await websocket.accept()
    unsubscribe_events = ctx.realtime.bus.on_any(_enqueue)
    logger.info("Realtime event stream opened")

    async def _pump() -> None:
        await websocket.send_json({"type": "snapshot", **_state(ctx)})
        while True:
            event = await queue.get()
            await websocket.send_json(event_to_wire(event))

    async def _drain_client() -> None:
        # Inbound messages are ignored; this only notices the client leaving
        while True:
            await websocket.receive_text()

    pump = asyncio.create_task(_pump())
    drain = asyncio.create_task(_drain_client())
    try:
        done, _ = await asyncio.wait({pump, drain}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"Realtime event stream error: {exc}")
    finally:
        unsubscribe_events()
        for task in (pump, drain):
            task.cancel()
        await asyncio.gather(pump, drain, return_exceptions=True)
        logger.info("Realtime event stream closed")
