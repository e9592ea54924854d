import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.services.realtime import SubscriptionEvent, SubscriptionKey, event_to_payload
from app.services.service_container import ServiceContainer

router = APIRouter(tags=["live"])
logger = logging.getLogger(__name__)


@router.websocket("/live/{entity_type}/{filter_key}")
async def live_view(websocket: WebSocket, entity_type: str, filter_key: str) -> None:
    services: ServiceContainer = websocket.app.state.services
    try:
        key = SubscriptionKey.parse(entity_type, filter_key)
    except ValueError as exc:
        logger.info("Live view rejected entity=%s filter=%s error=%s", entity_type, filter_key, exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    events: asyncio.Queue[SubscriptionEvent] = asyncio.Queue()
    unsubscribe = await services.realtime.subscribe(
        key,
        lambda event: loop.call_soon_threadsafe(events.put_nowait, event),
    )

    next_message = asyncio.ensure_future(websocket.receive())
    next_event = asyncio.ensure_future(events.get())
    try:
        while True:
            done, _ = await asyncio.wait(
                {next_message, next_event},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if next_event in done:
                await websocket.send_json(event_to_payload(next_event.result()))
                next_event = asyncio.ensure_future(events.get())
            if next_message in done:
                if next_message.result().get("type") == "websocket.disconnect":
                    break
                next_message = asyncio.ensure_future(websocket.receive())
    except WebSocketDisconnect:
        logger.info("Live view client disconnected entity=%s filter=%s", key.entity_type.value, key.filter_key)
    finally:
        next_message.cancel()
        next_event.cancel()
        unsubscribe()
