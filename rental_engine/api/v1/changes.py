import asyncio
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from rental_engine.core.utils import json_dumps
from rental_engine.realtime.feed import ChangeEvent

router = APIRouter()

RESYNC_EVENT = "RESYNC"


async def _pump(websocket: WebSocket, outbox: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        payload = await outbox.get()
        await websocket.send_text(json_dumps(payload))


@router.websocket("/changes/{table}")
async def stream_changes(websocket: WebSocket, table: str):
    """Push committed changes of ``table`` to the client.

    Query parameters narrow the stream to rows whose columns equal the given
    values, e.g. ``/changes/reservations?device_type_id=abc``. A ``RESYNC``
    message means events were lost and the client should re-fetch.
    """
    change_router = websocket.app.state.change_router
    filters = dict(websocket.query_params)

    loop = asyncio.get_running_loop()
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def _matches(row: Dict[str, Any]) -> bool:
        return all(str(row.get(key)) == value for key, value in filters.items())

    def _forward(change: ChangeEvent) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, change.to_dict())

    def _resync() -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, {"table": table, "event_type": RESYNC_EVENT})

    observer = change_router.register(
        table, _forward, _matches if filters else None, on_resync=_resync
    )
    logger.info(f"Change stream opened for {table} filters={filters}")
    sender = None
    try:
        # registered before accepting so nothing committed after the handshake is missed
        await websocket.accept()
        sender = asyncio.create_task(_pump(websocket, outbox))
        while True:
            # clients only ever close; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        change_router.unregister(observer)
        if sender is not None:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
        logger.info(f"Change stream closed for {table}")
