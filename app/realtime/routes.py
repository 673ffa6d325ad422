# app/realtime/routes.py
"""WebSocket relays from the realtime bridge to browser clients.

Clients authenticate with `?token=<access token>`, receive
`{"type": "change", ...}` and `{"type": "state", ...}` messages, and may
send the text `reconnect` to force a manual reconnect.
"""

import asyncio
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.deps import get_db, get_realtime_bridge, resolve_user_from_token
from app.modules.documents.repository import DocumentRepository
from app.modules.generation.repository import GenerationJobRepository
from app.realtime.bridge import RealtimeBridge
from app.realtime.events import ChangeEvent, ConnectionState, SubscriptionFilter

logger = get_logger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


async def relay(
    websocket: WebSocket,
    bridge: RealtimeBridge,
    key: str,
    subscription_filter: SubscriptionFilter,
) -> None:
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def on_change(event: ChangeEvent) -> None:
        message = {"type": "change", **event.model_dump(by_alias=True, mode="json")}
        loop.call_soon_threadsafe(queue.put_nowait, message)

    def on_state(state: ConnectionState, error: str | None) -> None:
        message = {"type": "state", "state": state.value, "error": error}
        loop.call_soon_threadsafe(queue.put_nowait, message)

    async def pump() -> None:
        while True:
            await websocket.send_json(await queue.get())

    handle = await run_in_threadpool(
        bridge.subscribe, key, subscription_filter, on_change, on_state
    )
    sender = asyncio.create_task(pump())
    try:
        while True:
            text = await websocket.receive_text()
            if text == "reconnect":
                await run_in_threadpool(bridge.reconnect, handle)
    except WebSocketDisconnect:
        logger.info("realtime client disconnected", key=key)
    finally:
        sender.cancel()
        await run_in_threadpool(bridge.unsubscribe, handle)


@router.websocket("/jobs/{job_id}")
async def job_updates(
    websocket: WebSocket,
    job_id: uuid.UUID,
    token: str = Query(...),
    db: Session = Depends(get_db),
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
):
    user = resolve_user_from_token(db, token)
    job = GenerationJobRepository(db).get_by_id(job_id) if user else None
    if job is None or job.user_id != user.id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await relay(
        websocket, bridge, f"job:{job_id}:{uuid.uuid4().hex}", SubscriptionFilter.for_job(job_id)
    )


@router.websocket("/documents/{document_id}")
async def document_updates(
    websocket: WebSocket,
    document_id: uuid.UUID,
    token: str = Query(...),
    db: Session = Depends(get_db),
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
):
    user = resolve_user_from_token(db, token)
    document = DocumentRepository(db).get_by_id(document_id) if user else None
    if document is None or document.organisation_id != user.organisation_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await relay(
        websocket,
        bridge,
        f"document:{document_id}:{uuid.uuid4().hex}",
        SubscriptionFilter.for_document(document_id),
    )


@router.websocket("/users/me/jobs")
async def my_job_updates(
    websocket: WebSocket,
    token: str = Query(...),
    db: Session = Depends(get_db),
    bridge: RealtimeBridge = Depends(get_realtime_bridge),
):
    user = resolve_user_from_token(db, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await relay(
        websocket,
        bridge,
        f"user-jobs:{user.id}:{uuid.uuid4().hex}",
        SubscriptionFilter.for_user_jobs(user.id),
    )
