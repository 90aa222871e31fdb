"""
Appointment read routes: list and live stream
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from ...auth import CurrentUser, get_current_user, user_from_token
from ...dependencies import get_change_distributor, get_sync_service
from ...exceptions import CalendlySyncError
from ..calendly.sync_service import AppointmentSyncService
from .distributor import ChangeDistributor
from .repository import AppointmentRepository
from .schemas import AppointmentListResponse, AppointmentResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])

WS_POLICY_VIOLATION = 4401


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    sync: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    sync_service: AppointmentSyncService = Depends(get_sync_service),
):
    """List the user's appointments, newest first; sync=true sweeps Calendly first"""
    if sync:
        try:
            await sync_service.sync(current_user.id)
        except CalendlySyncError as e:
            logger.warning(f"⚠️ Sync before listing failed for user {current_user.id}: {e}")

    rows = AppointmentRepository.list_for_user(sync_service.db, current_user.id)
    appointments = [AppointmentResponse.model_validate(row) for row in rows]
    return AppointmentListResponse(appointments=appointments, count=len(appointments))


@router.websocket("/stream")
async def stream_appointments(
    websocket: WebSocket,
    token: Optional[str] = None,
    reader_id: Optional[str] = None,
    distributor: ChangeDistributor = Depends(get_change_distributor),
):
    """
    Push the full appointment list on connect and after every committed change.
    Browsers cannot set headers on a websocket, so the bearer token comes in the query.
    """
    if not token:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return
    try:
        user = user_from_token(token)
    except HTTPException:
        await websocket.close(code=WS_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue: asyncio.Queue[list[AppointmentResponse]] = asyncio.Queue()

    async def pump() -> None:
        while True:
            appointments = await queue.get()
            payload = AppointmentListResponse(appointments=appointments, count=len(appointments))
            await websocket.send_json(payload.model_dump(mode="json"))

    pump_task = asyncio.create_task(pump())
    unsubscribe = None

    try:
        unsubscribe = await distributor.subscribe(user.id, queue.put_nowait, reader_id=reader_id)
        logger.info(f"📡 Appointment stream opened for user {user.id}")
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"📴 Appointment stream closed for user {user.id}")
    finally:
        if unsubscribe is not None:
            unsubscribe()
        pump_task.cancel()
