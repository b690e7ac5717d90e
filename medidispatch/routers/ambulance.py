import asyncio
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from medidispatch import config
from medidispatch.auth import authenticate_token, get_current_user
from medidispatch.database import get_db
from medidispatch.errors import DispatchError
from medidispatch.models.ambulance import (
    AmbulanceRequestCreate,
    AmbulanceRequestList,
    AmbulanceStatusUpdate,
    CreatedResponse,
    ForwardToHospital,
    HospitalResponseBody,
    MessageResponse,
)
from medidispatch.models.user import CurrentUser, Role
from medidispatch.services import dispatch
from medidispatch.services.event_bus import event_bus
from medidispatch.services.jurisdiction import LocationResolver, get_location_resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ambulance", tags=["ambulance"])


@router.post("", response_model=CreatedResponse, status_code=201)
async def create_request(
    body: AmbulanceRequestCreate,
    user: CurrentUser = Depends(get_current_user),
    resolver: LocationResolver = Depends(get_location_resolver),
):
    """Create an ambulance request for the calling customer."""
    db = await get_db()
    request_id = await dispatch.create_request(db, user, body, resolver)
    return CreatedResponse(message="Ambulance request created successfully", request_id=request_id)


@router.get("", response_model=AmbulanceRequestList)
async def list_requests(unread_only: bool = False, user: CurrentUser = Depends(get_current_user)):
    """All requests, for staff and admin dashboards."""
    db = await get_db()
    requests = await dispatch.list_requests(db, user, unread_only=unread_only)
    return AmbulanceRequestList(requests=requests, total=len(requests))


@router.get("/customer", response_model=AmbulanceRequestList)
async def list_customer_requests(user: CurrentUser = Depends(get_current_user)):
    """The calling customer's own requests."""
    db = await get_db()
    requests = await dispatch.list_customer_requests(db, user)
    return AmbulanceRequestList(requests=requests, total=len(requests))


@router.get("/hospital/forwarded-requests", response_model=AmbulanceRequestList)
async def list_forwarded_requests(user: CurrentUser = Depends(get_current_user)):
    """Requests forwarded to the calling hospital."""
    db = await get_db()
    requests = await dispatch.list_hospital_forwarded_requests(db, user)
    return AmbulanceRequestList(requests=requests, total=len(requests))


@router.post("/{request_id}/assign", response_model=MessageResponse)
async def self_assign(request_id: int, user: CurrentUser = Depends(get_current_user)):
    """Staff member claims a pending request."""
    db = await get_db()
    await dispatch.self_assign(db, user, request_id)
    return MessageResponse(message="Request assigned successfully")


@router.put("/{request_id}/status", response_model=MessageResponse)
async def update_status(
    request_id: int,
    body: AmbulanceStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
):
    db = await get_db()
    await dispatch.update_status(db, user, request_id, body.status, body.notes)
    return MessageResponse(message="Status updated successfully")


@router.post("/{request_id}/forward-to-hospital", response_model=MessageResponse)
async def forward_to_hospital(
    request_id: int,
    body: ForwardToHospital,
    user: CurrentUser = Depends(get_current_user),
):
    """Admin forwards a request to a hospital."""
    db = await get_db()
    await dispatch.forward_to_hospital(db, user, request_id, body.hospital_user_id)
    return MessageResponse(message="Request forwarded to hospital successfully")


@router.post("/{request_id}/hospital-response", response_model=MessageResponse)
async def hospital_response(
    request_id: int,
    body: HospitalResponseBody,
    user: CurrentUser = Depends(get_current_user),
):
    """Hospital accepts or rejects a request forwarded to it."""
    db = await get_db()
    await dispatch.record_hospital_response(db, user, request_id, body.response, body.notes)
    return MessageResponse(message=f"Request {body.response} successfully")


@router.post("/{request_id}/mark-read", response_model=MessageResponse)
async def mark_read(request_id: int, user: CurrentUser = Depends(get_current_user)):
    db = await get_db()
    await dispatch.mark_read(db, user, request_id)
    return MessageResponse(message="Request marked as read")


@router.websocket("/events")
async def dispatch_events_ws(websocket: WebSocket, token: str = ""):
    """Live feed of request changes for staff and admin dashboards.

    Authenticates with ``?token=<jwt>``. Sends every committed dispatch event
    as ``{"type": kind, "request_id", "actor_id", "payload"}`` and a
    ``{"type": "ping"}`` keepalive when idle.
    """
    db = await get_db()
    try:
        user = await authenticate_token(token, db)
    except DispatchError as e:
        logger.info("Dispatch feed connection rejected: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if user.role not in (Role.STAFF, Role.ADMIN):
        logger.info("Dispatch feed connection rejected for %s user %s", user.role, user.id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue = event_bus.subscribe_all()
    logger.info("Dispatch feed client connected (user %s)", user.id)

    try:
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=config.DASHBOARD_PING_SECONDS)
                message = {"type": event.kind, **{k: v for k, v in asdict(event).items() if k != "kind"}}
            except asyncio.TimeoutError:
                message = {"type": "ping"}
            try:
                await websocket.send_json(message)
            except WebSocketDisconnect:
                logger.info("Dispatch feed client disconnected (user %s)", user.id)
                break
            except Exception:
                logger.debug("Failed to send event to dispatch feed client")
                break
    finally:
        event_bus.unsubscribe_all(queue)
