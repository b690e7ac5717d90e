from fastapi import APIRouter, Depends

from medidispatch.auth import get_current_user
from medidispatch.database import get_db
from medidispatch.models.ambulance import MessageResponse
from medidispatch.models.hospital import (
    AmbulanceCreatedResponse,
    HospitalAmbulanceCreate,
    HospitalAmbulanceList,
    HospitalAmbulanceUpdate,
    HospitalList,
)
from medidispatch.models.user import CurrentUser
from medidispatch.services import dispatch, fleet

# Admin-facing hospital directory
directory_router = APIRouter(prefix="/api/hospitals", tags=["hospitals"])

# Hospital-facing fleet management
router = APIRouter(prefix="/api/hospital", tags=["hospital"])


@directory_router.get("/by-state/{state}", response_model=HospitalList)
async def hospitals_by_state(state: str, user: CurrentUser = Depends(get_current_user)):
    """Active hospitals in a state, for choosing a forwarding target."""
    db = await get_db()
    hospitals = await dispatch.hospitals_by_state(db, user, state)
    return HospitalList(hospitals=hospitals, total=len(hospitals))


@router.get("/ambulances", response_model=HospitalAmbulanceList)
async def list_ambulances(user: CurrentUser = Depends(get_current_user)):
    """All of the calling hospital's ambulances with their current assignment."""
    db = await get_db()
    ambulances = await fleet.list_ambulances(db, user)
    return HospitalAmbulanceList(ambulances=ambulances, total=len(ambulances))


@router.get("/ambulances/available", response_model=HospitalAmbulanceList)
async def list_available_ambulances(user: CurrentUser = Depends(get_current_user)):
    db = await get_db()
    ambulances = await fleet.list_ambulances(db, user, available_only=True)
    return HospitalAmbulanceList(ambulances=ambulances, total=len(ambulances))


@router.post("/ambulances", response_model=AmbulanceCreatedResponse, status_code=201)
async def create_ambulance(body: HospitalAmbulanceCreate, user: CurrentUser = Depends(get_current_user)):
    db = await get_db()
    ambulance_id = await fleet.create_ambulance(db, user, body)
    return AmbulanceCreatedResponse(message="Ambulance added successfully", ambulance_id=ambulance_id)


@router.put("/ambulances/{ambulance_id}", response_model=MessageResponse)
async def update_ambulance(
    ambulance_id: int,
    body: HospitalAmbulanceUpdate,
    user: CurrentUser = Depends(get_current_user),
):
    db = await get_db()
    await fleet.update_ambulance(db, user, ambulance_id, body)
    return MessageResponse(message="Ambulance updated successfully")


@router.delete("/ambulances/{ambulance_id}", response_model=MessageResponse)
async def delete_ambulance(ambulance_id: int, user: CurrentUser = Depends(get_current_user)):
    db = await get_db()
    await fleet.delete_ambulance(db, user, ambulance_id)
    return MessageResponse(message="Ambulance deleted successfully")


@router.post("/ambulances/{ambulance_id}/park", response_model=MessageResponse)
async def park_ambulance(ambulance_id: int, user: CurrentUser = Depends(get_current_user)):
    """Mark an ambulance available again after a completed run."""
    db = await get_db()
    await fleet.park_ambulance(db, user, ambulance_id)
    return MessageResponse(message="Ambulance parked successfully")


@router.post("/ambulances/{ambulance_id}/assign/{request_id}", response_model=MessageResponse)
async def assign_ambulance(ambulance_id: int, request_id: int, user: CurrentUser = Depends(get_current_user)):
    """Dispatch an ambulance to a request forwarded to this hospital."""
    db = await get_db()
    await dispatch.assign_ambulance(db, user, ambulance_id, request_id)
    return MessageResponse(message="Ambulance assigned successfully")
