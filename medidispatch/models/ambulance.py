from enum import StrEnum

from pydantic import BaseModel


class AmbulanceStatus(StrEnum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    FORWARDED_TO_HOSPITAL = "forwarded_to_hospital"
    HOSPITAL_ACCEPTED = "hospital_accepted"
    HOSPITAL_REJECTED = "hospital_rejected"
    ON_THE_WAY = "on_the_way"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Targets reachable through PUT /api/ambulance/{id}/status
STAFF_STATUS_TARGETS = frozenset({
    AmbulanceStatus.ASSIGNED,
    AmbulanceStatus.ON_THE_WAY,
    AmbulanceStatus.COMPLETED,
    AmbulanceStatus.CANCELLED,
})


class Priority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_RANK = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.NORMAL: 3,
    Priority.LOW: 4,
}


class HospitalResponse(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


DEFAULT_DESTINATION = "Nearest Hospital"


class AmbulanceRequestCreate(BaseModel):
    pickup_address: str | None = None
    destination_address: str | None = DEFAULT_DESTINATION
    emergency_type: str | None = None
    customer_condition: str | None = None
    contact_number: str | None = None
    priority: Priority = Priority.NORMAL


class AmbulanceStatusUpdate(BaseModel):
    status: str
    notes: str | None = None


class ForwardToHospital(BaseModel):
    hospital_user_id: int | None = None


class HospitalResponseBody(BaseModel):
    response: str
    notes: str | None = None


class AmbulanceRequestRecord(BaseModel):
    """Display-ready ambulance request joined with its related parties."""

    id: int
    customer_user_id: int
    pickup_address: str
    destination_address: str
    emergency_type: str
    customer_condition: str | None = None
    contact_number: str
    status: str
    priority: str
    notes: str | None = None
    is_read: bool = False
    assigned_staff_id: int | None = None
    assigned_ambulance_id: int | None = None
    forwarded_to_hospital_id: int | None = None
    hospital_response: str | None = None
    hospital_response_notes: str | None = None
    hospital_response_date: str | None = None
    customer_state: str | None = None
    customer_district: str | None = None
    created_at: str
    updated_at: str | None = None
    patient_name: str | None = None
    patient_email: str | None = None
    patient_phone: str | None = None
    assigned_staff_name: str | None = None
    assigned_staff_phone: str | None = None
    forwarded_hospital_name: str | None = None
    forwarded_hospital_address: str | None = None
    ambulance_registration: str | None = None
    ambulance_type: str | None = None
    ambulance_driver_name: str | None = None
    ambulance_driver_phone: str | None = None


class AmbulanceRequestList(BaseModel):
    requests: list[AmbulanceRequestRecord]
    total: int


class MessageResponse(BaseModel):
    message: str


class CreatedResponse(BaseModel):
    message: str
    request_id: int
