from enum import StrEnum

from pydantic import BaseModel


class AmbulanceUnitStatus(StrEnum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    PARKED = "parked"


class AmbulanceType(StrEnum):
    BASIC_LIFE_SUPPORT = "Basic Life Support"
    ADVANCED_LIFE_SUPPORT = "Advanced Life Support"
    VENTILATOR_SUPPORT = "Ventilator Support"


class HospitalRecord(BaseModel):
    user_id: int
    hospital_name: str | None = None  # account holder's display name
    name: str
    address: str
    state: str | None = None
    district: str | None = None
    number_of_ambulances: int = 0


class HospitalList(BaseModel):
    hospitals: list[HospitalRecord]
    total: int


class HospitalAmbulanceCreate(BaseModel):
    registration_number: str | None = None
    ambulance_type: str | None = None
    model: str | None = None
    manufacturer: str | None = None
    registration_year: int | None = None
    driver_name: str | None = None
    driver_phone: str | None = None
    driver_license_number: str | None = None
    equipment: str | None = None
    current_location: str | None = None


class HospitalAmbulanceUpdate(HospitalAmbulanceCreate):
    pass


class HospitalAmbulanceRecord(BaseModel):
    id: int
    hospital_user_id: int
    registration_number: str
    ambulance_type: str
    model: str | None = None
    manufacturer: str | None = None
    registration_year: int | None = None
    driver_name: str | None = None
    driver_phone: str | None = None
    driver_license_number: str | None = None
    equipment: str | None = None
    status: str
    current_location: str | None = None
    assigned_request_id: int | None = None
    created_at: str
    updated_at: str | None = None
    emergency_type: str | None = None
    pickup_address: str | None = None
    customer_condition: str | None = None
    patient_name: str | None = None
    patient_phone: str | None = None


class HospitalAmbulanceList(BaseModel):
    ambulances: list[HospitalAmbulanceRecord]
    total: int


class AmbulanceCreatedResponse(BaseModel):
    message: str
    ambulance_id: int
