from enum import StrEnum

from pydantic import BaseModel


class Role(StrEnum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    CUSTOMER = "customer"
    STAFF = "staff"
    HOSPITAL = "hospital"


class AdminType(StrEnum):
    SYSTEM = "system"  # sees every jurisdiction
    STATE = "state"


class CurrentUser(BaseModel):
    """Authenticated caller, loaded from the users table."""

    id: int
    role: Role
    full_name: str
    email: str | None = None
    admin_type: str | None = None
    state: str | None = None
    district: str | None = None
    status: str = "active"
