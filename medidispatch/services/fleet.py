"""Hospital-side management of the hospital's own ambulances."""

import logging

from medidispatch.database import DatabaseAdapter, utcnow
from medidispatch.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from medidispatch.models.hospital import (
    AmbulanceType,
    AmbulanceUnitStatus,
    HospitalAmbulanceCreate,
    HospitalAmbulanceRecord,
    HospitalAmbulanceUpdate,
)
from medidispatch.models.user import CurrentUser, Role

logger = logging.getLogger(__name__)

AMBULANCE_SELECT = """
    SELECT ha.*,
           ar.emergency_type,
           ar.pickup_address,
           ar.customer_condition,
           cu.full_name AS patient_name,
           cu.phone AS patient_phone
    FROM hospital_ambulances ha
    LEFT JOIN ambulance_requests ar ON ha.assigned_request_id = ar.id
    LEFT JOIN users cu ON ar.customer_user_id = cu.id
"""

UPDATABLE_FIELDS = (
    "registration_number",
    "ambulance_type",
    "model",
    "manufacturer",
    "registration_year",
    "driver_name",
    "driver_phone",
    "driver_license_number",
    "equipment",
    "current_location",
)


def _require_hospital(user: CurrentUser) -> None:
    if user.role != Role.HOSPITAL:
        raise AuthorizationError("Access denied")


def _check_type(ambulance_type: str) -> None:
    if ambulance_type not in {t.value for t in AmbulanceType}:
        allowed = ", ".join(t.value for t in AmbulanceType)
        raise ValidationError(f"Invalid ambulance type. Must be one of: {allowed}")


async def _owned_ambulance(db: DatabaseAdapter, user: CurrentUser, ambulance_id: int):
    row = await db.fetch_one("SELECT * FROM hospital_ambulances WHERE id = ?", (ambulance_id,))
    if row is None:
        raise NotFoundError("Ambulance not found")
    if row["hospital_user_id"] != user.id:
        raise AuthorizationError("Ambulance does not belong to your hospital")
    return row


async def _registration_taken(db: DatabaseAdapter, registration: str, exclude_id: int | None = None) -> bool:
    row = await db.fetch_one(
        "SELECT id FROM hospital_ambulances WHERE registration_number = ?",
        (registration,),
    )
    return row is not None and row["id"] != exclude_id


async def list_ambulances(
    db: DatabaseAdapter,
    user: CurrentUser,
    available_only: bool = False,
) -> list[HospitalAmbulanceRecord]:
    _require_hospital(user)
    query = AMBULANCE_SELECT + " WHERE ha.hospital_user_id = ?"
    params: tuple = (user.id,)
    if available_only:
        query += " AND ha.status = ?"
        params += (AmbulanceUnitStatus.AVAILABLE.value,)
    rows = await db.fetch_all(query + " ORDER BY ha.created_at DESC, ha.id DESC", params)
    return [HospitalAmbulanceRecord(**dict(row)) for row in rows]


async def create_ambulance(db: DatabaseAdapter, user: CurrentUser, body: HospitalAmbulanceCreate) -> int:
    _require_hospital(user)

    registration = (body.registration_number or "").strip()
    if not registration or not body.ambulance_type:
        raise ValidationError("Registration number and ambulance type are required")
    _check_type(body.ambulance_type)
    if await _registration_taken(db, registration):
        raise ConflictError("Ambulance with this registration number already exists")

    now = utcnow()
    ambulance_id = await db.insert(
        "INSERT INTO hospital_ambulances (hospital_user_id, registration_number, ambulance_type, model, "
        "manufacturer, registration_year, driver_name, driver_phone, driver_license_number, equipment, "
        "status, current_location, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            user.id,
            registration,
            body.ambulance_type,
            body.model,
            body.manufacturer,
            body.registration_year,
            body.driver_name,
            body.driver_phone,
            body.driver_license_number,
            body.equipment,
            AmbulanceUnitStatus.AVAILABLE.value,
            body.current_location,
            now,
            now,
        ),
    )
    await db.execute(
        "UPDATE hospitals SET number_of_ambulances = number_of_ambulances + 1, updated_at = ? WHERE user_id = ?",
        (now, user.id),
    )
    await db.commit()
    logger.info("Hospital %s added ambulance %s (%s)", user.id, ambulance_id, registration)
    return ambulance_id


async def update_ambulance(
    db: DatabaseAdapter,
    user: CurrentUser,
    ambulance_id: int,
    body: HospitalAmbulanceUpdate,
) -> None:
    """Apply the fields present in ``body``; absent fields are left alone."""
    _require_hospital(user)
    await _owned_ambulance(db, user, ambulance_id)

    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if k in UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError("No fields to update")
    if "ambulance_type" in changes:
        _check_type(changes["ambulance_type"])
    if "registration_number" in changes:
        registration = (changes["registration_number"] or "").strip()
        if not registration:
            raise ValidationError("Registration number cannot be empty")
        if await _registration_taken(db, registration, exclude_id=ambulance_id):
            raise ConflictError("Ambulance with this registration number already exists")
        changes["registration_number"] = registration

    assignments = ", ".join(f"{column} = ?" for column in changes)
    await db.execute(
        f"UPDATE hospital_ambulances SET {assignments}, updated_at = ? WHERE id = ?",
        (*changes.values(), utcnow(), ambulance_id),
    )
    await db.commit()
    logger.info("Hospital %s updated ambulance %s (%s)", user.id, ambulance_id, ", ".join(changes))


async def delete_ambulance(db: DatabaseAdapter, user: CurrentUser, ambulance_id: int) -> None:
    _require_hospital(user)
    row = await _owned_ambulance(db, user, ambulance_id)
    if row["status"] == AmbulanceUnitStatus.ASSIGNED:
        raise ConflictError("Cannot delete an ambulance that is currently assigned")

    await db.execute("DELETE FROM hospital_ambulances WHERE id = ?", (ambulance_id,))
    await db.execute(
        "UPDATE hospitals SET number_of_ambulances = number_of_ambulances - 1, updated_at = ? "
        "WHERE user_id = ? AND number_of_ambulances > 0",
        (utcnow(), user.id),
    )
    await db.commit()
    logger.info("Hospital %s deleted ambulance %s", user.id, ambulance_id)


async def park_ambulance(db: DatabaseAdapter, user: CurrentUser, ambulance_id: int) -> None:
    """Return an ambulance to service once its run is over.

    The request keeps ``assigned_ambulance_id`` as a record of who served it.
    """
    _require_hospital(user)
    await _owned_ambulance(db, user, ambulance_id)

    await db.execute(
        "UPDATE hospital_ambulances SET status = ?, assigned_request_id = NULL, updated_at = ? WHERE id = ?",
        (AmbulanceUnitStatus.AVAILABLE.value, utcnow(), ambulance_id),
    )
    await db.commit()
    logger.info("Hospital %s parked ambulance %s", user.id, ambulance_id)
