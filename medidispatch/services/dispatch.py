"""Ambulance request lifecycle.

Every mutating operation follows the same order: check the caller's role,
check preconditions, write, commit, then publish a ``DispatchEvent``. Anything
that reacts to a change (notifications) listens on the event bus and runs
after the write is durable.
"""

import logging

from medidispatch.database import DatabaseAdapter, utcnow
from medidispatch.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from medidispatch.models.ambulance import (
    DEFAULT_DESTINATION,
    PRIORITY_RANK,
    STAFF_STATUS_TARGETS,
    AmbulanceRequestCreate,
    AmbulanceRequestRecord,
    AmbulanceStatus,
    HospitalResponse,
    Priority,
)
from medidispatch.models.hospital import AmbulanceUnitStatus, HospitalRecord
from medidispatch.models.user import CurrentUser, Role
from medidispatch.services.event_bus import (
    AMBULANCE_ASSIGNED,
    HOSPITAL_RESPONDED,
    REQUEST_CREATED,
    REQUEST_FORWARDED,
    REQUEST_MARKED_READ,
    REQUEST_SELF_ASSIGNED,
    REQUEST_STATUS_UPDATED,
    DispatchEvent,
    event_bus,
)
from medidispatch.services.jurisdiction import LocationResolver

logger = logging.getLogger(__name__)

REQUEST_SELECT = """
    SELECT ar.*,
           cu.full_name AS patient_name,
           cu.email AS patient_email,
           cu.phone AS patient_phone,
           su.full_name AS assigned_staff_name,
           su.phone AS assigned_staff_phone,
           h.hospital_name AS forwarded_hospital_name,
           h.address AS forwarded_hospital_address,
           ha.registration_number AS ambulance_registration,
           ha.ambulance_type AS ambulance_type,
           ha.driver_name AS ambulance_driver_name,
           ha.driver_phone AS ambulance_driver_phone
    FROM ambulance_requests ar
    JOIN users cu ON ar.customer_user_id = cu.id
    LEFT JOIN users su ON ar.assigned_staff_id = su.id
    LEFT JOIN hospitals h ON ar.forwarded_to_hospital_id = h.user_id
    LEFT JOIN hospital_ambulances ha ON ar.assigned_ambulance_id = ha.id
"""

REQUIRED_FIELDS = ("pickup_address", "destination_address", "emergency_type", "contact_number")


def _require_role(user: CurrentUser, *roles: Role) -> None:
    if user.role not in roles:
        raise AuthorizationError("Access denied")


def priority_rank(priority: str | None) -> int:
    try:
        return PRIORITY_RANK[Priority(priority)]
    except ValueError:
        return PRIORITY_RANK[Priority.NORMAL]


def sort_by_priority(records: list[AmbulanceRequestRecord]) -> list[AmbulanceRequestRecord]:
    """Order by priority rank; ties keep their incoming (newest-first) order."""
    return sorted(records, key=lambda r: priority_rank(r.priority))


async def _fetch_requests(db: DatabaseAdapter, where: str = "", params: tuple = ()) -> list[AmbulanceRequestRecord]:
    query = REQUEST_SELECT + (f" WHERE {where}" if where else "") + " ORDER BY ar.created_at DESC, ar.id DESC"
    rows = await db.fetch_all(query, params)
    return sort_by_priority([AmbulanceRequestRecord(**dict(row)) for row in rows])


async def get_request(db: DatabaseAdapter, request_id: int):
    row = await db.fetch_one("SELECT * FROM ambulance_requests WHERE id = ?", (request_id,))
    if row is None:
        raise NotFoundError("Ambulance request not found")
    return row


# --- Creation ---


async def create_request(
    db: DatabaseAdapter,
    user: CurrentUser,
    body: AmbulanceRequestCreate,
    resolver: LocationResolver,
) -> int:
    """Create a pending request and announce it to the responsible admins."""
    _require_role(user, Role.CUSTOMER)

    missing = [name for name in REQUIRED_FIELDS if not (getattr(body, name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    # Stored as submitted; whitespace only matters for the blank check above.
    jurisdiction = await resolver.resolve(body.pickup_address)
    now = utcnow()

    request_id = await db.insert(
        "INSERT INTO ambulance_requests (customer_user_id, pickup_address, destination_address, "
        "emergency_type, customer_condition, contact_number, status, priority, is_read, "
        "customer_state, customer_district, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)",
        (
            user.id,
            body.pickup_address,
            body.destination_address or DEFAULT_DESTINATION,
            body.emergency_type,
            body.customer_condition,
            body.contact_number,
            AmbulanceStatus.PENDING.value,
            body.priority.value,
            jurisdiction.state,
            jurisdiction.district,
            now,
            now,
        ),
    )
    await db.commit()
    logger.info(
        "Ambulance request %s created by user %s (state=%s, district=%s, priority=%s)",
        request_id, user.id, jurisdiction.state, jurisdiction.district, body.priority.value,
    )

    await event_bus.publish(DispatchEvent(
        kind=REQUEST_CREATED,
        request_id=request_id,
        actor_id=user.id,
        payload={"customer_state": jurisdiction.state, "customer_district": jurisdiction.district},
    ))
    return request_id


# --- Staff ---


async def self_assign(db: DatabaseAdapter, user: CurrentUser, request_id: int) -> None:
    """Claim a pending, unassigned request for the calling staff member."""
    _require_role(user, Role.STAFF)

    row = await get_request(db, request_id)
    if row["assigned_staff_id"] is not None:
        raise ConflictError("Request already assigned")
    if row["status"] != AmbulanceStatus.PENDING:
        raise ConflictError("Request is not pending")

    # Conditional write: a concurrent claim between the read and here loses.
    updated = await db.execute(
        "UPDATE ambulance_requests SET status = ?, assigned_staff_id = ?, updated_at = ? "
        "WHERE id = ? AND status = ? AND assigned_staff_id IS NULL",
        (AmbulanceStatus.ASSIGNED.value, user.id, utcnow(), request_id, AmbulanceStatus.PENDING.value),
    )
    if not updated:
        raise ConflictError("Request already assigned")
    await db.commit()
    logger.info("Ambulance request %s self-assigned by staff %s", request_id, user.id)

    await event_bus.publish(DispatchEvent(kind=REQUEST_SELF_ASSIGNED, request_id=request_id, actor_id=user.id))


async def update_status(
    db: DatabaseAdapter,
    user: CurrentUser,
    request_id: int,
    status: str,
    notes: str | None = None,
) -> None:
    _require_role(user, Role.STAFF, Role.ADMIN)

    if status not in STAFF_STATUS_TARGETS:
        allowed = ", ".join(sorted(STAFF_STATUS_TARGETS))
        raise ValidationError(f"Invalid status. Must be one of: {allowed}")

    row = await get_request(db, request_id)
    if user.role == Role.STAFF and row["assigned_staff_id"] != user.id:
        raise AuthorizationError("You can only update requests assigned to you")

    await db.execute(
        "UPDATE ambulance_requests SET status = ?, notes = COALESCE(?, notes), updated_at = ? WHERE id = ?",
        (status, notes, utcnow(), request_id),
    )
    await db.commit()
    logger.info("Ambulance request %s status %s -> %s by user %s", request_id, row["status"], status, user.id)

    await event_bus.publish(DispatchEvent(
        kind=REQUEST_STATUS_UPDATED,
        request_id=request_id,
        actor_id=user.id,
        payload={"previous_status": row["status"], "status": status},
    ))


# --- Hospital forwarding ---


async def forward_to_hospital(
    db: DatabaseAdapter,
    user: CurrentUser,
    request_id: int,
    hospital_user_id: int | None,
) -> None:
    """Hand a request to a hospital for acceptance.

    Re-forwarding is allowed and resets the hospital's answer, so each call
    opens a fresh response round and produces its own notifications. An
    ambulance the previous hospital already dispatched is released back to
    its fleet in the same write.
    """
    _require_role(user, Role.ADMIN)
    if hospital_user_id is None:
        raise ValidationError("Hospital user ID is required")

    row = await get_request(db, request_id)
    hospital = await db.fetch_one(
        "SELECT id FROM users WHERE id = ? AND role = ?",
        (hospital_user_id, Role.HOSPITAL.value),
    )
    if hospital is None:
        raise NotFoundError("Hospital not found")

    now = utcnow()
    released = row["assigned_ambulance_id"]
    if released is not None:
        await db.execute(
            "UPDATE hospital_ambulances SET status = ?, assigned_request_id = NULL, updated_at = ? "
            "WHERE id = ? AND assigned_request_id = ?",
            (AmbulanceUnitStatus.AVAILABLE.value, now, released, request_id),
        )

    await db.execute(
        "UPDATE ambulance_requests SET forwarded_to_hospital_id = ?, is_read = 0, hospital_response = ?, "
        "hospital_response_notes = NULL, hospital_response_date = NULL, assigned_ambulance_id = NULL, "
        "status = ?, updated_at = ? WHERE id = ?",
        (
            hospital_user_id,
            HospitalResponse.PENDING.value,
            AmbulanceStatus.FORWARDED_TO_HOSPITAL.value,
            now,
            request_id,
        ),
    )
    await db.commit()
    if released is not None:
        logger.info("Ambulance %s released from re-forwarded request %s", released, request_id)
    logger.info("Ambulance request %s forwarded to hospital %s by admin %s", request_id, hospital_user_id, user.id)

    await event_bus.publish(DispatchEvent(
        kind=REQUEST_FORWARDED,
        request_id=request_id,
        actor_id=user.id,
        payload={"hospital_user_id": hospital_user_id, "customer_user_id": row["customer_user_id"]},
    ))


async def record_hospital_response(
    db: DatabaseAdapter,
    user: CurrentUser,
    request_id: int,
    response: str,
    notes: str | None = None,
) -> None:
    _require_role(user, Role.HOSPITAL)
    if response not in (HospitalResponse.ACCEPTED, HospitalResponse.REJECTED):
        raise ValidationError("Response must be 'accepted' or 'rejected'")

    row = await db.fetch_one(
        "SELECT * FROM ambulance_requests WHERE id = ? AND forwarded_to_hospital_id = ?",
        (request_id, user.id),
    )
    if row is None:
        raise NotFoundError("Request not found or not forwarded to your hospital")
    if row["hospital_response"] != HospitalResponse.PENDING:
        raise ConflictError(f"Request has already been {row['hospital_response']}")

    status = (
        AmbulanceStatus.HOSPITAL_ACCEPTED
        if response == HospitalResponse.ACCEPTED
        else AmbulanceStatus.HOSPITAL_REJECTED
    )
    now = utcnow()
    updated = await db.execute(
        "UPDATE ambulance_requests SET hospital_response = ?, hospital_response_notes = ?, "
        "hospital_response_date = ?, status = ?, updated_at = ? "
        "WHERE id = ? AND forwarded_to_hospital_id = ? AND hospital_response = ?",
        (response, notes, now, status.value, now, request_id, user.id, HospitalResponse.PENDING.value),
    )
    if not updated:
        raise ConflictError("Request has already been answered")
    await db.commit()
    logger.info("Hospital %s %s ambulance request %s", user.id, response, request_id)

    await event_bus.publish(DispatchEvent(
        kind=HOSPITAL_RESPONDED,
        request_id=request_id,
        actor_id=user.id,
        payload={
            "response": str(response),
            "customer_user_id": row["customer_user_id"],
            "customer_state": row["customer_state"],
        },
    ))


async def assign_ambulance(db: DatabaseAdapter, user: CurrentUser, ambulance_id: int, request_id: int) -> None:
    """Dispatch one of the caller's ambulances to a request forwarded to it.

    Assignment implies acceptance: a request still awaiting the hospital's
    answer is accepted as part of the same write. A request the hospital has
    already rejected cannot receive an ambulance.
    """
    _require_role(user, Role.HOSPITAL)

    ambulance = await db.fetch_one("SELECT * FROM hospital_ambulances WHERE id = ?", (ambulance_id,))
    if ambulance is None:
        raise NotFoundError("Ambulance not found")
    if ambulance["hospital_user_id"] != user.id:
        raise AuthorizationError("Ambulance does not belong to your hospital")
    if ambulance["status"] == AmbulanceUnitStatus.ASSIGNED:
        raise ConflictError("Ambulance is already assigned")

    row = await get_request(db, request_id)
    if row["forwarded_to_hospital_id"] != user.id:
        raise AuthorizationError("Request not forwarded to your hospital")
    if row["hospital_response"] == HospitalResponse.REJECTED:
        raise ConflictError("Request was rejected by your hospital")

    now = utcnow()
    claimed = await db.execute(
        "UPDATE hospital_ambulances SET status = ?, assigned_request_id = ?, updated_at = ? "
        "WHERE id = ? AND status != ?",
        (AmbulanceUnitStatus.ASSIGNED.value, request_id, now, ambulance_id, AmbulanceUnitStatus.ASSIGNED.value),
    )
    if not claimed:
        raise ConflictError("Ambulance is already assigned")

    await db.execute(
        "UPDATE ambulance_requests SET assigned_ambulance_id = ?, status = ?, "
        "hospital_response_date = CASE WHEN hospital_response = ? THEN hospital_response_date ELSE ? END, "
        "hospital_response = ?, updated_at = ? WHERE id = ?",
        (
            ambulance_id,
            AmbulanceStatus.HOSPITAL_ACCEPTED.value,
            HospitalResponse.ACCEPTED.value,
            now,
            HospitalResponse.ACCEPTED.value,
            now,
            request_id,
        ),
    )
    await db.commit()
    logger.info("Ambulance %s assigned to request %s by hospital %s", ambulance_id, request_id, user.id)

    await event_bus.publish(DispatchEvent(
        kind=AMBULANCE_ASSIGNED,
        request_id=request_id,
        actor_id=user.id,
        payload={
            "ambulance_id": ambulance_id,
            "registration_number": ambulance["registration_number"],
            "customer_user_id": row["customer_user_id"],
        },
    ))


async def mark_read(db: DatabaseAdapter, user: CurrentUser, request_id: int) -> None:
    _require_role(user, Role.ADMIN, Role.HOSPITAL)
    updated = await db.execute(
        "UPDATE ambulance_requests SET is_read = 1, updated_at = ? WHERE id = ?",
        (utcnow(), request_id),
    )
    if not updated:
        raise NotFoundError("Ambulance request not found")
    await db.commit()

    await event_bus.publish(DispatchEvent(kind=REQUEST_MARKED_READ, request_id=request_id, actor_id=user.id))


# --- Read paths ---


async def list_requests(db: DatabaseAdapter, user: CurrentUser, unread_only: bool = False) -> list[AmbulanceRequestRecord]:
    _require_role(user, Role.STAFF, Role.ADMIN)
    if unread_only:
        return await _fetch_requests(db, "ar.is_read = 0")
    return await _fetch_requests(db)


async def list_customer_requests(db: DatabaseAdapter, user: CurrentUser) -> list[AmbulanceRequestRecord]:
    _require_role(user, Role.CUSTOMER)
    return await _fetch_requests(db, "ar.customer_user_id = ?", (user.id,))


async def list_hospital_forwarded_requests(db: DatabaseAdapter, user: CurrentUser) -> list[AmbulanceRequestRecord]:
    _require_role(user, Role.HOSPITAL)
    return await _fetch_requests(db, "ar.forwarded_to_hospital_id = ?", (user.id,))


async def hospitals_by_state(db: DatabaseAdapter, user: CurrentUser, state: str) -> list[HospitalRecord]:
    """Active hospitals in a state, for the admin forwarding picker."""
    _require_role(user, Role.ADMIN)
    rows = await db.fetch_all(
        "SELECT h.user_id, u.full_name AS hospital_name, h.hospital_name AS name, h.address, "
        "h.state, h.district, h.number_of_ambulances "
        "FROM hospitals h JOIN users u ON h.user_id = u.id "
        "WHERE LOWER(h.state) = LOWER(?) AND h.status = 'active' AND u.status = 'active' "
        "ORDER BY h.hospital_name",
        (state,),
    )
    return [HospitalRecord(**dict(row)) for row in rows]
