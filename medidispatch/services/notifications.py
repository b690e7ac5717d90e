"""Notification fan-out and per-user inbox.

Notification rows are written after the triggering state change has been
committed, by ``NotificationDispatcher`` listening on the dispatch event bus.
Delivery is best-effort: a failed insert is logged and the transition stands.
"""

import logging

from medidispatch.config import NOTIFICATION_LIST_LIMIT
from medidispatch.database import DatabaseAdapter, get_db, utcnow
from medidispatch.errors import NotFoundError
from medidispatch.models.ambulance import HospitalResponse
from medidispatch.models.notification import NotificationList, NotificationRecord
from medidispatch.models.user import CurrentUser
from medidispatch.services.event_bus import (
    AMBULANCE_ASSIGNED,
    HOSPITAL_RESPONDED,
    REQUEST_CREATED,
    REQUEST_FORWARDED,
    DispatchEvent,
)

logger = logging.getLogger(__name__)

AMBULANCE = "ambulance"


async def resolve_admin_audience(db: DatabaseAdapter, state: str | None) -> list[int]:
    """Admins responsible for a jurisdiction.

    System admins always; state admins only when their state matches.
    """
    if state:
        rows = await db.fetch_all(
            "SELECT id FROM users WHERE role = 'admin' "
            "AND (admin_type = 'system' OR (admin_type = 'state' AND state = ?)) ORDER BY id",
            (state,),
        )
    else:
        rows = await db.fetch_all(
            "SELECT id FROM users WHERE role = 'admin' AND admin_type = 'system' ORDER BY id"
        )
    return [row["id"] for row in rows]


async def create_notification(
    db: DatabaseAdapter,
    user_id: int,
    title: str,
    message: str,
    related_id: int | None = None,
    type: str = AMBULANCE,
) -> int:
    return await db.insert(
        "INSERT INTO notifications (user_id, type, title, message, is_read, related_id, created_at) "
        "VALUES (?, ?, ?, ?, 0, ?, ?)",
        (user_id, type, title, message, related_id, utcnow()),
    )


class NotificationDispatcher:
    """Turns dispatch events into notification rows."""

    async def handle(self, event: DispatchEvent) -> None:
        handler = {
            REQUEST_CREATED: self._on_created,
            REQUEST_FORWARDED: self._on_forwarded,
            HOSPITAL_RESPONDED: self._on_hospital_response,
            AMBULANCE_ASSIGNED: self._on_ambulance_assigned,
        }.get(event.kind)
        if handler is None:
            return

        db = await get_db()
        try:
            count = await handler(db, event)
            await db.commit()
        except Exception:
            logger.error(
                "Notification fan-out failed for %s on request %s",
                event.kind, event.request_id, exc_info=True,
            )
            return
        logger.info("Sent %d notification(s) for %s on request %s", count, event.kind, event.request_id)

    async def _on_created(self, db: DatabaseAdapter, event: DispatchEvent) -> int:
        state = event.payload.get("customer_state")
        message = "Ambulance request received" + (f" - {state}" if state else "")
        admins = await resolve_admin_audience(db, state)
        for admin_id in admins:
            await create_notification(db, admin_id, "Ambulance Request", message, event.request_id)
        return len(admins)

    async def _on_forwarded(self, db: DatabaseAdapter, event: DispatchEvent) -> int:
        await create_notification(
            db,
            event.payload["hospital_user_id"],
            "New Ambulance Request",
            "An ambulance request has been forwarded to you",
            event.request_id,
        )
        await create_notification(
            db,
            event.payload["customer_user_id"],
            "Request Forwarded",
            "Your ambulance request has been forwarded to a hospital for processing",
            event.request_id,
        )
        return 2

    async def _on_hospital_response(self, db: DatabaseAdapter, event: DispatchEvent) -> int:
        verb = "accepted" if event.payload["response"] == HospitalResponse.ACCEPTED else "rejected"
        await create_notification(
            db,
            event.payload["customer_user_id"],
            "Hospital Response",
            f"Your ambulance request has been {verb} by the hospital",
            event.request_id,
        )
        admins = await resolve_admin_audience(db, event.payload.get("customer_state"))
        for admin_id in admins:
            await create_notification(
                db,
                admin_id,
                "Hospital Response",
                f"Hospital has {verb} ambulance request #{event.request_id}",
                event.request_id,
            )
        return 1 + len(admins)

    async def _on_ambulance_assigned(self, db: DatabaseAdapter, event: DispatchEvent) -> int:
        registration = event.payload.get("registration_number") or "unknown"
        await create_notification(
            db,
            event.payload["customer_user_id"],
            "Ambulance Assigned",
            f"An ambulance ({registration}) has been assigned to your request",
            event.request_id,
        )
        return 1


# --- Inbox ---


def _to_record(row) -> NotificationRecord:
    data = dict(row)
    data["is_read"] = bool(data["is_read"])
    return NotificationRecord(**data)


async def list_notifications(db: DatabaseAdapter, user: CurrentUser) -> NotificationList:
    rows = await db.fetch_all(
        "SELECT id, user_id, type, title, message, is_read, related_id, created_at "
        "FROM notifications WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
        (user.id, NOTIFICATION_LIST_LIMIT),
    )
    unread = await db.fetch_one(
        "SELECT COUNT(*) AS count FROM notifications WHERE user_id = ? AND is_read = 0",
        (user.id,),
    )
    notifications = [_to_record(row) for row in rows]
    return NotificationList(
        notifications=notifications,
        total=len(notifications),
        unread_count=unread["count"] if unread else 0,
    )


async def mark_notification_read(db: DatabaseAdapter, user: CurrentUser, notification_id: int) -> None:
    updated = await db.execute(
        "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
        (notification_id, user.id),
    )
    if not updated:
        raise NotFoundError("Notification not found")
    await db.commit()


async def mark_all_read(db: DatabaseAdapter, user: CurrentUser) -> int:
    updated = await db.execute(
        "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
        (user.id,),
    )
    await db.commit()
    logger.info("Marked %d notification(s) read for user %s", updated, user.id)
    return updated
