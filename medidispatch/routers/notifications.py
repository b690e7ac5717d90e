from fastapi import APIRouter, Depends

from medidispatch.auth import get_current_user
from medidispatch.database import get_db
from medidispatch.models.ambulance import MessageResponse
from medidispatch.models.notification import NotificationList
from medidispatch.models.user import CurrentUser
from medidispatch.services import notifications

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationList)
async def list_notifications(user: CurrentUser = Depends(get_current_user)):
    """The caller's notifications, newest first."""
    db = await get_db()
    return await notifications.list_notifications(db, user)


@router.post("/mark-all-read", response_model=MessageResponse)
async def mark_all_read(user: CurrentUser = Depends(get_current_user)):
    db = await get_db()
    count = await notifications.mark_all_read(db, user)
    return MessageResponse(message=f"{count} notification(s) marked as read")


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(notification_id: int, user: CurrentUser = Depends(get_current_user)):
    db = await get_db()
    await notifications.mark_notification_read(db, user, notification_id)
    return MessageResponse(message="Notification marked as read")
