from pydantic import BaseModel


class NotificationRecord(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    is_read: bool
    related_id: int | None = None
    created_at: str


class NotificationList(BaseModel):
    notifications: list[NotificationRecord]
    total: int
    unread_count: int
