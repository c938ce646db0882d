from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import model_validator

from app.models.document import DocumentModel


class ItemTypeEnum(str, Enum):
    PERSONAL = "personal"
    """Owned by a single user."""
    SPACE = "space"
    """Shared by all the members of a space."""


class NotifyStatusEnum(str, Enum):
    CANCELLED = "cancelled"
    """Reminder removed, or item completed before it was due."""
    NONE = "none"
    """No reminder set."""
    SCHEDULED = "scheduled"
    """Reminder set, waiting for a scan to send it."""
    SENT = "sent"
    """Reminder handled by a scan."""


class ItemModel(DocumentModel):
    # Immutable fields
    item_id: str
    type: ItemTypeEnum
    owner_uid: str | None = None
    space_id: str | None = None
    created_at: datetime | None = None
    created_by_uid: str | None = None
    # Editable fields
    completed_at: datetime | None = None
    details: str | None = None
    is_completed: bool = False
    notify_job_id: str | None = None
    notify_status: NotifyStatusEnum = NotifyStatusEnum.NONE
    remind_at: datetime | None = None
    timezone: str | None = None
    title: str = ""
    updated_at: datetime | None = None
    updated_by_uid: str | None = None


class ItemChangeModel(DocumentModel):
    """
    A write on an item document, as delivered by the database triggers.

    `before` is missing on creation, `after` is missing on deletion.
    """

    item_id: str
    before: ItemModel | None = None
    after: ItemModel | None = None

    @model_validator(mode="before")
    @classmethod
    def _inject_item_id(cls, data: Any) -> Any:
        """
        Copy the document identifier in the snapshots, as the document data does not always store it.
        """
        if not isinstance(data, dict):
            return data
        item_id = data.get("itemId", data.get("item_id"))
        if not item_id:
            return data
        data = dict(data)
        for key in ("before", "after"):
            snapshot = data.get(key)
            if isinstance(snapshot, dict) and not (
                snapshot.get("itemId") or snapshot.get("item_id")
            ):
                data[key] = {**snapshot, "itemId": item_id}
        return data


class ItemEventResponseModel(DocumentModel):
    item_id: str
    notify_status: NotifyStatusEnum | None
    """New status, `None` if the write did not change it."""
