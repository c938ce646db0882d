from pydantic import Field

from app.models.document import DocumentModel


class PingRequestModel(DocumentModel):
    item_id: str = Field(min_length=1)
    item_title: str = Field(min_length=1)
    space_id: str = Field(min_length=1)
    space_name: str | None = None
    to_uid: str = Field(min_length=1)


class PingResponseModel(DocumentModel):
    failure_count: int | None = None
    reason: str | None = None
    sent: bool
    success_count: int | None = None
