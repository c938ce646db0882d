from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """
    Base for documents and payloads exchanged with the mobile app.

    Fields are snake case in Python and camel case in the database and JSON bodies. Dates without timezone are read as UTC.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("*", mode="after")
    @classmethod
    def _validate_timezone(cls, value: Any) -> Any:
        # Naive and aware dates cannot be compared, normalize them all
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
