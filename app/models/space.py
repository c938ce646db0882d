from datetime import datetime

from app.models.document import DocumentModel


class MemberModel(DocumentModel):
    joined_at: datetime | None = None
    role: str = "member"


class SpaceModel(DocumentModel):
    space_id: str
    emoji: str | None = None
    members: dict[str, MemberModel] = {}
    name: str = ""
    owner_uid: str | None = None

    @property
    def display_name(self) -> str:
        """
        Name prefixed by the emoji, if any.
        """
        return f"{self.emoji or ''} {self.name}".strip()
