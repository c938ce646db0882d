from app.models.document import DocumentModel


class UserModel(DocumentModel):
    uid: str
    display_name: str | None = None
    fcm_tokens: dict[str, bool] = {}
    handle: str | None = None

    @property
    def tokens(self) -> list[str]:
        """
        Push tokens of the user, one per registered device.

        The map is used as a set, values are not meaningful.
        """
        return list(self.fcm_tokens.keys())
