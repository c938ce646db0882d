from enum import Enum

from pydantic import BaseModel


class TokenErrorEnum(str, Enum):
    INVALID = "invalid"
    """Token is malformed or does not belong to the project."""
    NOT_REGISTERED = "not_registered"
    """App was uninstalled or the token was revoked."""
    OTHER = "other"
    """Any other failure, like quota or availability, the token stays."""

    @property
    def prunable(self) -> bool:
        """
        Token will never work again and can be deleted from its user.
        """
        return self in (TokenErrorEnum.INVALID, TokenErrorEnum.NOT_REGISTERED)


class NotificationModel(BaseModel):
    android_channel: str
    apns_badge: int
    apns_sound: str
    body: str
    data: dict[str, str]
    title: str


class RecipientModel(BaseModel, frozen=True):
    """
    A push token, paired with the user it belongs to.
    """

    token: str
    uid: str


class TokenResultModel(BaseModel):
    error: TokenErrorEnum | None = None
    message: str | None = None
    token: str

    @property
    def success(self) -> bool:
        return self.error is None


class DeliveryModel(BaseModel):
    """
    Outcome of a send, one result per token, in the order of the tokens given.
    """

    pruned: int = 0
    results: list[TokenResultModel] = []

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)
