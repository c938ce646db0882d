from abc import ABC, abstractmethod

from app.helpers.monitoring import start_as_current_span
from app.models.notification import DeliveryModel, NotificationModel
from app.models.readiness import ReadinessEnum


class DeliveryError(Exception):
    """
    The messaging service could not be reached, no token was sent.
    """


class IPush(ABC):
    @abstractmethod
    @start_as_current_span("push_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("push_send")
    async def send(
        self,
        notification: NotificationModel,
        tokens: list[str],
    ) -> DeliveryModel:
        """
        Send a notification to many devices at once.

        Each token gets a result, in the same order as `tokens`. Raises `DeliveryError` if nothing could be sent.
        """
