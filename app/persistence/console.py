from app.helpers.logging import logger
from app.models.notification import (
    DeliveryModel,
    NotificationModel,
    TokenResultModel,
)
from app.models.readiness import ReadinessEnum
from app.persistence.ipush import IPush


class ConsolePush(IPush):
    def __init__(self):
        logger.warning("Using console as push, no real notifications will be sent")

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the console push.
        """
        return ReadinessEnum.OK  # Always ready, it's the console :)

    async def send(
        self,
        notification: NotificationModel,
        tokens: list[str],
    ) -> DeliveryModel:
        logger.info(
            "🔔 %s: %s (channel %s, %i devices)",
            notification.title,
            notification.body,
            notification.android_channel,
            len(tokens),
        )
        logger.debug("Notification data: %s", notification.data)
        return DeliveryModel(
            results=[TokenResultModel(token=token) for token in tokens],
        )
