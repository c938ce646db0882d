import asyncio

from firebase_admin import messaging
from firebase_admin.exceptions import FirebaseError, InvalidArgumentError
from google.auth.exceptions import GoogleAuthError

from app.helpers.config_models.push import FcmModel
from app.helpers.identity import firebase_app
from app.helpers.logging import logger
from app.models.notification import (
    DeliveryModel,
    NotificationModel,
    TokenErrorEnum,
    TokenResultModel,
)
from app.models.readiness import ReadinessEnum
from app.persistence.ipush import DeliveryError, IPush


class FcmPush(IPush):
    _config: FcmModel

    def __init__(self, config: FcmModel):
        logger.info(
            "Using Firebase Cloud Messaging, %i tokens per request%s",
            config.batch_size,
            " (dry run)" if config.dry_run else "",
        )
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Firebase Cloud Messaging service.

        Sending a message requires a device, so the check is limited to fetching an access token.
        """
        try:
            await asyncio.to_thread(firebase_app().credential.get_access_token)
            return ReadinessEnum.OK
        except GoogleAuthError:
            logger.exception("Authentication error for FCM, check the credentials")
        except Exception:
            logger.exception("Unknown error while checking FCM readiness")
        return ReadinessEnum.FAIL

    async def send(
        self,
        notification: NotificationModel,
        tokens: list[str],
    ) -> DeliveryModel:
        logger.info("Sending notification to %i devices", len(tokens))
        results: list[TokenResultModel] = []
        delivered = False
        size = self._config.batch_size
        for chunk in (tokens[i : i + size] for i in range(0, len(tokens), size)):
            try:
                # SDK is sync, requests are sent in parallel by its own thread pool
                response: messaging.BatchResponse = await asyncio.to_thread(
                    messaging.send_each_for_multicast,
                    app=firebase_app(),
                    dry_run=self._config.dry_run,
                    multicast_message=self._message(notification, chunk),
                )
            except (FirebaseError, GoogleAuthError) as e:
                # Expired or unavailable credentials fail the chunk as a service error
                logger.error("Error sending to %i devices: %s", len(chunk), e)
                results.extend(
                    TokenResultModel(
                        error=TokenErrorEnum.OTHER,
                        message=str(e),
                        token=token,
                    )
                    for token in chunk
                )
                continue
            delivered = True
            for token, res in zip(chunk, response.responses):
                results.append(self._result(token, res))

        if tokens and not delivered:
            raise DeliveryError("Firebase Cloud Messaging refused all requests")
        return DeliveryModel(results=results)

    def _message(
        self,
        notification: NotificationModel,
        tokens: list[str],
    ) -> messaging.MulticastMessage:
        return messaging.MulticastMessage(
            tokens=tokens,
            data=notification.data,
            notification=messaging.Notification(
                body=notification.body,
                title=notification.title,
            ),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    channel_id=notification.android_channel,
                    default_sound=True,
                    priority="high",
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(
                        badge=notification.apns_badge,
                        sound=notification.apns_sound,
                    ),
                ),
            ),
        )

    @staticmethod
    def _result(token: str, response: messaging.SendResponse) -> TokenResultModel:
        """
        Classify a single token outcome.

        Only unregistered and malformed tokens are reported as such, other errors may be transient.

        FCM also answers `INVALID_ARGUMENT` for a bad message, like a payload too large. These are reported as `other`, the tokens are fine.
        """
        if response.success:
            return TokenResultModel(token=token)
        e = response.exception
        if isinstance(e, messaging.UnregisteredError):
            error = TokenErrorEnum.NOT_REGISTERED
        elif isinstance(e, messaging.SenderIdMismatchError) or (
            isinstance(e, InvalidArgumentError) and _is_token_error(e)
        ):
            error = TokenErrorEnum.INVALID
        else:
            error = TokenErrorEnum.OTHER
        return TokenResultModel(
            error=error,
            message=str(e) if e else None,
            token=token,
        )


def _is_token_error(e: InvalidArgumentError) -> bool:
    """
    Check if an invalid argument error is about the registration token, not the message.
    """
    return "registration token" in str(e).lower()
