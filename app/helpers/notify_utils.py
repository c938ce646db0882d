import asyncio
from datetime import datetime

from app.helpers.config import CONFIG
from app.helpers.logging import logger
from app.helpers.monitoring import (
    counter_add,
    notification_failed,
    notification_sent,
    start_as_current_span,
    token_pruned,
)
from app.models.item import ItemModel, ItemTypeEnum, NotifyStatusEnum
from app.models.notification import (
    DeliveryModel,
    NotificationModel,
    RecipientModel,
)
from app.models.space import SpaceModel
from app.models.user import UserModel

_db = CONFIG.database.instance
_push = CONFIG.push.instance


def derive_notify_status(
    current: NotifyStatusEnum,
    had_reminder_before: bool,
    now: datetime,
    remind_at: datetime | None,
) -> NotifyStatusEnum | None:
    """
    Compute the notification status of an item after a write.

    Rules, first match wins:
    1. Reminder in the future, not scheduled yet: `scheduled`
    2. Reminder in the past: left to the reminder scan
    3. Reminder removed while scheduled: `cancelled`
    4. No reminder, before nor after: `none`

    Returns the status to store, or `None` if it should be left as is. The returned status can equal the current one, callers skip the write in that case.
    """
    if remind_at:
        if remind_at > now and current != NotifyStatusEnum.SCHEDULED:
            return NotifyStatusEnum.SCHEDULED
        return None
    if had_reminder_before:
        if current == NotifyStatusEnum.SCHEDULED:
            return NotifyStatusEnum.CANCELLED
        return None
    return NotifyStatusEnum.NONE


def personal_notification(item: ItemModel) -> NotificationModel:
    config = CONFIG.notification
    return NotificationModel(
        android_channel=config.personal_channel,
        apns_badge=config.apns_badge,
        apns_sound=config.apns_sound,
        body=item.title,
        data={
            "itemId": item.item_id,
            "type": ItemTypeEnum.PERSONAL.value,
        },
        title=config.personal_title,
    )


def space_notification(item: ItemModel, space: SpaceModel) -> NotificationModel:
    config = CONFIG.notification
    return NotificationModel(
        android_channel=config.space_channel,
        apns_badge=config.apns_badge,
        apns_sound=config.apns_sound,
        body=item.title,
        data={
            "itemId": item.item_id,
            "spaceId": space.space_id,
            "spaceName": space.name,
            "type": ItemTypeEnum.SPACE.value,
        },
        title=space.display_name,
    )


def ping_notification(
    from_uid: str,
    item_id: str,
    item_title: str,
    sender_name: str | None,
    space_id: str,
    space_name: str | None,
) -> NotificationModel:
    config = CONFIG.notification
    return NotificationModel(
        android_channel=config.ping_channel,
        apns_badge=config.apns_badge,
        apns_sound=config.apns_sound,
        body=config.ping_body_tpl.format(
            item_title=item_title,
            space_name=space_name or config.fallback_space_name,
        ),
        data={
            "fromUid": from_uid,
            "itemId": item_id,
            "spaceId": space_id,
            "type": "ping",
        },
        title=config.ping_title_tpl.format(
            sender_name=sender_name or config.fallback_sender_name,
        ),
    )


def user_recipients(user: UserModel) -> list[RecipientModel]:
    return [RecipientModel(token=token, uid=user.uid) for token in user.tokens]


@start_as_current_span("notify_space_recipients")
async def space_recipients(space: SpaceModel) -> list[RecipientModel]:
    """
    Gather the push tokens of all the members of a space.

    Members are loaded in a single batch. A token shared by many members is kept once, with its first owner.
    """
    uids = list(space.members.keys())
    if not uids:
        logger.warning("Space %s has no members", space.space_id)
        return []

    users = await _db.user_get_all(uids)
    recipients: dict[str, RecipientModel] = {}
    for user in users:
        for recipient in user_recipients(user):
            recipients.setdefault(recipient.token, recipient)
    return list(recipients.values())


@start_as_current_span("notify_deliver")
async def deliver(
    notification: NotificationModel,
    recipients: list[RecipientModel],
) -> DeliveryModel:
    """
    Send a notification to all recipients in one call, then remove the tokens which will never work again.

    Pruning deletes each token from its own user only, it is best-effort and never retried. Raises `DeliveryError` if the messaging service is not reachable.
    """
    tokens = [recipient.token for recipient in recipients]
    delivery = await _push.send(
        notification=notification,
        tokens=tokens,
    )
    logger.info(
        "Notification sent: %i success, %i failed",
        delivery.success_count,
        delivery.failure_count,
    )
    counter_add(notification_sent, delivery.success_count)
    counter_add(notification_failed, delivery.failure_count)

    # Owners were paired with tokens before the send, lookup is direct
    owners = {recipient.token: recipient.uid for recipient in recipients}
    invalids = [
        result
        for result in delivery.results
        if result.error and result.error.prunable and result.token in owners
    ]
    if not invalids:
        return delivery

    deleted = await asyncio.gather(
        *[
            _db.user_delete_token(
                token=result.token,
                uid=owners[result.token],
            )
            for result in invalids
        ]
    )
    delivery.pruned = sum(1 for ok in deleted if ok)
    logger.info("Removed %i invalid tokens", delivery.pruned)
    counter_add(token_pruned, delivery.pruned)
    return delivery
