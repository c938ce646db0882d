import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from app.helpers.cache import get_scheduler
from app.helpers.config import CONFIG
from app.helpers.logging import logger
from app.helpers.monitoring import SpanAttributeEnum, start_as_current_span
from app.helpers.notify_utils import (
    deliver,
    derive_notify_status,
    personal_notification,
    ping_notification,
    space_notification,
    space_recipients,
    user_recipients,
)
from app.models.dispatch import DispatchOutcomeEnum, DispatchReportModel
from app.models.item import (
    ItemChangeModel,
    ItemModel,
    ItemTypeEnum,
    NotifyStatusEnum,
)
from app.models.notification import NotificationModel, RecipientModel
from app.models.ping import PingRequestModel, PingResponseModel

_db = CONFIG.database.instance


@start_as_current_span("on_item_written")
async def on_item_written(
    change: ItemChangeModel,
    now: datetime | None = None,
) -> NotifyStatusEnum | None:
    """
    Callback for when an item is created, updated or deleted.

    Keeps the notification status in line with the reminder time. The write is conditional on the status seen in the event, so a redelivered event does not write twice.

    Returns the new status, or `None` if nothing was written. Raises `PersistenceError` if the item could not be updated, the event should then be redelivered.
    """
    SpanAttributeEnum.ITEM_ID.attribute(change.item_id)
    after = change.after
    if not after:
        logger.info("Item %s deleted", change.item_id)
        return None

    status = derive_notify_status(
        current=after.notify_status,
        had_reminder_before=bool(change.before and change.before.remind_at),
        now=now or datetime.now(UTC),
        remind_at=after.remind_at,
    )
    if not status or status == after.notify_status:
        if after.remind_at and after.notify_status == NotifyStatusEnum.SCHEDULED:
            logger.debug("Item %s reminder is due, leaving it to the scan", change.item_id)
        return None

    updated = await _db.item_update_status(
        expected=after.notify_status,
        item_id=change.item_id,
        status=status,
    )
    if not updated:
        logger.info("Item %s changed since the event, skipping", change.item_id)
        return None

    SpanAttributeEnum.ITEM_NOTIFY_STATUS.attribute(status.value)
    logger.info("Item %s notify status updated to %s", change.item_id, status.value)
    return status


@start_as_current_span("on_reminders_due")
async def on_reminders_due(
    now: datetime | None = None,
) -> DispatchReportModel:
    """
    Callback for the periodic reminder scan.

    Sends the notifications of the scheduled items due before the end of the lookahead window. Each item is first claimed by moving its status out of `scheduled`, so overlapping scans never send the same reminder twice.

    Returns a report of the scan. Raises `PersistenceError` if the search failed.
    """
    job_id = str(uuid4())
    SpanAttributeEnum.JOB_ID.attribute(job_id)
    now = now or datetime.now(UTC)
    boundary = now + timedelta(seconds=CONFIG.reminder.lookahead_sec)
    logger.info("Checking for reminders due before %s", boundary.isoformat())

    report = DispatchReportModel()
    items = await _db.item_search_due(boundary)
    if not items:
        logger.info("No reminders due")
        return report
    logger.info("Found %i items to notify", len(items))

    async with get_scheduler(limit=CONFIG.reminder.concurrency) as scheduler:
        jobs = [
            await scheduler.spawn(
                _reminder_worker(
                    item=item,
                    job_id=job_id,
                )
            )
            for item in items
        ]
        for outcome in await asyncio.gather(*[job.wait() for job in jobs]):
            report.add(outcome)

    logger.info(
        "Processed %i reminders: %i sent, %i cancelled, %i skipped, %i failed",
        report.processed,
        report.sent,
        report.cancelled,
        report.skipped,
        report.failed,
    )
    return report


async def _reminder_worker(
    item: ItemModel,
    job_id: str,
) -> DispatchOutcomeEnum:
    """
    Claim an item, then send its reminder.

    A missing recipient does not prevent the claim, the item must not stay scheduled forever. Errors are logged and reported in the outcome, a single item never aborts the scan.
    """
    SpanAttributeEnum.ITEM_ID.attribute(item.item_id)
    SpanAttributeEnum.ITEM_TYPE.attribute(item.type.value)
    status = (
        NotifyStatusEnum.CANCELLED if item.is_completed else NotifyStatusEnum.SENT
    )

    # Claim
    try:
        claimed = await _db.item_update_status(
            expected=NotifyStatusEnum.SCHEDULED,
            item_id=item.item_id,
            job_id=job_id,
            status=status,
        )
    except Exception:
        logger.exception("Cannot claim item %s, retrying on next scan", item.item_id)
        return DispatchOutcomeEnum.FAILED
    if not claimed:
        logger.info("Item %s already handled by another scan", item.item_id)
        return DispatchOutcomeEnum.SKIPPED

    if item.is_completed:
        logger.info("Item %s completed, reminder cancelled", item.item_id)
        return DispatchOutcomeEnum.CANCELLED

    # Notify
    try:
        recipients, notification = await _reminder_recipients(item)
        if recipients and notification:
            await deliver(
                notification=notification,
                recipients=recipients,
            )
    except Exception:
        # Item is already claimed, a failed send is not retried
        logger.exception("Error sending reminder of item %s", item.item_id)
    return DispatchOutcomeEnum.SENT


async def _reminder_recipients(
    item: ItemModel,
) -> tuple[list[RecipientModel], NotificationModel | None]:
    """
    Resolve who should receive the reminder of an item.

    Returns the recipients and the notification, recipients are empty if nobody can be notified.
    """
    if item.type == ItemTypeEnum.PERSONAL:
        if not item.owner_uid:
            logger.warning("Personal item %s has no owner", item.item_id)
            return [], None
        SpanAttributeEnum.USER_ID.attribute(item.owner_uid)
        user = await _db.user_get(item.owner_uid)
        if not user:
            logger.warning("User %s not found", item.owner_uid)
            return [], None
        recipients = user_recipients(user)
        if not recipients:
            logger.warning("User %s has no FCM tokens", item.owner_uid)
        return recipients, personal_notification(item)

    if not item.space_id:
        logger.warning("Space item %s has no space", item.item_id)
        return [], None
    SpanAttributeEnum.SPACE_ID.attribute(item.space_id)
    space = await _db.space_get(item.space_id)
    if not space:
        logger.warning("Space %s not found", item.space_id)
        return [], None
    recipients = await space_recipients(space)
    if not recipients:
        logger.warning("No FCM tokens found for space %s members", item.space_id)
    return recipients, space_notification(item, space)


@start_as_current_span("on_ping")
async def on_ping(
    from_uid: str,
    ping: PingRequestModel,
) -> PingResponseModel:
    """
    Callback for when a user nudges another one about an item.

    Items are not modified. A target without devices is not an error, the response says nothing was sent.

    Raises `DeliveryError` or `PersistenceError` if the notification could not be handled.
    """
    SpanAttributeEnum.ITEM_ID.attribute(ping.item_id)
    SpanAttributeEnum.SPACE_ID.attribute(ping.space_id)
    SpanAttributeEnum.USER_ID.attribute(ping.to_uid)

    sender, target = await asyncio.gather(
        _db.user_get(from_uid),
        _db.user_get(ping.to_uid),
    )
    if not target:
        logger.info("Ping target %s not found", ping.to_uid)
        return PingResponseModel(
            reason="User not found",
            sent=False,
        )

    recipients = user_recipients(target)
    if not recipients:
        logger.info("Ping target %s has no FCM tokens", ping.to_uid)
        return PingResponseModel(
            reason="No FCM tokens",
            sent=False,
        )

    delivery = await deliver(
        notification=ping_notification(
            from_uid=from_uid,
            item_id=ping.item_id,
            item_title=ping.item_title,
            sender_name=sender.display_name if sender else None,
            space_id=ping.space_id,
            space_name=ping.space_name,
        ),
        recipients=recipients,
    )
    return PingResponseModel(
        failure_count=delivery.failure_count,
        sent=True,
        success_count=delivery.success_count,
    )


async def reminders_trigger() -> None:
    """
    Run the reminder scan forever, at the configured period.

    A failed scan is logged, whatever the error, the next one retries the remaining items.
    """
    period = CONFIG.reminder.period_sec
    logger.info("Reminder scan is set to run every %i secs", period)
    try:
        while True:
            started = asyncio.get_running_loop().time()
            try:
                await on_reminders_due()
            except Exception:
                logger.exception("Reminder scan failed")
            # Keep the period stable whatever the scan duration
            elapsed = asyncio.get_running_loop().time() - started
            await asyncio.sleep(max(0, period - elapsed))
    except asyncio.CancelledError:
        logger.debug("Reminder scan task cancelled")
