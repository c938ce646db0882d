import asyncio
import hmac
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Annotated

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.helpers.config import CONFIG
from app.helpers.identity import verify_id_token
from app.helpers.logging import logger
from app.helpers.monitoring import start_as_current_span
from app.helpers.notify_events import (
    on_item_written,
    on_ping,
    on_reminders_due,
    reminders_trigger,
)
from app.models.dispatch import DispatchReportModel
from app.models.error import ErrorInnerModel, ErrorModel
from app.models.item import ItemChangeModel, ItemEventResponseModel
from app.models.ping import PingRequestModel
from app.models.readiness import ReadinessCheckModel, ReadinessEnum, ReadinessModel
from app.persistence.ipush import DeliveryError
from app.persistence.istore import PersistenceError

# First log
logger.info(
    "reminder-notify v%s",
    CONFIG.version,
)

# Persistences
_db = CONFIG.database.instance
_push = CONFIG.push.instance


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    scan_task = None

    try:
        if CONFIG.reminder.schedule_enabled:
            scan_task = asyncio.create_task(reminders_trigger())
        else:
            logger.info("Reminder scan is disabled, waiting for HTTP calls")
        yield

    # Cancel tasks
    finally:
        if scan_task:
            scan_task.cancel()


# FastAPI
api = FastAPI(
    description="Push notifications for reminders: status of items, scheduled reminders, and nudges between users.",
    lifespan=lifespan,
    title="reminder-notify",
    version=CONFIG.version,
)


@api.get(
    "/health/liveness",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("health_liveness_get")
async def health_liveness_get() -> None:
    """
    Check if the service is running.

    No parameters are expected.

    Returns a 204 No Content if the service is technically running.
    """
    return


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Check if the service is ready to serve requests.

    No parameters are expected. Services tested are: store, push.

    Returns a 200 OK if the service is ready to serve requests. If the service is not ready, it should return a 503 Service Unavailable.
    """
    # Check all components in parallel
    (
        store_check,
        push_check,
    ) = await asyncio.gather(
        _db.readiness(),
        _push.readiness(),
    )
    readiness = ReadinessModel(
        status=ReadinessEnum.OK,
        checks=[
            ReadinessCheckModel(id="store", status=store_check),
            ReadinessCheckModel(id="startup", status=ReadinessEnum.OK),
            ReadinessCheckModel(id="push", status=push_check),
        ],
    )
    # If one of the checks fails, the whole readiness fails
    status_code = HTTPStatus.OK
    for check in readiness.checks:
        if check.status != ReadinessEnum.OK:
            readiness.status = ReadinessEnum.FAIL
            status_code = HTTPStatus.SERVICE_UNAVAILABLE
            break
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=status_code,
    )


@api.post("/items/event")
@start_as_current_span("items_event_post")
async def items_event_post(change: ItemChangeModel) -> ItemEventResponseModel:
    """
    Handle a write on an item document.

    Body is the change, with the document before and after the write. Either can be missing, on creation and deletion.

    Returns the new notification status of the item, `null` if unchanged. A 500 asks the sender to redeliver the event.
    """
    try:
        status = await on_item_written(change)
    except PersistenceError:
        logger.exception("Error handling item %s event", change.item_id)
        raise HTTPException(
            detail="Internal server error",
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )
    return ItemEventResponseModel(
        item_id=change.item_id,
        notify_status=status,
    )


@api.post("/ping")
@start_as_current_span("ping_post")
async def ping_post(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """
    Nudge a user about an item.

    Requires a Firebase ID token as bearer. Body fields are `toUid`, `spaceId`, `itemId`, `itemTitle` and optionally `spaceName`.

    Returns `sent` and the delivery counts, or `sent` as false with a `reason` if the target has no device.
    """
    # Authenticate before anything else, no read is done for anonymous callers
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            detail="Missing authorization token",
            status_code=HTTPStatus.UNAUTHORIZED,
        )
    from_uid = await verify_id_token(authorization.removeprefix("Bearer ").strip())
    if not from_uid:
        raise HTTPException(
            detail="Invalid token",
            status_code=HTTPStatus.UNAUTHORIZED,
        )

    # Validate body
    try:
        ping = PingRequestModel.model_validate(await request.json())
    except (ValidationError, ValueError) as e:
        return _validation_error(e, message="Missing required fields")

    try:
        res = await on_ping(
            from_uid=from_uid,
            ping=ping,
        )
    except (DeliveryError, PersistenceError):
        logger.exception("Error sending ping notification")
        raise HTTPException(
            detail="Internal server error",
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )
    return JSONResponse(
        content=res.model_dump(
            by_alias=True,
            exclude_none=True,
            mode="json",
        ),
        status_code=HTTPStatus.OK,
    )


@api.api_route(
    "/reminders/send",
    methods=["GET", "POST"],
)
@start_as_current_span("reminders_send")
async def reminders_send(
    secret: str | None = None,
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> DispatchReportModel:
    """
    Run a reminder scan now, for external schedulers.

    Requires the shared secret, in the `x-cron-secret` header or the `secret` query parameter.

    Returns the scan report.
    """
    expected = CONFIG.reminder.cron_secret
    received = x_cron_secret or secret
    if (
        not expected
        or not received
        or not hmac.compare_digest(
            expected.get_secret_value().encode(), received.encode()
        )
    ):
        raise HTTPException(
            detail="Unauthorized",
            status_code=HTTPStatus.UNAUTHORIZED,
        )

    try:
        report = await on_reminders_due()
    except PersistenceError:
        logger.exception("Error processing reminders")
        raise HTTPException(
            detail="Internal server error",
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )
    return report


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(RequestValidationError)
@api.exception_handler(ValueError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.
    """
    return _validation_error(exc)


def _validation_error(
    e: ValidationError | Exception,
    message: str = "Validation error",
) -> JSONResponse:
    """
    Generate a standard validation error response.
    """
    messages = []
    if isinstance(e, ValidationError) or isinstance(e, RequestValidationError):
        messages = [
            str(x) for x in e.errors()
        ]  # Pydantic returns well formatted errors, use them
    elif isinstance(e, ValueError):
        messages = [str(e)]
    return _standard_error(
        details=messages,
        message=message,
        status_code=HTTPStatus.BAD_REQUEST,
    )


def _standard_error(
    message: str,
    status_code: HTTPStatus,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    model = ErrorModel(
        error=ErrorInnerModel(
            details=details or [],
            message=message,
        )
    )
    return JSONResponse(
        content=model.model_dump(mode="json"),
        status_code=status_code,
    )
