from datetime import UTC, datetime, timedelta
from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient
from pytest_assume.plugin import assume

from app.models.item import ItemModel, NotifyStatusEnum
from app.models.readiness import ReadinessEnum
from app.persistence.istore import PersistenceError
from app.persistence.memory import MemoryStore
from tests.conftest import PushMock, personal_item, user


def test_liveness(client: TestClient) -> None:
    res = client.get("/health/liveness")

    assume(res.status_code == HTTPStatus.NO_CONTENT)


def test_readiness(client: TestClient) -> None:
    res = client.get("/health/readiness")

    assume(res.status_code == HTTPStatus.OK)
    body = res.json()
    assume(body["status"] == ReadinessEnum.OK.value)
    assume({check["id"] for check in body["checks"]} == {"push", "startup", "store"})


def test_readiness_push_down(
    client: TestClient,
    push: PushMock,
) -> None:
    push.down = True

    res = client.get("/health/readiness")

    assume(res.status_code == HTTPStatus.SERVICE_UNAVAILABLE)
    assume(res.json()["status"] == ReadinessEnum.FAIL.value)


def test_item_event_schedules(
    client: TestClient,
    db: MemoryStore,
    now: datetime,
) -> None:
    """
    Test a new item with a future reminder gets scheduled through the webhook.
    """
    item = personal_item(
        notify_status=NotifyStatusEnum.NONE,
        owner_uid="u1",
        remind_at=now + timedelta(hours=1),
    )
    db.item_set(item)

    res = client.post(
        "/items/event",
        json={
            "after": item.model_dump(by_alias=True, mode="json"),
            "itemId": item.item_id,
        },
    )

    assume(res.status_code == HTTPStatus.OK)
    assume(res.json() == {"itemId": item.item_id, "notifyStatus": "scheduled"})
    stored = db._items[item.item_id]
    assume(stored.notify_status == NotifyStatusEnum.SCHEDULED)


def test_item_event_deleted(client: TestClient) -> None:
    res = client.post(
        "/items/event",
        json={
            "before": {"type": "personal", "title": "Buy milk"},
            "itemId": "deleted",
        },
    )

    assume(res.status_code == HTTPStatus.OK)
    assume(res.json() == {"itemId": "deleted", "notifyStatus": None})


def test_item_event_invalid(client: TestClient) -> None:
    res = client.post("/items/event", json={"after": {"title": "No id"}})

    assume(res.status_code == HTTPStatus.BAD_REQUEST)
    assume(res.json()["error"]["details"])


def test_item_event_store_down(
    client: TestClient,
    db: MemoryStore,
    monkeypatch: pytest.MonkeyPatch,
    now: datetime,
) -> None:
    """
    Test a failed write answers an error, so the event is delivered again.
    """

    async def _failing_update(*args, **kwargs) -> bool:  # noqa: ARG001
        raise PersistenceError("Database is down")

    monkeypatch.setattr(db, "item_update_status", _failing_update)
    item = personal_item(
        notify_status=NotifyStatusEnum.NONE,
        owner_uid="u1",
        remind_at=now + timedelta(hours=1),
    )

    res = client.post(
        "/items/event",
        json={
            "after": item.model_dump(by_alias=True, mode="json"),
            "itemId": item.item_id,
        },
    )

    assume(res.status_code == HTTPStatus.INTERNAL_SERVER_ERROR)


@pytest.mark.parametrize(
    "method",
    ["get", "post"],
)
@pytest.mark.parametrize(
    "headers, params",
    [
        pytest.param({"x-cron-secret": "dummy-secret"}, {}, id="header"),
        pytest.param({}, {"secret": "dummy-secret"}, id="query"),
    ],
)
def test_reminders_send(
    method: str,
    headers: dict[str, str],
    params: dict[str, str],
    client: TestClient,
    db: MemoryStore,
    push: PushMock,
    now: datetime,
) -> None:
    """
    Test an external scheduler can run a scan with the shared secret.
    """
    db.user_set(user("u1", ["t1"]))
    db.item_set(personal_item(owner_uid="u1", remind_at=now - timedelta(seconds=5)))

    res = client.request(method.upper(), "/reminders/send", headers=headers, params=params)

    assume(res.status_code == HTTPStatus.OK)
    assume(
        res.json()
        == {
            "cancelled": 0,
            "failed": 0,
            "processed": 1,
            "sent": 1,
            "skipped": 0,
        }
    )
    assume(len(push.calls) == 1)


@pytest.mark.parametrize(
    "headers, params",
    [
        pytest.param({}, {}, id="missing"),
        pytest.param({"x-cron-secret": "wrong"}, {}, id="wrong_header"),
        pytest.param({}, {"secret": "wrong"}, id="wrong_query"),
    ],
)
def test_reminders_send_unauthorized(
    headers: dict[str, str],
    params: dict[str, str],
    client: TestClient,
    db: MemoryStore,
    push: PushMock,
    now: datetime,
) -> None:
    db.user_set(user("u1", ["t1"]))
    item = personal_item(owner_uid="u1", remind_at=now)
    db.item_set(item)

    res = client.post("/reminders/send", headers=headers, params=params)

    assume(res.status_code == HTTPStatus.UNAUTHORIZED)
    assume(not push.calls)
    assume(db._items[item.item_id].notify_status == NotifyStatusEnum.SCHEDULED)


def test_reminders_send_store_down(
    client: TestClient,
    db: MemoryStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _failing_search(*args, **kwargs) -> list:  # noqa: ARG001
        raise PersistenceError("Database is down")

    monkeypatch.setattr(db, "item_search_due", _failing_search)
    res = client.post("/reminders/send", headers={"x-cron-secret": "dummy-secret"})

    assume(res.status_code == HTTPStatus.INTERNAL_SERVER_ERROR)


def test_item_event_naive_reminder(
    client: TestClient,
    db: MemoryStore,
) -> None:
    """
    Test a reminder time without timezone is read as UTC, instead of failing the event.
    """
    after = {
        "isCompleted": False,
        "notifyStatus": "none",
        "ownerUid": "u1",
        "remindAt": "2099-01-01T10:00:00",
        "title": "Buy milk",
        "type": "personal",
    }
    db.item_set(ItemModel.model_validate({**after, "itemId": "i1"}))

    res = client.post("/items/event", json={"after": after, "itemId": "i1"})

    assume(res.status_code == HTTPStatus.OK)
    assume(res.json() == {"itemId": "i1", "notifyStatus": "scheduled"})
    stored = db._items["i1"]
    assume(stored.remind_at == datetime(2099, 1, 1, 10, tzinfo=UTC))
