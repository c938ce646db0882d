import json
import random
import string
from datetime import UTC, datetime, timedelta
from os import environ

# Local backends only, set before the app config is loaded
environ["CONFIG_JSON"] = json.dumps(
    {
        "database": {"mode": "memory"},
        "push": {"mode": "console"},
        "reminder": {
            "cron_secret": "dummy-secret",
            "schedule_enabled": False,
        },
    }
)

import pytest
from fastapi.testclient import TestClient

from app import main
from app.helpers import notify_events, notify_utils
from app.models.item import ItemModel, ItemTypeEnum, NotifyStatusEnum
from app.models.notification import (
    DeliveryModel,
    NotificationModel,
    TokenErrorEnum,
    TokenResultModel,
)
from app.models.readiness import ReadinessEnum
from app.models.space import MemberModel, SpaceModel
from app.models.user import UserModel
from app.persistence.ipush import DeliveryError, IPush
from app.persistence.memory import MemoryStore


class PushMock(IPush):
    """
    Records the sends instead of delivering them.

    Tokens listed in `errors` fail with the given error, all the others succeed.
    """

    calls: list[tuple[NotificationModel, list[str]]]
    down: bool
    errors: dict[str, TokenErrorEnum]

    def __init__(self) -> None:
        self.calls = []
        self.down = False
        self.errors = {}

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.FAIL if self.down else ReadinessEnum.OK

    async def send(
        self,
        notification: NotificationModel,
        tokens: list[str],
    ) -> DeliveryModel:
        if self.down:
            raise DeliveryError("Push is down")
        self.calls.append((notification, list(tokens)))
        return DeliveryModel(
            results=[
                TokenResultModel(
                    error=self.errors.get(token),
                    message="dummy" if token in self.errors else None,
                    token=token,
                )
                for token in tokens
            ]
        )


@pytest.fixture
def random_text() -> str:
    text = "".join(random.choice(string.ascii_letters) for _ in range(20))
    return text


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def db(monkeypatch: pytest.MonkeyPatch) -> MemoryStore:
    """
    Empty store, shared by all the modules for the duration of the test.
    """
    store = MemoryStore()
    for module in (main, notify_events, notify_utils):
        monkeypatch.setattr(module, "_db", store)
    return store


@pytest.fixture
def push(monkeypatch: pytest.MonkeyPatch) -> PushMock:
    mock = PushMock()
    for module in (main, notify_utils):
        monkeypatch.setattr(module, "_push", mock)
    return mock


@pytest.fixture
def client(
    db: MemoryStore,  # noqa: ARG001
    push: PushMock,  # noqa: ARG001
) -> TestClient:
    # Lifespan is not started, the background scan stays off
    return TestClient(main.api)


def personal_item(
    owner_uid: str,
    remind_at: datetime | None,
    is_completed: bool = False,
    item_id: str = "item-personal",
    notify_status: NotifyStatusEnum = NotifyStatusEnum.SCHEDULED,
) -> ItemModel:
    return ItemModel(
        created_by_uid=owner_uid,
        is_completed=is_completed,
        item_id=item_id,
        notify_status=notify_status,
        owner_uid=owner_uid,
        remind_at=remind_at,
        title="Buy milk",
        type=ItemTypeEnum.PERSONAL,
    )


def space_item(
    space_id: str,
    remind_at: datetime | None,
    item_id: str = "item-space",
    notify_status: NotifyStatusEnum = NotifyStatusEnum.SCHEDULED,
) -> ItemModel:
    return ItemModel(
        item_id=item_id,
        notify_status=notify_status,
        remind_at=remind_at,
        space_id=space_id,
        title="Water the plants",
        type=ItemTypeEnum.SPACE,
    )


def user(
    uid: str,
    tokens: list[str],
    display_name: str | None = None,
) -> UserModel:
    return UserModel(
        display_name=display_name,
        fcm_tokens={token: True for token in tokens},
        handle=uid,
        uid=uid,
    )


def space(
    space_id: str,
    member_uids: list[str],
    emoji: str | None = None,
    name: str = "Home",
) -> SpaceModel:
    return SpaceModel(
        emoji=emoji,
        members={
            uid: MemberModel(
                joined_at=datetime.now(UTC) - timedelta(days=1),
                role="member",
            )
            for uid in member_uids
        },
        name=name,
        owner_uid=member_uids[0] if member_uids else None,
        space_id=space_id,
    )
