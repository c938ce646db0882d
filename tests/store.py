import asyncio
from datetime import datetime, timedelta

import pytest
from pytest_assume.plugin import assume

from app.models.item import NotifyStatusEnum
from app.persistence.memory import MemoryStore
from tests.conftest import personal_item, space, user


@pytest.mark.asyncio(loop_scope="session")
async def test_isolation(
    db: MemoryStore,
    random_text: str,
    now: datetime,
) -> None:
    """
    Test documents returned by the store are copies.

    Steps:
    1. Insert an item
    2. Modify the returned copy
    3. Check the stored item is untouched
    """
    db.item_set(personal_item(owner_uid="u1", remind_at=now))

    item = await db.item_get("item-personal")
    assert item
    item.title = random_text
    item.notify_status = NotifyStatusEnum.CANCELLED

    stored = await db.item_get("item-personal")
    assume(stored and stored.title != random_text)
    assume(stored and stored.notify_status == NotifyStatusEnum.SCHEDULED)

    # Missing documents
    assume(not await db.item_get(random_text))
    assume(not await db.space_get(random_text))
    assume(not await db.user_get(random_text))


@pytest.mark.asyncio(loop_scope="session")
async def test_search_due(
    db: MemoryStore,
    now: datetime,
) -> None:
    db.item_set(personal_item(item_id="past", owner_uid="u1", remind_at=now - timedelta(days=1)))
    db.item_set(personal_item(item_id="edge", owner_uid="u1", remind_at=now))
    db.item_set(personal_item(item_id="future", owner_uid="u1", remind_at=now + timedelta(seconds=1)))
    db.item_set(personal_item(item_id="no-reminder", owner_uid="u1", remind_at=None))
    db.item_set(
        personal_item(
            item_id="sent",
            notify_status=NotifyStatusEnum.SENT,
            owner_uid="u1",
            remind_at=now - timedelta(days=1),
        )
    )

    items = await db.item_search_due(now)

    assume(sorted(item.item_id for item in items) == ["edge", "past"])


@pytest.mark.asyncio(loop_scope="session")
async def test_conditional_update(
    db: MemoryStore,
    random_text: str,
    now: datetime,
) -> None:
    """
    Test the status is only updated if it still has the expected value.
    """
    db.item_set(personal_item(owner_uid="u1", remind_at=now))

    # Wrong expectation
    assume(
        not await db.item_update_status(
            expected=NotifyStatusEnum.NONE,
            item_id="item-personal",
            status=NotifyStatusEnum.SENT,
        )
    )
    # Missing item
    assume(
        not await db.item_update_status(
            expected=NotifyStatusEnum.SCHEDULED,
            item_id=random_text,
            status=NotifyStatusEnum.SENT,
        )
    )
    # Right expectation
    assume(
        await db.item_update_status(
            expected=NotifyStatusEnum.SCHEDULED,
            item_id="item-personal",
            job_id=random_text,
            status=NotifyStatusEnum.SENT,
        )
    )

    stored = await db.item_get("item-personal")
    assert stored
    assume(stored.notify_status == NotifyStatusEnum.SENT)
    assume(stored.notify_job_id == random_text)
    assume(stored.updated_at is not None)


@pytest.mark.asyncio(loop_scope="session")
@pytest.mark.repeat(10)  # Catch multi-threading and concurrency issues
async def test_conditional_update_race(
    db: MemoryStore,
    now: datetime,
) -> None:
    """
    Test only one of many concurrent updates wins.

    Test is repeated 10 times to catch concurrency issues.
    """
    db.item_set(personal_item(owner_uid="u1", remind_at=now))

    results = await asyncio.gather(
        *[
            db.item_update_status(
                expected=NotifyStatusEnum.SCHEDULED,
                item_id="item-personal",
                job_id=str(i),
                status=NotifyStatusEnum.SENT,
            )
            for i in range(20)
        ]
    )

    assume(results.count(True) == 1)


@pytest.mark.asyncio(loop_scope="session")
async def test_get_all_users(db: MemoryStore) -> None:
    db.user_set(user("u1", ["t1"]))
    db.user_set(user("u2", ["t2"]))

    users = await db.user_get_all(["u1", "ghost", "u2"])

    assume([user.uid for user in users] == ["u1", "u2"])


@pytest.mark.asyncio(loop_scope="session")
async def test_space_members(db: MemoryStore) -> None:
    db.space_set(space("s1", ["u1", "u2"], emoji="🌱", name="Garden"))

    stored = await db.space_get("s1")

    assert stored
    assume(sorted(stored.members) == ["u1", "u2"])
    assume(stored.display_name == "🌱 Garden")


@pytest.mark.asyncio(loop_scope="session")
async def test_delete_token(db: MemoryStore) -> None:
    """
    Test a token is removed from its user only, the other tokens are kept.
    """
    db.user_set(user("u1", ["t1", "t2"]))
    db.user_set(user("u2", ["t1"]))

    assume(await db.user_delete_token(token="t1", uid="u1"))
    # Already deleted
    assume(not await db.user_delete_token(token="t1", uid="u1"))
    # Missing user
    assume(not await db.user_delete_token(token="t1", uid="ghost"))

    u1 = await db.user_get("u1")
    u2 = await db.user_get("u2")
    assume(u1 and u1.tokens == ["t2"])
    assume(u2 and u2.tokens == ["t1"])
