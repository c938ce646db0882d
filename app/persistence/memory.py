import asyncio
from datetime import UTC, datetime

from app.helpers.logging import logger
from app.models.item import ItemModel, NotifyStatusEnum
from app.models.readiness import ReadinessEnum
from app.models.space import SpaceModel
from app.models.user import UserModel
from app.persistence.istore import IStore


class MemoryStore(IStore):
    """
    A simple in-process store, for local development and tests.

    Documents are copied on read and write, callers never share an instance with the store. A single lock makes conditional updates atomic.
    """

    _items: dict[str, ItemModel]
    _lock: asyncio.Lock
    _spaces: dict[str, SpaceModel]
    _users: dict[str, UserModel]

    def __init__(self):
        logger.warning(
            "Using memory store, data is lost on restart, prefer Firestore for production"
        )
        self._items = {}
        self._lock = asyncio.Lock()
        self._spaces = {}
        self._users = {}

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the memory store.
        """
        return ReadinessEnum.OK  # Always ready, it's memory :)

    async def item_get(self, item_id: str) -> ItemModel | None:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    def item_set(self, item: ItemModel) -> None:
        self._items[item.item_id] = item.model_copy(deep=True)

    async def item_search_due(self, boundary: datetime) -> list[ItemModel]:
        return [
            item.model_copy(deep=True)
            for item in self._items.values()
            if item.notify_status == NotifyStatusEnum.SCHEDULED
            and item.remind_at
            and item.remind_at <= boundary
        ]

    async def item_update_status(
        self,
        item_id: str,
        status: NotifyStatusEnum,
        expected: NotifyStatusEnum,
        job_id: str | None = None,
    ) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if not item or item.notify_status != expected:
                return False
            item.notify_status = status
            item.updated_at = datetime.now(UTC)
            if job_id:
                item.notify_job_id = job_id
            return True

    async def space_get(self, space_id: str) -> SpaceModel | None:
        space = self._spaces.get(space_id)
        return space.model_copy(deep=True) if space else None

    def space_set(self, space: SpaceModel) -> None:
        self._spaces[space.space_id] = space.model_copy(deep=True)

    async def user_get(self, uid: str) -> UserModel | None:
        user = self._users.get(uid)
        return user.model_copy(deep=True) if user else None

    async def user_get_all(self, uids: list[str]) -> list[UserModel]:
        return [
            self._users[uid].model_copy(deep=True)
            for uid in uids
            if uid in self._users
        ]

    def user_set(self, user: UserModel) -> None:
        self._users[user.uid] = user.model_copy(deep=True)

    async def user_delete_token(self, uid: str, token: str) -> bool:
        async with self._lock:
            user = self._users.get(uid)
            if not user or token not in user.fcm_tokens:
                return False
            user.fcm_tokens.pop(token)
            return True
