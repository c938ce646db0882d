from abc import ABC, abstractmethod
from datetime import datetime

from app.helpers.monitoring import start_as_current_span
from app.models.item import ItemModel, NotifyStatusEnum
from app.models.readiness import ReadinessEnum
from app.models.space import SpaceModel
from app.models.user import UserModel


class PersistenceError(Exception):
    """
    The database could not be reached, or refused the request.

    Callers abort the current unit of work, the data is left untouched.
    """


class IStore(ABC):
    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("store_item_get")
    async def item_get(
        self,
        item_id: str,
    ) -> ItemModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_item_search_due")
    async def item_search_due(
        self,
        boundary: datetime,
    ) -> list[ItemModel]:
        """
        Search items with a scheduled notification, and a reminder before the boundary.

        Results are not ordered.
        """

    @abstractmethod
    @start_as_current_span("store_item_update_status")
    async def item_update_status(
        self,
        item_id: str,
        status: NotifyStatusEnum,
        expected: NotifyStatusEnum,
        job_id: str | None = None,
    ) -> bool:
        """
        Atomically update the notification status, only if the stored one is `expected`.

        Update timestamp is set by the server. If `job_id` is given, it is stored with the status.

        Returns `True` if the item was updated, `False` if it does not exist or its status changed meanwhile.
        """

    @abstractmethod
    @start_as_current_span("store_space_get")
    async def space_get(
        self,
        space_id: str,
    ) -> SpaceModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_user_get")
    async def user_get(
        self,
        uid: str,
    ) -> UserModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_user_get_all")
    async def user_get_all(
        self,
        uids: list[str],
    ) -> list[UserModel]:
        """
        Get many users in a single round-trip.

        Missing users are not returned.
        """

    @abstractmethod
    @start_as_current_span("store_user_delete_token")
    async def user_delete_token(
        self,
        uid: str,
        token: str,
    ) -> bool:
        """
        Remove a single push token from a user, other tokens are untouched.

        Never raises, failures are logged.

        Returns `True` if the token was deleted.
        """
