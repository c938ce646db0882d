from datetime import datetime
from typing import TypeVar

from firebase_admin import firestore_async
from google.api_core.exceptions import FailedPrecondition, GoogleAPIError, NotFound
from google.cloud.firestore import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    AsyncClient,
    AsyncTransaction,
    DocumentSnapshot,
    FieldFilter,
    async_transactional,
)
from google.cloud.firestore_v1.field_path import FieldPath
from pydantic import ValidationError

from app.helpers.cache import lru_acache
from app.helpers.config_models.database import FirestoreModel
from app.helpers.identity import firebase_app
from app.helpers.logging import logger
from app.models.document import DocumentModel
from app.models.item import ItemModel, NotifyStatusEnum
from app.models.readiness import ReadinessEnum
from app.models.space import SpaceModel
from app.models.user import UserModel
from app.persistence.istore import IStore, PersistenceError

T = TypeVar("T", bound=DocumentModel)


class FirestoreStore(IStore):
    _config: FirestoreModel

    def __init__(self, config: FirestoreModel):
        logger.info(
            "Using Firestore database %s (items %s, spaces %s, users %s)",
            config.database,
            config.items_collection,
            config.spaces_collection,
            config.users_collection,
        )
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Firestore service.

        The service only writes status fields, so the check is a read of a single item.
        """
        try:
            client = await self._use_client()
            async for _ in client.collection(self._config.items_collection).limit(
                1
            ).stream():
                pass
            return ReadinessEnum.OK
        except GoogleAPIError:
            logger.exception("Error requesting Firestore")
        except Exception:
            logger.exception("Unknown error while checking Firestore readiness")
        return ReadinessEnum.FAIL

    async def item_get(self, item_id: str) -> ItemModel | None:
        logger.debug("Loading item %s", item_id)
        return await self._get(
            collection=self._config.items_collection,
            doc_id=item_id,
            id_field="itemId",
            model=ItemModel,
        )

    async def item_search_due(self, boundary: datetime) -> list[ItemModel]:
        logger.debug("Searching scheduled items due before %s", boundary)
        client = await self._use_client()
        # Requires a composite index on (notifyStatus, remindAt)
        query = (
            client.collection(self._config.items_collection)
            .where(
                filter=FieldFilter(
                    "notifyStatus", "==", NotifyStatusEnum.SCHEDULED.value
                )
            )
            .where(filter=FieldFilter("remindAt", "<=", boundary))
        )
        items: list[ItemModel] = []
        invalids: list[DocumentSnapshot] = []
        try:
            async for snapshot in query.stream():
                item = self._parse(
                    id_field="itemId",
                    model=ItemModel,
                    snapshot=snapshot,
                )
                if item:
                    items.append(item)
                else:
                    invalids.append(snapshot)
        except GoogleAPIError as e:
            raise PersistenceError("Cannot search due items") from e

        for snapshot in invalids:
            await self._item_cancel_invalid(client, snapshot)
        return items

    async def _item_cancel_invalid(
        self,
        client: AsyncClient,
        snapshot: DocumentSnapshot,
    ) -> None:
        """
        Cancel the reminder of an item which cannot be read, so it is not matched again by every scan.

        The write is conditional on the document not being modified since the search. Failures are logged, the next scan tries again.
        """
        logger.warning("Cancelling reminder of unreadable item %s", snapshot.id)
        try:
            await snapshot.reference.update(
                {
                    "notifyStatus": NotifyStatusEnum.CANCELLED.value,
                    "updatedAt": SERVER_TIMESTAMP,
                },
                option=client.write_option(last_update_time=snapshot.update_time),
            )
        except (FailedPrecondition, NotFound):
            logger.info("Item %s changed since the search, skipping", snapshot.id)
        except GoogleAPIError:
            logger.exception("Error cancelling item %s", snapshot.id)

    async def item_update_status(
        self,
        item_id: str,
        status: NotifyStatusEnum,
        expected: NotifyStatusEnum,
        job_id: str | None = None,
    ) -> bool:
        logger.debug(
            "Updating item %s status from %s to %s", item_id, expected.value, status.value
        )
        client = await self._use_client()
        ref = client.collection(self._config.items_collection).document(item_id)

        @async_transactional
        async def _update(transaction: AsyncTransaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                logger.warning("Item %s not found", item_id)
                return False
            current = (snapshot.to_dict() or {}).get(
                "notifyStatus", NotifyStatusEnum.NONE.value
            )
            if current != expected.value:
                logger.info(
                    "Item %s status is %s, expected %s, skipping",
                    item_id,
                    current,
                    expected.value,
                )
                return False
            fields = {
                "notifyStatus": status.value,
                "updatedAt": SERVER_TIMESTAMP,
            }
            if job_id:
                fields["notifyJobId"] = job_id
            transaction.update(ref, fields)
            return True

        try:
            return await _update(client.transaction())
        except GoogleAPIError as e:
            raise PersistenceError(f"Cannot update item {item_id}") from e

    async def space_get(self, space_id: str) -> SpaceModel | None:
        logger.debug("Loading space %s", space_id)
        return await self._get(
            collection=self._config.spaces_collection,
            doc_id=space_id,
            id_field="spaceId",
            model=SpaceModel,
        )

    async def user_get(self, uid: str) -> UserModel | None:
        logger.debug("Loading user %s", uid)
        return await self._get(
            collection=self._config.users_collection,
            doc_id=uid,
            id_field="uid",
            model=UserModel,
        )

    async def user_get_all(self, uids: list[str]) -> list[UserModel]:
        logger.debug("Loading %i users", len(uids))
        if not uids:
            return []
        client = await self._use_client()
        refs = [
            client.collection(self._config.users_collection).document(uid)
            for uid in uids
        ]
        users: list[UserModel] = []
        try:
            async for snapshot in client.get_all(refs):
                if not snapshot.exists:
                    logger.debug("User %s not found", snapshot.id)
                    continue
                user = self._parse(
                    id_field="uid",
                    model=UserModel,
                    snapshot=snapshot,
                )
                if user:
                    users.append(user)
        except GoogleAPIError as e:
            raise PersistenceError("Cannot load users") from e
        return users

    async def user_delete_token(self, uid: str, token: str) -> bool:
        logger.debug("Deleting a push token of user %s", uid)
        client = await self._use_client()
        # Tokens contain characters not allowed in a dotted path, quote them
        field = FieldPath("fcmTokens", token).to_api_repr()
        try:
            await (
                client.collection(self._config.users_collection)
                .document(uid)
                .update({field: DELETE_FIELD})
            )
            return True
        except NotFound:
            logger.warning("User %s not found, cannot delete token", uid)
        except GoogleAPIError:
            logger.exception("Error deleting token of user %s", uid)
        return False

    async def _get(
        self,
        collection: str,
        doc_id: str,
        id_field: str,
        model: type[T],
    ) -> T | None:
        client = await self._use_client()
        try:
            snapshot = await client.collection(collection).document(doc_id).get()
        except GoogleAPIError as e:
            raise PersistenceError(f"Cannot load {collection}/{doc_id}") from e
        if not snapshot.exists:
            return None
        return self._parse(
            id_field=id_field,
            model=model,
            snapshot=snapshot,
        )

    @staticmethod
    def _parse(
        id_field: str,
        model: type[T],
        snapshot: DocumentSnapshot,
    ) -> T | None:
        """
        Validate a document, the document identifier takes precedence over the stored one.

        Returns `None` if the document does not match the model.
        """
        try:
            return model.model_validate(
                {
                    **(snapshot.to_dict() or {}),
                    id_field: snapshot.id,
                }
            )
        except ValidationError as e:
            logger.warning("Parsing error for document %s: %s", snapshot.id, e.errors())
        return None

    @lru_acache()
    async def _use_client(self) -> AsyncClient:
        """
        Get the Firestore client, bound to the Firebase app.

        Object is cached for performance.
        """
        logger.debug("Using Firestore client for %s", self._config.database)
        return firestore_async.client(
            app=firebase_app(),
            database_id=self._config.database,
        )
