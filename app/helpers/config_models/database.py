from enum import Enum
from functools import cached_property

from pydantic import BaseModel, ValidationInfo, field_validator

from app.persistence.istore import IStore


class ModeEnum(str, Enum):
    FIRESTORE = "firestore"
    """Use Cloud Firestore."""
    MEMORY = "memory"
    """Use an in-process store, data is lost on restart."""


class FirestoreModel(BaseModel, frozen=True):
    database: str = "(default)"
    items_collection: str = "items"
    spaces_collection: str = "spaces"
    users_collection: str = "users"

    @cached_property
    def instance(self) -> IStore:
        from app.persistence.firestore import (
            FirestoreStore,
        )

        return FirestoreStore(self)


class MemoryModel(BaseModel, frozen=True):
    """
    Represents the configuration for the in-process store.

    Model is purely empty to fit to the `IStore` interface and the "mode" enum code organization.
    """

    @cached_property
    def instance(self) -> IStore:
        from app.persistence.memory import (
            MemoryStore,
        )

        return MemoryStore()


class DatabaseModel(BaseModel):
    mode: ModeEnum = ModeEnum.FIRESTORE  # Declared first, validators below read it
    firestore: FirestoreModel | None = (
        FirestoreModel()
    )  # Object is fully defined by default
    memory: MemoryModel | None = MemoryModel()  # Object is fully defined by default

    @field_validator("firestore")
    @classmethod
    def _validate_firestore(
        cls,
        firestore: FirestoreModel | None,
        info: ValidationInfo,
    ) -> FirestoreModel | None:
        if not firestore and info.data.get("mode", None) == ModeEnum.FIRESTORE:
            raise ValueError("Firestore config required")
        return firestore

    @field_validator("memory")
    @classmethod
    def _validate_memory(
        cls,
        memory: MemoryModel | None,
        info: ValidationInfo,
    ) -> MemoryModel | None:
        if not memory and info.data.get("mode", None) == ModeEnum.MEMORY:
            raise ValueError("Memory config required")
        return memory

    @cached_property
    def instance(self) -> IStore:
        if self.mode == ModeEnum.FIRESTORE:
            assert self.firestore
            return self.firestore.instance

        assert self.memory
        return self.memory.instance
