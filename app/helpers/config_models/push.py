from enum import Enum
from functools import cached_property

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from app.persistence.ipush import IPush


class ModeEnum(str, Enum):
    CONSOLE = "console"
    """Print notifications in the logs, nothing is delivered."""
    FCM = "fcm"
    """Use Firebase Cloud Messaging."""


class ConsoleModel(BaseModel, frozen=True):
    """
    Represents the configuration for the console push.

    Model is purely empty to fit to the `IPush` interface and the "mode" enum code organization.
    """

    @cached_property
    def instance(self) -> IPush:
        from app.persistence.console import (
            ConsolePush,
        )

        return ConsolePush()


class FcmModel(BaseModel, frozen=True):
    batch_size: int = Field(default=500, ge=1, le=500)
    """Tokens per multicast request, FCM refuses more than 500."""
    dry_run: bool = False
    """Validate messages without delivering them."""

    @cached_property
    def instance(self) -> IPush:
        from app.persistence.fcm import (
            FcmPush,
        )

        return FcmPush(self)


class PushModel(BaseModel):
    mode: ModeEnum = ModeEnum.FCM  # Declared first, validators below read it
    console: ConsoleModel | None = ConsoleModel()  # Object is fully defined by default
    fcm: FcmModel | None = FcmModel()  # Object is fully defined by default

    @field_validator("console")
    @classmethod
    def _validate_console(
        cls,
        console: ConsoleModel | None,
        info: ValidationInfo,
    ) -> ConsoleModel | None:
        if not console and info.data.get("mode", None) == ModeEnum.CONSOLE:
            raise ValueError("Console config required")
        return console

    @field_validator("fcm")
    @classmethod
    def _validate_fcm(
        cls,
        fcm: FcmModel | None,
        info: ValidationInfo,
    ) -> FcmModel | None:
        if not fcm and info.data.get("mode", None) == ModeEnum.FCM:
            raise ValueError("FCM config required")
        return fcm

    @cached_property
    def instance(self) -> IPush:
        if self.mode == ModeEnum.FCM:
            assert self.fcm
            return self.fcm.instance

        assert self.console
        return self.console.instance
