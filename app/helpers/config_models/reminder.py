from pydantic import BaseModel, Field, SecretStr, model_validator


class ReminderModel(BaseModel):
    concurrency: int = Field(default=10, ge=1)
    """Items processed in parallel by a single scan."""
    cron_secret: SecretStr | None = None
    """Shared secret of the HTTP scan endpoint. The endpoint refuses all requests if not set."""
    lookahead_sec: int = Field(default=60, ge=0)
    """Reminders due before now plus this delay are sent by the current scan."""
    period_sec: int = Field(default=60, ge=1)
    """Delay between two scans of the background loop."""
    schedule_enabled: bool = True
    """Run the background loop, disable it when an external scheduler calls the HTTP endpoint."""

    @model_validator(mode="after")
    def _validate_lookahead(self) -> "ReminderModel":
        # A shorter window than the period leaves reminders unsent until they are late
        if self.schedule_enabled and self.lookahead_sec < self.period_sec:
            raise ValueError("lookahead_sec must be greater or equal to period_sec")
        return self
