from enum import Enum

from app.models.document import DocumentModel


class DispatchOutcomeEnum(str, Enum):
    CANCELLED = "cancelled"
    """Item was completed, nothing sent."""
    FAILED = "failed"
    """Item could not be claimed, it stays scheduled for the next scan."""
    SENT = "sent"
    """Item was claimed and its notification handled."""
    SKIPPED = "skipped"
    """Item was already claimed by another scan."""


class DispatchReportModel(DocumentModel):
    cancelled: int = 0
    failed: int = 0
    processed: int = 0
    sent: int = 0
    skipped: int = 0

    def add(self, outcome: DispatchOutcomeEnum) -> None:
        self.processed += 1
        if outcome == DispatchOutcomeEnum.CANCELLED:
            self.cancelled += 1
        elif outcome == DispatchOutcomeEnum.FAILED:
            self.failed += 1
        elif outcome == DispatchOutcomeEnum.SENT:
            self.sent += 1
        else:
            self.skipped += 1
