from abc import ABC, abstractmethod
from datetime import datetime

from fodsync.models.record import ClassificationRecord


class AbstractRecordStore(ABC):
    @abstractmethod
    def get_unsubmitted_records(self) -> list[ClassificationRecord]:
        """Records with no submitted_at whose status is UNKNOWN or PENDING."""

    @abstractmethod
    def get_submitted_unprocessed_records(self) -> list[ClassificationRecord]:
        """PENDING records with submitted_at set and processed_at unset."""

    @abstractmethod
    def get_records_by_ids(self, ids: list[str]) -> list[ClassificationRecord]:
        """Return the stored records among the given ids. Unknown ids are skipped."""

    @abstractmethod
    def apply_updates(self, records: list[ClassificationRecord]) -> None:
        """Upsert records by id in one transaction."""

    @abstractmethod
    def reset_submitted_at_for_missing(self, ids: list[str]) -> int:
        """Clear submitted_at for the given ids, leaving status alone. Returns rows changed."""

    @abstractmethod
    def save_new_records(self, records: list[ClassificationRecord]) -> list[str]:
        """Insert records whose id is not stored yet. Returns the ids that were inserted."""

    @abstractmethod
    def stamp_submitted(self, ids: list[str], submitted_at: datetime) -> int:
        """Set submitted_at on unprocessed records, leaving every other column alone."""

    @abstractmethod
    def mark_pending(self, ids: list[str]) -> int:
        """Move unprocessed UNKNOWN/PENDING records to PENDING. Processed records are skipped."""

    @abstractmethod
    def reopen_stranded_submissions(self) -> int:
        """Clear submitted_at on UNKNOWN records that were stamped but never marked PENDING."""
