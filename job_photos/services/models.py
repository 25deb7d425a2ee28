"""Data types shared by the photo upload pipeline."""

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from job_photos.services.errors import BatchSummaryError
from job_photos.services.utils import format_file_size, leaf_name


class PhotoCategory(Enum):
    """Semantic bucket a photo belongs to."""

    BEFORE = "before"
    AFTER = "after"
    ADDITIONAL = "additional"

    @property
    def is_image_bearing(self) -> bool:
        """Whether files in this category are expected to be photos."""
        return self is not PhotoCategory.ADDITIONAL


@dataclass(frozen=True)
class SelectedFile:
    """A file as selected by the user, held in memory."""

    filename: str
    content: bytes = field(repr=False)
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": self.size,
            "size_formatted": format_file_size(self.size),
        }


@dataclass(frozen=True)
class UploadTask:
    """One file scheduled for upload within a batch."""

    source_file: SelectedFile
    category: PhotoCategory
    ordinal_index: int
    extra_annotation: str | None = None

    @property
    def filename(self) -> str:
        return self.source_file.filename


def _parse_booking_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # Accept full ISO timestamps as well as plain dates
    return date.fromisoformat(value[:10])


@dataclass(frozen=True)
class BookingContext:
    """Identifiers shared by every file in a batch."""

    booking_id: int
    customer_id: int
    cleaner_id: int | None
    postcode: str
    booking_date: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "booking_date", _parse_booking_date(self.booking_date))

    @classmethod
    def from_mapping(cls, data: Any) -> "BookingContext":
        """Build a context from request form or query arguments.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field cannot be parsed
        """
        cleaner = data.get("cleaner_id")
        return cls(
            booking_id=int(data["booking_id"]),
            customer_id=int(data["customer_id"]),
            cleaner_id=int(cleaner) if cleaner not in (None, "") else None,
            postcode=str(data["postcode"]),
            booking_date=data["booking_date"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "customer_id": self.customer_id,
            "cleaner_id": self.cleaner_id,
            "postcode": self.postcode,
            "booking_date": self.booking_date.isoformat(),
        }


@dataclass
class MetadataRecord:
    """Durable row describing one stored photo or document."""

    booking_id: int
    customer_id: int
    cleaner_id: int | None
    file_path: str
    category: PhotoCategory
    postcode: str
    booking_date: date
    annotation: str | None = None
    id: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "customer_id": self.customer_id,
            "cleaner_id": self.cleaner_id,
            "file_path": self.file_path,
            "category": self.category.value,
            "postcode": self.postcode,
            "booking_date": self.booking_date.isoformat(),
            "annotation": self.annotation,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class OrphanRecord:
    """Storage object under a known prefix with no metadata row. Never persisted."""

    file_path: str
    booking_id: int
    category: PhotoCategory = PhotoCategory.ADDITIONAL
    size: int = 0
    last_modified: str = ""

    @property
    def filename(self) -> str:
        return leaf_name(self.file_path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "filename": self.filename,
            "booking_id": self.booking_id,
            "category": self.category.value,
            "size": self.size,
            "size_formatted": format_file_size(self.size),
            "last_modified": self.last_modified,
            "storage_only": True,
        }


@dataclass(frozen=True)
class TaskOutcome:
    """Settled state of one task: the stored key, or the failure reason."""

    category: PhotoCategory
    ordinal_index: int
    filename: str
    file_path: str = ""
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


_LABEL_SUFFIX = re.compile(r"^(.*) \((\d+)\)$")


@dataclass
class BatchResult:
    """Outcome of one scheduler run, or several merged together.

    ``failures`` is keyed by filename. A repeated name is filed as
    "image.jpg (2)", "image.jpg (3)" and so on, one entry per failed task.
    """

    succeeded_keys: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    total_count: int = 0
    outcomes: list[TaskOutcome] = field(default_factory=list)

    @property
    def uploaded_count(self) -> int:
        return len(self.succeeded_keys)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures

    def _unique_label(self, filename: str) -> str:
        label = filename
        n = 1
        while label in self.failures:
            n += 1
            label = f"{filename} ({n})"
        return label

    def add_success(self, task: UploadTask, key: str) -> None:
        self.succeeded_keys.append(key)
        self.outcomes.append(TaskOutcome(task.category, task.ordinal_index, task.filename, key))

    def add_failure(self, task: UploadTask, reason: str) -> str:
        """Record a failed task and return the label it was filed under."""
        label = self._unique_label(task.filename)
        self.failures[label] = reason
        self.outcomes.append(
            TaskOutcome(task.category, task.ordinal_index, task.filename, error=reason)
        )
        return label

    def outcome_for(self, category: PhotoCategory, ordinal_index: int) -> TaskOutcome | None:
        for outcome in self.outcomes:
            if outcome.category is category and outcome.ordinal_index == ordinal_index:
                return outcome
        return None

    def merge(self, other: "BatchResult") -> "BatchResult":
        """Combine two results, e.g. the before and after batches of one request."""
        merged = BatchResult(
            succeeded_keys=self.succeeded_keys + other.succeeded_keys,
            failures=dict(self.failures),
            total_count=self.total_count + other.total_count,
            outcomes=self.outcomes + other.outcomes,
        )
        for label, reason in other.failures.items():
            match = _LABEL_SUFFIX.match(label)
            filename = match.group(1) if match else label
            merged.failures[merged._unique_label(filename)] = reason
        return merged

    def summary_error(self, max_reasons: int = 3) -> BatchSummaryError | None:
        """Build the user-facing error for a batch with failures, if any."""
        if not self.failures:
            return None
        reasons = [f"{name}: {reason}" for name, reason in list(self.failures.items())[:max_reasons]]
        remaining = len(self.failures) - len(reasons)
        if remaining > 0:
            reasons.append(f"and {remaining} more")
        return BatchSummaryError(len(self.failures), self.total_count, reasons)

    def to_dict(self) -> dict[str, Any]:
        summary = self.summary_error()
        return {
            "succeeded_keys": list(self.succeeded_keys),
            "failures": dict(self.failures),
            "uploaded_count": self.uploaded_count,
            "failed_count": self.failed_count,
            "total_count": self.total_count,
            "error_summary": str(summary) if summary else None,
        }
