"""Classify and filter user-selected files before an upload batch."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from job_photos.services.errors import SelectionError
from job_photos.services.models import PhotoCategory, SelectedFile, UploadTask
from job_photos.services.utils import file_extension, format_file_size

MAX_ADDITIONAL_BYTES = 10 * 1024 * 1024

IMAGE_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".heic", ".heif", ".tif", ".tiff", ".dng"}
)

# Accepted as photos but may not compress or preview in a browser
UNCOMPRESSIBLE_IMAGE_EXTENSIONS = frozenset({".dng", ".heic", ".heif"})

REASON_UNSUPPORTED_TYPE = "unsupported type"
REASON_EXCEEDS_SIZE_LIMIT = "exceeds size limit"


def is_image(selected: SelectedFile) -> bool:
    """Whether a file looks like an image by content type or extension."""
    content_type = (selected.content_type or "").lower()
    return content_type.startswith("image/") or file_extension(selected.filename) in IMAGE_EXTENSIONS


def is_uncompressible_image(filename: str) -> bool:
    return file_extension(filename) in UNCOMPRESSIBLE_IMAGE_EXTENSIONS


@dataclass
class ValidationResult:
    """Partition of one category's selection."""

    category: PhotoCategory
    accepted: list[UploadTask] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    advisories: list[str] = field(default_factory=list)

    @property
    def selected_count(self) -> int:
        return len(self.accepted) + len(self.skipped)

    @property
    def no_compatible_files(self) -> bool:
        """A non-empty selection where nothing was accepted."""
        return self.selected_count > 0 and not self.accepted

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "accepted": [task.filename for task in self.accepted],
            "skipped": [{"filename": name, "reason": reason} for name, reason in self.skipped],
            "advisories": list(self.advisories),
            "no_compatible_files": self.no_compatible_files,
        }


class FileSelectionValidator:
    """Splits a category's selection into upload tasks and skipped files.

    Photo categories accept anything that looks like an image, with no size
    ceiling since compression shrinks large photos before transfer. The
    additional category accepts any file type up to ``max_additional_bytes``.
    """

    def __init__(self, max_additional_bytes: int = MAX_ADDITIONAL_BYTES) -> None:
        self.max_additional_bytes = max_additional_bytes

    def check(self, selected: SelectedFile, category: PhotoCategory) -> None:
        """Raise SelectionError if the file may not be uploaded in this category."""
        if category is PhotoCategory.ADDITIONAL:
            if selected.size > self.max_additional_bytes:
                raise SelectionError(selected.filename, REASON_EXCEEDS_SIZE_LIMIT)
            return

        if not is_image(selected):
            raise SelectionError(selected.filename, REASON_UNSUPPORTED_TYPE)

    def validate(
        self,
        files: Iterable[SelectedFile],
        category: PhotoCategory,
        annotation: str | None = None,
    ) -> ValidationResult:
        """Partition files into accepted tasks and (name, reason) skips.

        Args:
            files: Files in selection order
            category: Target category
            annotation: Free text attached to additional files only

        Returns:
            ValidationResult with contiguous ordinal indexes on accepted tasks
        """
        result = ValidationResult(category=category)
        task_annotation = annotation if category is PhotoCategory.ADDITIONAL else None

        for selected in files:
            try:
                self.check(selected, category)
            except SelectionError as e:
                result.skipped.append((e.filename, e.reason))
                continue

            result.accepted.append(
                UploadTask(
                    source_file=selected,
                    category=category,
                    ordinal_index=len(result.accepted),
                    extra_annotation=task_annotation,
                )
            )

        if category.is_image_bearing:
            flagged = [t.filename for t in result.accepted if is_uncompressible_image(t.filename)]
            if flagged:
                result.advisories.append(
                    f"{len(flagged)} file(s) may not compress or preview: {', '.join(flagged)}"
                )

        oversize = [
            name for name, reason in result.skipped if reason == REASON_EXCEEDS_SIZE_LIMIT
        ]
        if oversize:
            result.advisories.append(
                f"Skipped {len(oversize)} file(s) larger than "
                f"{format_file_size(self.max_additional_bytes)}"
            )

        return result
