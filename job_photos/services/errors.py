"""Exception types raised and collected by the photo upload pipeline."""


class PhotoPipelineError(Exception):
    """Base class for all pipeline errors."""


class SelectionError(PhotoPipelineError):
    """A selected file was rejected before the batch started."""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"{filename}: {reason}")
        self.filename = filename
        self.reason = reason


class NormalizationError(PhotoPipelineError):
    """Image recompression failed; the original bytes are used instead."""


class UploadError(PhotoPipelineError):
    """Writing an object to the store failed."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class MetadataInsertError(PhotoPipelineError):
    """The object was stored but its metadata row could not be written."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class BatchSummaryError(PhotoPipelineError):
    """Aggregate failure report for a settled batch."""

    def __init__(self, failed: int, total: int, reasons: list[str]) -> None:
        self.failed = failed
        self.total = total
        self.reasons = reasons
        super().__init__(self._format())

    def _format(self) -> str:
        head = f"{self.failed} of {self.total} file(s) failed to upload"
        if not self.reasons:
            return head
        return f"{head}: " + "; ".join(self.reasons)
