"""Deterministic object-store keys for job photos.

Layout::

    {booking_id}_{POSTCODE}_{YYYY-MM-DD}_{customer_id}/{category}/{submitted_ms}_{ordinal}_{filename}

The submission timestamp is captured once per batch so a batch's objects sort
together, and the ordinal index recovers selection order even though workers
finish out of order.
"""

import re
import time

from job_photos.services.models import BookingContext, PhotoCategory, UploadTask

_WHITESPACE = re.compile(r"\s+")


def sanitize_postcode(postcode: str) -> str:
    """Strip all whitespace and upper-case, e.g. "sw1a 1aa" -> "SW1A1AA"."""
    return _WHITESPACE.sub("", postcode).upper()


def sanitize_filename(filename: str) -> str:
    """Drop any directory components a browser may have sent with the name."""
    return filename.replace("\\", "/").rsplit("/", 1)[-1]


def submission_timestamp_ms() -> int:
    """Milliseconds since the epoch, taken once per batch."""
    return time.time_ns() // 1_000_000


def base_folder(context: BookingContext) -> str:
    return (
        f"{context.booking_id}_{sanitize_postcode(context.postcode)}_"
        f"{context.booking_date.isoformat()}_{context.customer_id}"
    )


def category_prefix(context: BookingContext, category: PhotoCategory) -> str:
    """Prefix (with trailing slash) under which a category's objects live."""
    return f"{base_folder(context)}/{category.value}/"


def build_key(
    context: BookingContext,
    category: PhotoCategory,
    task: UploadTask,
    submitted_at_ms: int,
) -> str:
    """Build the storage key for one task. Same inputs always give the same key."""
    leaf = f"{submitted_at_ms}_{task.ordinal_index}_{sanitize_filename(task.filename)}"
    return f"{category_prefix(context, category)}{leaf}"
