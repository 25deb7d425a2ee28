"""Find stored objects that never received a metadata row."""

from typing import Protocol

from job_photos.services import storage_keys
from job_photos.services.models import BookingContext, OrphanRecord, PhotoCategory
from job_photos.services.s3_service import ObjectInfo
from job_photos.services.utils import file_extension

RECOGNIZED_EXTENSIONS = frozenset(
    {
        ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".heic", ".heif", ".tif", ".tiff",
        ".dng", ".pdf", ".doc", ".docx", ".txt", ".mp4", ".mov",
    }
)


class ListableStore(Protocol):
    def list(self, prefix: str) -> list[ObjectInfo]: ...


class KnownPaths(Protocol):
    def file_paths_for_booking(self, booking_id: int) -> set[str]: ...


class OrphanReconciler:
    """Read-only comparison of the object store against the metadata store."""

    def __init__(
        self,
        store: ListableStore,
        metadata: KnownPaths,
        category: PhotoCategory = PhotoCategory.ADDITIONAL,
    ) -> None:
        self.store = store
        self.metadata = metadata
        self.category = category

    def reconcile(self, context: BookingContext) -> list[OrphanRecord]:
        """Return one OrphanRecord per stored key with no metadata row, sorted by key."""
        prefix = storage_keys.category_prefix(context, self.category)
        known = self.metadata.file_paths_for_booking(context.booking_id)

        orphans = [
            OrphanRecord(
                file_path=obj.key,
                booking_id=context.booking_id,
                category=self.category,
                size=obj.size,
                last_modified=obj.last_modified,
            )
            for obj in self.store.list(prefix)
            if file_extension(obj.key) in RECOGNIZED_EXTENSIONS and obj.key not in known
        ]
        orphans.sort(key=lambda o: o.file_path)
        return orphans
