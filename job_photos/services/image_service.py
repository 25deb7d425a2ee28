"""Best-effort recompression of photos before upload."""

import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from job_photos.config import PipelineConfig
from job_photos.services.errors import NormalizationError
from job_photos.services.models import PhotoCategory, SelectedFile
from job_photos.services.utils import file_extension

logger = logging.getLogger(__name__)

COMPRESSIBLE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif"})
COMPRESSIBLE_CONTENT_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/bmp", "image/gif"}
)


def is_compressible(selected: SelectedFile) -> bool:
    """Whether Pillow can reasonably re-encode this file as JPEG."""
    ext = file_extension(selected.filename)
    if ext:
        return ext in COMPRESSIBLE_EXTENSIONS
    return (selected.content_type or "").lower() in COMPRESSIBLE_CONTENT_TYPES


def compress_image(content: bytes, max_dimension: int = 1920, quality: int = 80) -> bytes:
    """Re-encode an image as JPEG, bounded to ``max_dimension`` on its longest side.

    Raises:
        NormalizationError: If the bytes cannot be decoded or encoded
    """
    try:
        with Image.open(io.BytesIO(content)) as im:
            im = ImageOps.exif_transpose(im)
            im = im.convert("RGB")
            im.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
            buf = io.BytesIO()
            im.save(buf, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise NormalizationError(str(e)) from e
    return buf.getvalue()


class ImageNormalizer:
    """Shrinks large photos on capable devices, falling back to the original file."""

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config

    def should_compress(self, selected: SelectedFile, category: PhotoCategory) -> bool:
        return (
            self.config.compression_enabled
            and category.is_image_bearing
            and selected.size > self.config.compression_threshold_bytes
            and is_compressible(selected)
        )

    def compress(self, selected: SelectedFile, category: PhotoCategory) -> SelectedFile:
        """Return a compressed copy of the file, or the file itself.

        The file is returned as-is when compression does not apply or the
        result would not be smaller.

        Raises:
            NormalizationError: If the file should be compressed but cannot be
        """
        if not self.should_compress(selected, category):
            return selected

        try:
            compressed = compress_image(
                selected.content,
                max_dimension=self.config.compression_max_dimension,
                quality=self.config.compression_quality,
            )
        except NormalizationError:
            raise
        except Exception as e:
            raise NormalizationError(str(e) or e.__class__.__name__) from e

        if len(compressed) >= selected.size:
            return selected

        logger.debug(
            "Compressed %s from %d to %d bytes", selected.filename, selected.size, len(compressed)
        )
        return SelectedFile(
            filename=selected.filename,
            content=compressed,
            content_type="image/jpeg",
        )

    def normalize(self, selected: SelectedFile, category: PhotoCategory) -> SelectedFile:
        """Like ``compress``, but a failed recompression yields the original file."""
        try:
            return self.compress(selected, category)
        except NormalizationError as e:
            logger.warning("Compression failed for %s, using original: %s", selected.filename, e)
            return selected
