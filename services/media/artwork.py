"""Music Ingest Pipeline - Cover art thumbnails and color extraction.

ArtResizer: embedded cover bytes -> 500x500 center-cropped JPEG (quality 85).
ColorExtractor: image -> one representative "#rrggbb" color, taken as the
mean of the most populated cell of a coarse RGB histogram.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image as PILImage
from PIL import ImageOps

from app.config import ART_JPEG_QUALITY, ART_SIZE, MAX_IMAGE_SIZE
from app.errors import ExternalToolError, ValidationError
from app.utils.atomic_io import atomic_write_bytes

logger = logging.getLogger(__name__)

# Color sampling: downscale first, then bucket each channel into 8 levels
COLOR_SAMPLE_SIZE = 64
COLOR_BIN_SHIFT = 5


def resize_art(image_bytes: bytes, output_path: str | Path) -> None:
    """Resize cover art to a square JPEG thumbnail.

    The image is scaled to cover ART_SIZE x ART_SIZE and center-cropped.

    Args:
        image_bytes: Raw embedded image data.
        output_path: Destination .jpg, written atomically.

    Raises:
        ValidationError: If the image exceeds MAX_IMAGE_SIZE.
        ExternalToolError: If Pillow cannot decode or encode the image.
    """
    if len(image_bytes) > MAX_IMAGE_SIZE:
        raise ValidationError(f"Cover art exceeds {MAX_IMAGE_SIZE} bytes")

    try:
        with PILImage.open(BytesIO(image_bytes)) as img:
            # JPEG has no alpha or palette modes
            if img.mode != "RGB":
                img = img.convert("RGB")
            thumb = ImageOps.fit(img, (ART_SIZE, ART_SIZE), PILImage.Resampling.LANCZOS)
            output = BytesIO()
            thumb.save(output, format="JPEG", quality=ART_JPEG_QUALITY)
    except (OSError, ValueError, PILImage.DecompressionBombError) as e:
        raise ExternalToolError("pillow", f"Cover art resize failed: {e}") from e

    atomic_write_bytes(output_path, output.getvalue())
    logger.debug("Wrote %dx%d art to %s", ART_SIZE, ART_SIZE, output_path)


def extract_dominant_color(image_path: str | Path) -> str:
    """Compute a representative color for an image.

    Args:
        image_path: Path to the image (normally the resized thumbnail).

    Returns:
        Lower-case hex color, e.g. "#1a2b3c".

    Raises:
        ExternalToolError: If the image cannot be read.
    """
    try:
        with PILImage.open(image_path) as img:
            rgb = img.convert("RGB")
            rgb.thumbnail((COLOR_SAMPLE_SIZE, COLOR_SAMPLE_SIZE))
            pixels = np.asarray(rgb, dtype=np.uint8).reshape(-1, 3)
    except (OSError, ValueError) as e:
        raise ExternalToolError("pillow", f"Color extraction failed: {e}") from e

    if pixels.size == 0:
        raise ExternalToolError("pillow", "Color extraction failed: empty image")

    levels = 256 >> COLOR_BIN_SHIFT
    bins = (pixels >> COLOR_BIN_SHIFT).astype(np.int64)
    keys = (bins[:, 0] * levels + bins[:, 1]) * levels + bins[:, 2]
    top = np.bincount(keys).argmax()

    mean = pixels[keys == top].mean(axis=0)
    r, g, b = (int(round(channel)) for channel in mean)
    return f"#{r:02x}{g:02x}{b:02x}"
