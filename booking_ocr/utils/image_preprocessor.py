"""Image preprocessing before images are sent to OCR providers.

Photos of booking confirmations are usually oversized phone captures with
uneven lighting.  A single pass brings them into a shape every provider
handles well:

    1. fit inside 2048x2048 (never enlarged)
    2. normalise luminance (1st..99th percentile stretch)
    3. sharpen
    4. brightness x1.1, contrast x1.2
    5. re-encode as PNG

Preprocessing never blocks processing: on any decode failure the original
bytes are returned unchanged.
"""

import io

import numpy as np
import structlog
from PIL import Image, ImageEnhance, ImageFilter, UnidentifiedImageError

logger = structlog.get_logger(logger_name=__name__)

_MAX_DIMENSION = 2048
_BRIGHTNESS = 1.1
_CONTRAST = 1.2


class ImagePreprocessor:
    """Prepares document images for OCR providers."""

    def __init__(
        self,
        max_dimension: int = _MAX_DIMENSION,
        brightness: float = _BRIGHTNESS,
        contrast: float = _CONTRAST,
    ) -> None:
        self._max_dimension = max_dimension
        self._brightness = brightness
        self._contrast = contrast

    def prepare_for_ocr(self, image_data: bytes) -> bytes:
        """Run the full preprocessing pass and return PNG bytes.

        Returns *image_data* unchanged if it cannot be decoded.
        """
        try:
            image = Image.open(io.BytesIO(image_data))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("image_preprocessing_skipped", error=str(exc), size=len(image_data))
            return image_data

        image = image.convert("RGB")
        image = self.resize_for_ocr(image)
        image = self.normalize(image)
        image = image.filter(ImageFilter.SHARPEN)
        image = self.enhance(image)

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        processed = buffer.getvalue()
        logger.debug(
            "image_preprocessed",
            original_size=len(image_data),
            processed_size=len(processed),
            dimensions=image.size,
        )
        return processed

    def resize_for_ocr(self, image: Image.Image) -> Image.Image:
        """Fit *image* inside ``max_dimension`` on both sides without enlarging."""
        if max(image.size) <= self._max_dimension:
            return image
        resized = image.copy()
        resized.thumbnail((self._max_dimension, self._max_dimension), Image.Resampling.LANCZOS)
        return resized

    def normalize(self, image: Image.Image) -> Image.Image:
        """Stretch the luminance range so the 1st..99th percentile spans 0..255."""
        pixels = np.asarray(image, dtype=np.float32)
        low, high = np.percentile(pixels, (1, 99))
        if high - low < 1.0:
            return image
        stretched = np.clip((pixels - low) * (255.0 / (high - low)), 0, 255)
        return Image.fromarray(stretched.astype(np.uint8))

    def enhance(self, image: Image.Image) -> Image.Image:
        """Apply the brightness and contrast boost."""
        image = ImageEnhance.Brightness(image).enhance(self._brightness)
        return ImageEnhance.Contrast(image).enhance(self._contrast)
