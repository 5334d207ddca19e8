"""
Image Normalizer Module.

This module turns an uploaded payment screenshot into recognizer-ready
variants:
    - Mime type and size validation
    - Orientation correction from EXIF
    - RGB conversion and bounded down-scaling
    - Mild enhancement for the primary variant
    - A binarized high-contrast variant for text recognition
    - A thumbnail for audit screens

Supports: JPEG, PNG, WEBP

Author: ML Engineering Team
"""

import io
from typing import List, Optional, Sequence

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

from payproof.config import get_config
from payproof.utils.exceptions import ImageError, ImageErrorKind
from payproof.utils.helpers import compute_content_hash, format_file_size
from payproof.utils.logger import get_logger
from .normalized_image import NormalizedImage, VariantKind

logger = get_logger(__name__)


class ImageNormalizer:
    """
    Validates and transforms raw uploads into NormalizedImage variants.

    The normalizer is a pure transformation: it keeps no state between
    calls and persists nothing.

    Attributes:
        max_bytes: Largest accepted upload
        allowed_mime_types: Accepted mime types
        max_width: Maximum width of the primary variant
        max_height: Maximum height of the primary variant

    Example:
        >>> normalizer = ImageNormalizer()
        >>> variants = normalizer.normalize(raw_bytes, "image/png")
        >>> [v.kind.value for v in variants]
        ['primary', 'high_contrast', 'thumbnail']
    """

    MIME_ALIASES = {
        "image/jpg": "image/jpeg",
        "image/pjpeg": "image/jpeg",
        "image/x-png": "image/png",
    }

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        allowed_mime_types: Optional[Sequence[str]] = None,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
        high_contrast: Optional[bool] = None,
        thumbnail: Optional[bool] = None
    ) -> None:
        self.max_bytes = max_bytes or get_config("input.image.max_bytes", 10 * 1024 * 1024)
        self.allowed_mime_types = set(
            allowed_mime_types or get_config(
                "input.image.allowed_mime_types",
                ["image/jpeg", "image/png", "image/webp"]
            )
        )
        self.max_width = max_width or get_config("input.image.max_width", 2048)
        self.max_height = max_height or get_config("input.image.max_height", 2048)
        self.auto_orient = get_config("input.image.auto_orient", True)
        self.enhance = get_config("input.image.enhance", True)

        self.high_contrast_enabled = (
            high_contrast if high_contrast is not None
            else get_config("input.image.high_contrast.enabled", True)
        )
        self.binarize_threshold = get_config("input.image.high_contrast.threshold", 150)
        self.denoise = get_config("input.image.high_contrast.denoise", False)

        self.thumbnail_enabled = (
            thumbnail if thumbnail is not None
            else get_config("input.image.thumbnail.enabled", True)
        )
        self.thumbnail_size = (
            get_config("input.image.thumbnail.width", 320),
            get_config("input.image.thumbnail.height", 320),
        )

        logger.debug(
            f"ImageNormalizer initialized (max={format_file_size(self.max_bytes)}, "
            f"bounds={self.max_width}x{self.max_height})"
        )

    def normalize(self, raw_bytes: bytes, mime_type: str) -> List[NormalizedImage]:
        """
        Validate an upload and produce its variants.

        Args:
            raw_bytes: Uploaded image bytes.
            mime_type: Declared mime type of the upload.

        Returns:
            Variants, primary first.

        Raises:
            ImageError: UNSUPPORTED for disallowed mime types, TOO_LARGE
                for oversized payloads, CORRUPT for empty or undecodable
                bytes.
        """
        mime = self._canonical_mime(mime_type)
        if mime not in self.allowed_mime_types:
            raise ImageError(ImageErrorKind.UNSUPPORTED, f"mime type '{mime_type}' is not accepted")

        if not raw_bytes:
            raise ImageError(ImageErrorKind.CORRUPT, "empty payload")

        if len(raw_bytes) > self.max_bytes:
            raise ImageError(
                ImageErrorKind.TOO_LARGE,
                f"{format_file_size(len(raw_bytes))} exceeds {format_file_size(self.max_bytes)}"
            )

        content_hash = compute_content_hash(raw_bytes)
        image = self._decode(raw_bytes)
        original_size = image.size

        image = self._process_image(image)
        variants = [self._encode(image, VariantKind.PRIMARY, content_hash)]

        if self.high_contrast_enabled:
            variants.append(
                self._encode(self._high_contrast(image), VariantKind.HIGH_CONTRAST, content_hash)
            )

        if self.thumbnail_enabled:
            thumb = image.copy()
            thumb.thumbnail(self.thumbnail_size, Image.LANCZOS)
            variants.append(self._encode(thumb, VariantKind.THUMBNAIL, content_hash))

        logger.info(
            f"Normalized image {content_hash[:12]}: {original_size[0]}x{original_size[1]} -> "
            f"{image.width}x{image.height}, {len(variants)} variants"
        )
        return variants

    def _canonical_mime(self, mime_type: Optional[str]) -> str:
        mime = (mime_type or "").split(';')[0].strip().lower()
        return self.MIME_ALIASES.get(mime, mime)

    def _decode(self, raw_bytes: bytes) -> Image.Image:
        """
        Decode bytes into a PIL image.

        Raises:
            ImageError: TOO_LARGE for decompression bombs, CORRUPT for
                anything Pillow cannot read.
        """
        try:
            image = Image.open(io.BytesIO(raw_bytes))
            image.load()
        except Image.DecompressionBombError as e:
            raise ImageError(ImageErrorKind.TOO_LARGE, str(e))
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
            raise ImageError(ImageErrorKind.CORRUPT, str(e))
        return image

    def _process_image(self, image: Image.Image) -> Image.Image:
        """
        Apply the primary-variant pipeline.

        Processing steps:
            1. Fix orientation from EXIF data
            2. Convert to RGB
            3. Downscale into the configured bounds
            4. Enhance contrast and sharpness (optional)
        """
        if self.auto_orient:
            image = self._fix_orientation(image)
        image = self._convert_to_rgb(image)
        image = self._resize_if_needed(image)
        if self.enhance:
            image = self._enhance_image(image)
        return image

    def _fix_orientation(self, image: Image.Image) -> Image.Image:
        """Rotate according to the EXIF orientation tag, if any."""
        transposed = ImageOps.exif_transpose(image)
        if transposed is not image:
            logger.debug("Applied EXIF orientation")
        return transposed

    def _convert_to_rgb(self, image: Image.Image) -> Image.Image:
        """
        Convert to RGB, flattening transparency onto white.

        Screenshots exported from phones are frequently RGBA or palette
        PNGs; a black background behind transparent pixels would make
        dark text unreadable.
        """
        if image.mode == 'RGB':
            return image

        original_mode = image.mode
        if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
            rgba = image.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[3])
            image = background
        else:
            image = image.convert('RGB')

        logger.debug(f"Converted image from {original_mode} to RGB")
        return image

    def _resize_if_needed(self, image: Image.Image) -> Image.Image:
        """Downscale to fit max_width x max_height, keeping the aspect ratio."""
        width, height = image.size
        if width <= self.max_width and height <= self.max_height:
            return image

        ratio = min(self.max_width / width, self.max_height / height)
        new_size = (max(1, int(width * ratio)), max(1, int(height * ratio)))
        image = image.resize(new_size, Image.LANCZOS)

        logger.debug(f"Resized image from {width}x{height} to {new_size[0]}x{new_size[1]}")
        return image

    def _enhance_image(self, image: Image.Image) -> Image.Image:
        image = ImageEnhance.Contrast(image).enhance(1.2)
        image = ImageEnhance.Sharpness(image).enhance(1.1)
        return image

    def _high_contrast(self, image: Image.Image) -> Image.Image:
        """
        Build the text-recognition variant.

        Grayscale, stretched histogram, then a hard threshold. Wallet
        screenshots use colored banners behind white text; autocontrast
        before thresholding keeps that text from vanishing.
        """
        gray = ImageOps.autocontrast(ImageOps.grayscale(image), cutoff=1)
        threshold = self.binarize_threshold
        binary = gray.point(lambda x: 255 if x > threshold else 0, 'L')
        if self.denoise:
            binary = binary.filter(ImageFilter.MedianFilter(size=3))
        return binary

    def _encode(self, image: Image.Image, kind: VariantKind, content_hash: str) -> NormalizedImage:
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return NormalizedImage(
            content_hash=content_hash,
            data=buffer.getvalue(),
            kind=kind,
            width=image.width,
            height=image.height,
            mime_type="image/png",
        )
