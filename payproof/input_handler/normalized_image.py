"""
Normalized Image Data Class.

A NormalizedImage is one recognizer-ready rendition of an uploaded
screenshot. Every variant produced from the same upload shares the
content hash of the original bytes.

Author: ML Engineering Team
"""

import io
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from PIL import Image


class VariantKind(str, Enum):
    """Which rendition of the upload a NormalizedImage holds."""
    PRIMARY = "primary"
    HIGH_CONTRAST = "high_contrast"
    THUMBNAIL = "thumbnail"


@dataclass(frozen=True)
class NormalizedImage:
    """
    Processing-ready image variant.

    Attributes:
        content_hash: SHA-256 of the uploaded bytes (idempotency key)
        data: Encoded image bytes (PNG)
        kind: Variant kind
        width: Pixel width of the variant
        height: Pixel height of the variant
        mime_type: Mime type of ``data``

    Example:
        >>> primary = variants[0]
        >>> primary.kind
        <VariantKind.PRIMARY: 'primary'>
        >>> image = primary.to_pil()
    """
    content_hash: str
    data: bytes
    kind: VariantKind
    width: int
    height: int
    mime_type: str = "image/png"

    def to_pil(self) -> Image.Image:
        """Decode the variant back into a PIL image."""
        image = Image.open(io.BytesIO(self.data))
        image.load()
        return image

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_dict(self) -> Dict[str, Any]:
        """Metadata only; the pixel data is never serialized."""
        return {
            'content_hash': self.content_hash,
            'kind': self.kind.value,
            'width': self.width,
            'height': self.height,
            'mime_type': self.mime_type,
            'size_bytes': self.size_bytes,
        }

    def __repr__(self) -> str:
        return (
            f"NormalizedImage({self.kind.value}, {self.width}x{self.height}, "
            f"hash={self.content_hash[:12]})"
        )


def pick_variant(
    images: Sequence[NormalizedImage],
    preferred: VariantKind
) -> Optional[NormalizedImage]:
    """
    Return the preferred variant, falling back to the primary one.

    Args:
        images: Variants produced by the normalizer.
        preferred: Kind the caller would like to use.

    Returns:
        The best available variant, or None when the list is empty.
    """
    by_kind = {image.kind: image for image in images}
    return by_kind.get(preferred) or by_kind.get(VariantKind.PRIMARY) or (images[0] if images else None)
