"""
Input Handler Module for the Payment Proof Engine.

This module provides functionality for:
    - Validating uploaded screenshots (mime type, size, decodability)
    - Normalizing orientation, color mode and resolution
    - Producing primary, high-contrast and thumbnail variants

Supported formats: JPEG, PNG, WEBP

Author: ML Engineering Team
"""

from .image_processor import ImageNormalizer
from .normalized_image import NormalizedImage, VariantKind, pick_variant

__all__ = ['ImageNormalizer', 'NormalizedImage', 'VariantKind', 'pick_variant']
