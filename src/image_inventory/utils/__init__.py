"""Utility functions for image inventory scanning."""

from .digest import calculate_digest, validate_digest
from .reference import extract_image_details, split_image_reference

__all__ = [
    "calculate_digest",
    "validate_digest",
    "extract_image_details",
    "split_image_reference",
]
