"""Image archive reading and manifest resolution."""

from .manifest import detect_image_type, resolve_layer_plan
from .reader import ArchiveReader, LayerEntry, normalize_path

__all__ = [
    "ArchiveReader",
    "LayerEntry",
    "normalize_path",
    "detect_image_type",
    "resolve_layer_plan",
]
