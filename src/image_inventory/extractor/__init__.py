"""Layer extraction engine and extract actions."""

from .actions import (
    ActionRegistry,
    glob_action,
    glob_matcher,
    stream_to_bytes,
    stream_to_string,
)
from .layers import LayerExtractor, WhiteoutIndex, extract_image_layers

__all__ = [
    "ActionRegistry",
    "LayerExtractor",
    "WhiteoutIndex",
    "extract_image_layers",
    "glob_action",
    "glob_matcher",
    "stream_to_bytes",
    "stream_to_string",
]
