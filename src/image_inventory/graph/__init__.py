"""Dependency tree building."""

from .tree import (
    DEP_FREQ_THRESHOLD,
    META_PACKAGE_NAME,
    PACKAGE_FORMAT_VERSION,
    DependencyTreeBuilder,
    build_tree,
)

__all__ = [
    "DEP_FREQ_THRESHOLD",
    "META_PACKAGE_NAME",
    "PACKAGE_FORMAT_VERSION",
    "DependencyTreeBuilder",
    "build_tree",
]
