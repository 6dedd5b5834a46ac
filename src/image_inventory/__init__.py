"""Image Inventory - Package inventory and dependency trees for container images."""

__version__ = "0.1.0"

from .analyzer import analyze_statically
from .core.registry_client import RegistryClient
from .core.types import ExtractionConfig, RegistryConfig, StaticAnalysisOptions
from .exceptions import (
    BlobDownloadError,
    ExtractionError,
    FormatError,
    InvalidReferenceError,
    InventoryError,
    ManifestError,
    RegistryConnectionError,
    RegistryError,
    TarReadError,
)
from .extractor import extract_image_layers, glob_action
from .graph import build_tree
from .models import (
    AnalysisType,
    DependencyNode,
    DependencyTree,
    ExtractAction,
    ExtractionResult,
    ImageDetails,
    ImageType,
    PackageRecord,
)
from .utils.reference import extract_image_details, split_image_reference

__all__ = [
    "AnalysisType",
    "BlobDownloadError",
    "DependencyNode",
    "DependencyTree",
    "ExtractAction",
    "ExtractionConfig",
    "ExtractionError",
    "ExtractionResult",
    "FormatError",
    "ImageDetails",
    "ImageType",
    "InvalidReferenceError",
    "InventoryError",
    "ManifestError",
    "PackageRecord",
    "RegistryClient",
    "RegistryConfig",
    "RegistryConnectionError",
    "RegistryError",
    "StaticAnalysisOptions",
    "TarReadError",
    "analyze_statically",
    "build_tree",
    "extract_image_details",
    "extract_image_layers",
    "glob_action",
    "split_image_reference",
]
