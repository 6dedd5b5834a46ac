"""Configuration types for scans and registry access."""

from dataclasses import dataclass, field
from pathlib import Path

from ..models import ImageType


@dataclass
class ExtractionConfig:
    """Tuning for the layer extraction engine."""

    max_concurrent_actions: int = 4

    def __post_init__(self) -> None:
        if self.max_concurrent_actions < 1:
            raise ValueError("max_concurrent_actions must be at least 1")


@dataclass
class StaticAnalysisOptions:
    """Inputs of a static (archive based) analysis."""

    image_path: Path
    image_type: ImageType | None = None
    image_name: str | None = None
    manifest_globs: list[str] = field(default_factory=list)
    manifest_exclude_globs: list[str] = field(default_factory=list)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    def __post_init__(self) -> None:
        self.image_path = Path(self.image_path)
        if self.image_type is not None:
            self.image_type = ImageType(self.image_type)


@dataclass
class RegistryConfig:
    """Registry connection settings."""

    url: str
    timeout: int = 30
    platform: str = "linux/amd64"

    def __post_init__(self) -> None:
        self.url = self.url.rstrip("/")
