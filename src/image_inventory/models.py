"""Data models shared by the extractor, the parsers and the tree builder."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Callable


class ImageType(str, Enum):
    """On-disk archive dialects that can be scanned."""

    DOCKER_ARCHIVE = "docker-archive"
    OCI_ARCHIVE = "oci-archive"


class AnalysisType(str, Enum):
    """Package manager family an analysis was produced by."""

    APT = "Apt"
    RPM = "Rpm"
    APK = "Apk"
    LINUX = "Linux"

    @property
    def dep_type(self) -> str:
        """Package format name used in ``packageFormatVersion``."""
        if self is AnalysisType.APT:
            return "deb"
        return self.value.lower()


@dataclass
class LayerRef:
    """One filesystem diff and the archive member that holds it."""

    digest: str
    member: str
    media_type: str = "application/vnd.oci.image.layer.v1.tar"


@dataclass
class LayerPlan:
    """Format-independent description of an image inside an archive.

    Layers are ordered from the base layer to the most recent one.
    """

    image_type: ImageType
    image_id: str
    layers: list[LayerRef]
    manifest_layers: list[str]
    repo_tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractAction:
    """A named callback run on every file whose path it matches.

    ``callback`` receives a binary stream positioned at the start of the file
    and may be a plain function or a coroutine function.
    """

    name: str
    matches: Callable[[str], bool]
    callback: Callable[[BinaryIO], Any]


@dataclass
class ActionFailure:
    """An extract action that raised while handling a file."""

    path: str
    action_name: str
    error: BaseException


@dataclass
class ExtractionResult:
    """Squashed view of the files the registered actions asked for."""

    image_id: str
    extracted_layers: dict[str, dict[str, Any]]
    manifest_layers: list[str]
    failures: list[ActionFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imageId": self.image_id,
            "extractedLayers": self.extracted_layers,
            "manifestLayers": list(self.manifest_layers),
        }


@dataclass
class PackageRecord:
    """A package as reported by a package manager database.

    ``deps`` maps dependency names (real or virtual) to an optional version
    constraint; only the names take part in tree building.
    """

    name: str
    version: str
    source: str | None = None
    provides: list[str] = field(default_factory=list)
    deps: dict[str, str] = field(default_factory=dict)
    auto_installed: bool = False

    @property
    def full_name(self) -> str:
        if self.source:
            return f"{self.source}/{self.name}"
        return self.name


@dataclass
class DependencyNode:
    """A node of the dependency tree, keyed by its fully-qualified name."""

    name: str
    version: str
    children: dict[str, "DependencyNode"] = field(default_factory=dict)

    def add_child(self, node: "DependencyNode") -> bool:
        """Attach ``node`` unless a child with the same name exists.

        Returns:
            True if the node was attached
        """
        if node.name in self.children:
            return False
        self.children[node.name] = node
        return True

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "version": self.version}
        if self.children:
            data["dependencies"] = {
                name: child.to_dict() for name, child in self.children.items()
            }
        return data


@dataclass
class OSRelease:
    """Operating system the image was built from."""

    name: str = "unknown"
    version: str = "0.0"
    pretty_name: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"name": self.name, "version": self.version}
        if self.pretty_name:
            data["prettyName"] = self.pretty_name
        return data


@dataclass
class DependencyTree:
    """Root of a dependency tree plus the metadata reported with it."""

    root: DependencyNode
    target_os: OSRelease
    package_format_version: str

    @property
    def dependencies(self) -> dict[str, DependencyNode]:
        return self.root.children

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.root.name,
            "version": self.root.version,
            "targetOS": self.target_os.to_dict(),
            "packageFormatVersion": self.package_format_version,
            "dependencies": {
                name: child.to_dict() for name, child in self.root.children.items()
            },
        }


@dataclass
class ImageDetails:
    """Registry, repository and tag parts of an image reference."""

    hostname: str
    image_name: str
    tag: str


@dataclass
class ManifestFile:
    """An application manifest file found in the image."""

    name: str
    path: str
    contents: str  # base64 encoded

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "path": self.path, "contents": self.contents}
