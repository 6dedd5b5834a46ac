"""Resolution of Docker-save and OCI archive manifests into a layer plan."""

import logging
from typing import Any

from ..exceptions import FormatError, TarReadError
from ..models import ImageType, LayerPlan, LayerRef
from ..utils.digest import blob_path, digest_from_path
from .reader import ArchiveReader

logger = logging.getLogger(__name__)

MANIFEST_JSON = "manifest.json"
REPOSITORIES = "repositories"
OCI_INDEX = "index.json"
OCI_LAYOUT = "oci-layout"

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar"

IMAGE_MANIFEST_TYPES = (OCI_MANIFEST, DOCKER_MANIFEST)
INDEX_TYPES = (OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST)

REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"
DEFAULT_PLATFORM = "linux/amd64"

# Nested indexes deeper than this are treated as malformed
MAX_INDEX_DEPTH = 4


def detect_image_type(reader: ArchiveReader) -> ImageType:
    """Guess the dialect of an opened archive from its top-level files.

    Raises:
        FormatError: If neither a Docker nor an OCI manifest is present
    """
    names = set(reader.member_names())
    if MANIFEST_JSON in names or REPOSITORIES in names:
        return ImageType.DOCKER_ARCHIVE
    if OCI_INDEX in names and OCI_LAYOUT in names:
        return ImageType.OCI_ARCHIVE
    raise FormatError(f"No image manifest found in {reader.archive_path}")


def resolve_layer_plan(
    reader: ArchiveReader,
    image_type: ImageType,
    platform: str = DEFAULT_PLATFORM,
) -> LayerPlan:
    """Resolve the archive's manifest into an ordered layer plan.

    Args:
        reader: Opened archive reader
        image_type: Dialect the archive was saved in
        platform: Preferred "os/architecture" when an index lists several images

    Returns:
        LayerPlan with layers ordered from base to top

    Raises:
        FormatError: If the manifest is unrecognized or references missing entries
    """
    if image_type == ImageType.DOCKER_ARCHIVE:
        return resolve_docker_archive(reader)
    if image_type == ImageType.OCI_ARCHIVE:
        return resolve_oci_archive(reader, platform)
    raise FormatError(f"Unsupported image type: {image_type}")


def resolve_docker_archive(reader: ArchiveReader) -> LayerPlan:
    """Resolve a ``docker save`` (or skopeo docker-archive) tar.

    Raises:
        FormatError: If neither manifest.json nor repositories can be used
    """
    if reader.has_member(MANIFEST_JSON):
        return _resolve_docker_manifest(reader)
    if reader.has_member(REPOSITORIES):
        return _resolve_legacy_repositories(reader)
    raise FormatError("Docker archive has neither manifest.json nor repositories")


def resolve_oci_archive(
    reader: ArchiveReader, platform: str = DEFAULT_PLATFORM
) -> LayerPlan:
    """Resolve an OCI image layout tar.

    Raises:
        FormatError: If no image manifest can be reached from index.json
    """
    index = _read_json(reader, OCI_INDEX)
    if not isinstance(index, dict):
        raise FormatError("index.json must be an object")

    descriptor, manifest, repo_tags = _find_image_manifest(reader, index, platform)

    layer_descriptors = manifest.get("layers")
    if not isinstance(layer_descriptors, list):
        raise FormatError(f"Manifest {descriptor['digest']} has no layers")

    layers = []
    for layer in layer_descriptors:
        if not isinstance(layer, dict):
            raise FormatError(f"Invalid layer descriptor in {descriptor['digest']}")
        digest = layer.get("digest")
        layers.append(
            LayerRef(
                digest=digest,
                member=_blob_member(reader, digest),
                media_type=layer.get("mediaType", OCI_LAYER),
            )
        )

    config = None
    config_descriptor = manifest.get("config")
    if isinstance(config_descriptor, dict) and config_descriptor.get("digest"):
        config = _read_json(reader, _blob_member(reader, config_descriptor["digest"]))

    return LayerPlan(
        image_type=ImageType.OCI_ARCHIVE,
        image_id=descriptor["digest"],
        layers=layers,
        manifest_layers=_manifest_layers(config, [layer.digest for layer in layers]),
        repo_tags=repo_tags,
    )


def _resolve_docker_manifest(reader: ArchiveReader) -> LayerPlan:
    manifest_list = _read_json(reader, MANIFEST_JSON)
    if not isinstance(manifest_list, list) or not manifest_list:
        raise FormatError("manifest.json must be a non-empty array")

    # Use first manifest entry
    manifest = manifest_list[0]
    if not isinstance(manifest, dict):
        raise FormatError("Invalid manifest entry structure")

    config_path = manifest.get("Config")
    layer_paths = manifest.get("Layers")
    if not isinstance(config_path, str) or not isinstance(layer_paths, list):
        raise FormatError("manifest.json entry lacks Config or Layers")

    layers = []
    for layer_path in layer_paths:
        if not isinstance(layer_path, str) or not reader.has_member(layer_path):
            raise FormatError(f"Layer {layer_path} not found in archive")
        layers.append(
            LayerRef(
                digest=digest_from_path(layer_path),
                member=layer_path,
                media_type=DOCKER_LAYER,
            )
        )

    if not reader.has_member(config_path):
        raise FormatError(f"Config {config_path} not found in archive")
    config = _read_json(reader, config_path)

    repo_tags = manifest.get("RepoTags") or []
    return LayerPlan(
        image_type=ImageType.DOCKER_ARCHIVE,
        image_id=digest_from_path(config_path),
        layers=layers,
        manifest_layers=_manifest_layers(config, layer_paths),
        repo_tags=[tag for tag in repo_tags if isinstance(tag, str)],
    )


def _resolve_legacy_repositories(reader: ArchiveReader) -> LayerPlan:
    """Follow the parent chain of a pre-1.10 ``docker save`` archive."""
    repositories = _read_json(reader, REPOSITORIES)
    if not isinstance(repositories, dict):
        raise FormatError("repositories must be an object")

    # repositories file format: {"repo/name": {"tag": "layer_id"}}
    repo_tags = []
    top_id = None
    for repo_name, tags in repositories.items():
        if not isinstance(tags, dict):
            continue
        for tag_name, layer_id in tags.items():
            repo_tags.append(f"{repo_name}:{tag_name}")
            if top_id is None:
                top_id = layer_id
    if not top_id:
        raise FormatError("repositories lists no image")

    chain = []
    layer_id = top_id
    while layer_id:
        if layer_id in chain:
            raise FormatError(f"Layer {layer_id} is its own ancestor")
        layer_json = _read_json(reader, f"{layer_id}/json")
        chain.append(layer_id)
        layer_id = layer_json.get("parent") if isinstance(layer_json, dict) else None
    chain.reverse()

    layers = []
    for layer_id in chain:
        member = f"{layer_id}/layer.tar"
        if not reader.has_member(member):
            raise FormatError(f"Layer {member} not found in archive")
        layers.append(LayerRef(digest=layer_id, member=member, media_type=DOCKER_LAYER))

    return LayerPlan(
        image_type=ImageType.DOCKER_ARCHIVE,
        image_id=top_id,
        layers=layers,
        manifest_layers=[layer.member for layer in layers],
        repo_tags=repo_tags,
    )


def _find_image_manifest(
    reader: ArchiveReader, index: dict[str, Any], platform: str, depth: int = 0
) -> tuple[dict[str, Any], dict[str, Any], list[str]]:
    """Walk an index down to the first image manifest for ``platform``."""
    if depth > MAX_INDEX_DEPTH:
        raise FormatError("Image index nesting is too deep")

    descriptors = index.get("manifests")
    if not isinstance(descriptors, list) or not descriptors:
        raise FormatError("Invalid or empty 'manifests' in image index")

    candidates = [d for d in descriptors if isinstance(d, dict) and d.get("digest")]
    candidates.sort(key=lambda d: platform_rank(d, platform))

    for descriptor in candidates:
        media_type = descriptor.get("mediaType")
        if media_type not in IMAGE_MANIFEST_TYPES + INDEX_TYPES + (None,):
            continue

        blob = _read_json(reader, _blob_member(reader, descriptor["digest"]))
        if not isinstance(blob, dict):
            raise FormatError(f"Blob {descriptor['digest']} is not a JSON object")

        if media_type in INDEX_TYPES or "manifests" in blob:
            nested, manifest, tags = _find_image_manifest(
                reader, blob, platform, depth + 1
            )
            return nested, manifest, _ref_names(descriptor) + tags
        if isinstance(blob.get("layers"), list):
            return descriptor, blob, _ref_names(descriptor)

    raise FormatError("No image manifest found in image index")


def platform_rank(descriptor: dict[str, Any], platform: str) -> int:
    """Sort key putting descriptors of ``platform`` first, unknown ones next."""
    descriptor_platform = descriptor.get("platform")
    if not isinstance(descriptor_platform, dict):
        return 1
    wanted = platform.split("/")
    actual = [descriptor_platform.get("os"), descriptor_platform.get("architecture")]
    if len(wanted) > 2:
        actual.append(descriptor_platform.get("variant"))
    return 0 if actual == wanted else 2


def _ref_names(descriptor: dict[str, Any]) -> list[str]:
    annotations = descriptor.get("annotations") or {}
    ref_name = annotations.get(REF_NAME_ANNOTATION)
    return [ref_name] if isinstance(ref_name, str) and ref_name else []


def _manifest_layers(config: Any, fallback: list[str]) -> list[str]:
    """Prefer the uncompressed diff ids, which both dialects share."""
    if isinstance(config, dict):
        diff_ids = (config.get("rootfs") or {}).get("diff_ids")
        if (
            isinstance(diff_ids, list)
            and len(diff_ids) == len(fallback)
            and all(isinstance(diff_id, str) for diff_id in diff_ids)
        ):
            return list(diff_ids)
    return list(fallback)


def _blob_member(reader: ArchiveReader, digest: Any) -> str:
    try:
        member = blob_path(digest)
    except ValueError as e:
        raise FormatError(f"Invalid digest: {digest}") from e
    if not reader.has_member(member):
        raise FormatError(f"Blob {digest} not found in archive")
    return member


def _read_json(reader: ArchiveReader, name: str) -> Any:
    try:
        return reader.read_json(name)
    except TarReadError as e:
        raise FormatError(str(e)) from e
