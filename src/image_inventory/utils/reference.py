"""Image reference parsing."""

from ..exceptions import InvalidReferenceError
from ..models import ImageDetails

DEFAULT_REGISTRY = "registry-1.docker.io"
DEFAULT_TAG = "latest"
OFFICIAL_NAMESPACE = "library"


def split_image_reference(reference: str) -> tuple[str, str]:
    """Split an image reference into its name and tag.

    A tag can only occur in the last path segment, so only a ':' after the
    final '/' separates the tag. This keeps a registry port such as
    ``localhost:5000/app`` part of the name. A digest reference uses the
    whole digest as its tag.

    Args:
        reference: Image reference (e.g. "nginx:1.18", "gcr.io/ns/img@sha256:...")

    Returns:
        tuple[str, str]: (name, tag) tuple

    Raises:
        InvalidReferenceError: If the reference is empty or has an empty part

    Examples:
        split_image_reference("localhost:5000/myapp")
        # ("localhost:5000/myapp", "latest")
    """
    if not isinstance(reference, str) or not reference.strip():
        raise InvalidReferenceError("Image reference is empty")
    reference = reference.strip()

    if "@" in reference:
        name, digest = reference.split("@", 1)
        if ":" in _last_segment(name):
            name = name.rsplit(":", 1)[0]
        tag = digest
    elif ":" in _last_segment(reference):
        name, tag = reference.rsplit(":", 1)
    else:
        name, tag = reference, DEFAULT_TAG

    if not name or not tag:
        raise InvalidReferenceError(f"Cannot split image reference: {reference}")
    return name, tag


def extract_image_details(reference: str) -> ImageDetails:
    """Split an image reference into registry hostname, image name and tag.

    The first path segment is a registry hostname only when it contains a
    '.' or a ':' port, or is ``localhost``. Otherwise the image lives on
    Docker Hub, where single-segment names belong to the ``library``
    namespace.

    Args:
        reference: Image reference string

    Returns:
        ImageDetails with hostname, image_name and tag

    Raises:
        InvalidReferenceError: If the reference cannot be split

    Examples:
        extract_image_details("nginx:1.18")
        # ImageDetails("registry-1.docker.io", "library/nginx", "1.18")
    """
    name, tag = split_image_reference(reference)

    parts = name.split("/", 1)
    if len(parts) == 2 and _is_registry_host(parts[0]):
        hostname, image_name = parts
    else:
        hostname = DEFAULT_REGISTRY
        image_name = name if "/" in name else f"{OFFICIAL_NAMESPACE}/{name}"

    if not image_name:
        raise InvalidReferenceError(f"Cannot split image reference: {reference}")
    return ImageDetails(hostname=hostname, image_name=image_name, tag=tag)


def _last_segment(name: str) -> str:
    return name[name.rfind("/") + 1 :]


def _is_registry_host(segment: str) -> bool:
    return "." in segment or ":" in segment or segment == "localhost"
