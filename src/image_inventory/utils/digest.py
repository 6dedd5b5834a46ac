"""Digest parsing and validation utilities."""

import hashlib
import re
from typing import Union

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+:[a-f0-9]+$")

SUPPORTED_ALGORITHMS = ("sha256", "sha512")


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate digest of data.

    Args:
        data: Data to hash
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Digest string in format "algorithm:hex"

    Raises:
        ValueError: If algorithm is not supported
        ValueError: If data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format
    """
    if not isinstance(digest, str):
        return False

    if not DIGEST_PATTERN.match(digest):
        return False

    algorithm, _ = digest.split(":", 1)
    return algorithm in SUPPORTED_ALGORITHMS


def split_digest(digest: str) -> tuple[str, str]:
    """Split a digest into its algorithm and hex parts.

    Raises:
        ValueError: If digest format is invalid
    """
    if not validate_digest(digest):
        raise ValueError(f"Invalid digest format: {digest}")
    algorithm, hex_part = digest.split(":", 1)
    return algorithm, hex_part


def blob_path(digest: str) -> str:
    """Return the OCI layout path of a blob, e.g. ``blobs/sha256/<hex>``."""
    algorithm, hex_part = split_digest(digest)
    return f"blobs/{algorithm}/{hex_part}"


def digest_from_path(path: str) -> str:
    """Derive a ``sha256:<hex>`` digest from a content-addressed file name.

    Handles ``blobs/sha256/<hex>``, ``<hex>.json`` and ``<hex>/layer.tar``.
    """
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 3 and parts[-3] == "blobs":
        return f"{parts[-2]}:{parts[-1]}"
    name = parts[-1] if parts else path
    if name == "layer.tar" and len(parts) >= 2:
        name = parts[-2]
    for suffix in (".json", ".tar"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    return f"sha256:{name}"
