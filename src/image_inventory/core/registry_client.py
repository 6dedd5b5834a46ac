"""Docker Registry API v2 async client for pulling images as OCI archives."""

import asyncio
import hashlib
import json
import logging
import tarfile
import tempfile
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiohttp

from ..exceptions import (
    BlobDownloadError,
    ManifestError,
    RegistryConnectionError,
    RegistryError,
)
from ..tar.manifest import (
    DOCKER_MANIFEST,
    INDEX_TYPES,
    MAX_INDEX_DEPTH,
    OCI_INDEX,
    OCI_LAYOUT,
    OCI_MANIFEST,
    REF_NAME_ANNOTATION,
    platform_rank,
)
from ..utils.digest import blob_path, calculate_digest, split_digest
from ..utils.reference import extract_image_details
from .types import RegistryConfig

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join(
    [
        OCI_MANIFEST,
        DOCKER_MANIFEST,
        *INDEX_TYPES,
    ]
)

CHUNK_SIZE = 1024 * 1024  # 1MB


class RegistryClient:
    """Docker Registry API v2 async client for unauthenticated registries."""

    def __init__(
        self,
        config: RegistryConfig,
        connector: Optional[aiohttp.TCPConnector] = None,
        concurrent_downloads: int = 3,
    ) -> None:
        """Initialize the registry client.

        Args:
            config: Registry URL, timeout and preferred platform
            connector: aiohttp connector for connection pooling
            concurrent_downloads: Number of blobs fetched at the same time
        """
        self.config = config
        self.connector = connector
        self.concurrent_downloads = concurrent_downloads
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        if not self.session:
            self.session = aiohttp.ClientSession(
                connector=self.connector,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def check_registry_v2(self) -> bool:
        """Check if the registry supports v2 API.

        Returns:
            True if v2 API is supported
        """
        try:
            async with self.session.get(f"{self.config.url}/v2/") as resp:
                return resp.status == 200
        except aiohttp.ClientError:
            return False

    async def fetch_manifest(
        self, repository: str, reference: str
    ) -> tuple[bytes, str]:
        """Fetch a manifest or index exactly as the registry serves it.

        Args:
            repository: Repository name
            reference: Tag or digest reference

        Returns:
            (raw manifest bytes, media type) tuple

        Raises:
            ManifestError: If retrieval fails
        """
        url = f"{self.config.url}/v2/{repository}/manifests/{reference}"
        try:
            async with self.session.get(
                url, headers={"Accept": MANIFEST_ACCEPT}
            ) as resp:
                resp.raise_for_status()
                body = await resp.read()
                content_type = resp.headers.get("Content-Type", "").split(";")[0]
        except aiohttp.ClientError as e:
            raise ManifestError(f"Failed to get manifest: {e}") from e

        try:
            media_type = json.loads(body).get("mediaType") or content_type
        except (json.JSONDecodeError, UnicodeDecodeError, AttributeError) as e:
            raise ManifestError(f"Invalid manifest for {repository}:{reference}") from e
        return body, media_type

    async def resolve_manifest(
        self, repository: str, reference: str
    ) -> tuple[dict[str, Any], bytes, str]:
        """Fetch the image manifest of ``reference`` for the configured platform.

        Image indexes and manifest lists are followed to the entry matching
        ``config.platform``.

        Returns:
            (parsed manifest, raw manifest bytes, media type) tuple

        Raises:
            ManifestError: If no image manifest can be reached
        """
        for _ in range(MAX_INDEX_DEPTH + 1):
            body, media_type = await self.fetch_manifest(repository, reference)
            manifest = json.loads(body)
            if media_type not in INDEX_TYPES and "manifests" not in manifest:
                if not isinstance(manifest.get("layers"), list):
                    raise ManifestError(f"Manifest {reference} has no layers")
                return manifest, body, media_type or OCI_MANIFEST

            descriptors = [
                d
                for d in manifest.get("manifests") or []
                if isinstance(d, dict) and d.get("digest")
            ]
            if not descriptors:
                raise ManifestError(f"Image index {reference} lists no manifests")
            descriptors.sort(key=lambda d: platform_rank(d, self.config.platform))
            reference = descriptors[0]["digest"]
            logger.debug("Following image index of %s to %s", repository, reference)

        raise ManifestError("Image index nesting is too deep")

    async def get_manifest(self, repository: str, reference: str) -> dict[str, Any]:
        """Retrieve the image manifest of a tag or digest.

        Args:
            repository: Repository name (e.g. "library/alpine")
            reference: Tag or digest reference

        Returns:
            Manifest dictionary

        Raises:
            ManifestError: If retrieval fails
        """
        manifest, _, _ = await self.resolve_manifest(repository, reference)
        return manifest

    async def download_blob(self, repository: str, digest: str, dest: Path) -> Path:
        """Stream a blob to ``dest`` and verify its digest.

        Args:
            repository: Repository name
            digest: Blob digest
            dest: File to write

        Returns:
            Path of the written blob

        Raises:
            BlobDownloadError: If download fails or the content does not match
        """
        try:
            algorithm, expected = split_digest(digest)
        except ValueError as e:
            raise BlobDownloadError(str(e)) from e

        hasher = hashlib.new(algorithm)
        url = f"{self.config.url}/v2/{repository}/blobs/{digest}"
        dest = Path(dest)
        try:
            async with self.session.get(url) as resp:
                resp.raise_for_status()
                async with aiofiles.open(dest, "wb") as f:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        hasher.update(chunk)
                        await f.write(chunk)
        except aiohttp.ClientError as e:
            raise BlobDownloadError(f"Failed to download blob {digest}: {e}") from e

        if hasher.hexdigest() != expected:
            dest.unlink(missing_ok=True)
            raise BlobDownloadError(f"Digest mismatch for blob {digest}")
        logger.debug("Downloaded blob %s", digest)
        return dest

    async def pull_oci_archive(self, reference: str, dest_path: str | Path) -> Path:
        """Pull an image and save it as an OCI layout tar.

        Args:
            reference: Image reference; the registry part is ignored in favour
                of ``config.url`` (e.g. "alpine:3.12", "myapp@sha256:...")
            dest_path: Archive file to create

        Returns:
            Path of the written archive

        Raises:
            RegistryConnectionError: If the registry does not speak API v2
            ManifestError: If the manifest cannot be retrieved
            BlobDownloadError: If a blob cannot be downloaded

        Examples:
            config = RegistryConfig(url="http://localhost:5000")
            async with RegistryClient(config) as client:
                await client.pull_oci_archive("alpine:3.12", "alpine.tar")
        """
        if not await self.check_registry_v2():
            raise RegistryConnectionError(
                f"Registry at {self.config.url} does not support v2 API"
            )

        details = extract_image_details(reference)
        repository = details.image_name
        manifest, raw_manifest, media_type = await self.resolve_manifest(
            repository, details.tag
        )

        descriptors = [manifest.get("config") or {}] + list(manifest["layers"])
        digests = [d.get("digest") for d in descriptors if isinstance(d, dict)]
        if not all(digests):
            raise ManifestError(f"Manifest of {reference} lacks a blob digest")

        dest_path = Path(dest_path)
        with tempfile.TemporaryDirectory() as tmp_dir:
            layout_dir = Path(tmp_dir)
            semaphore = asyncio.Semaphore(self.concurrent_downloads)

            async def fetch(digest: str) -> Path:
                async with semaphore:
                    target = layout_dir / blob_path(digest)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    return await self.download_blob(repository, digest, target)

            await asyncio.gather(*(fetch(digest) for digest in dict.fromkeys(digests)))

            manifest_digest = calculate_digest(raw_manifest)
            manifest_file = layout_dir / blob_path(manifest_digest)
            manifest_file.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(manifest_file, "wb") as f:
                await f.write(raw_manifest)

            index = {
                "schemaVersion": 2,
                "manifests": [
                    {
                        "mediaType": media_type,
                        "digest": manifest_digest,
                        "size": len(raw_manifest),
                        "annotations": {REF_NAME_ANNOTATION: details.tag},
                    }
                ],
            }
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, write_oci_archive, layout_dir, index, dest_path
            )

        logger.info("Saved %s (%s) to %s", reference, manifest_digest, dest_path)
        return dest_path


def write_oci_archive(layout_dir: Path, index: dict[str, Any], dest_path: Path) -> Path:
    """Write an OCI image layout tar from downloaded blobs.

    Args:
        layout_dir: Directory holding ``blobs/<alg>/<hex>`` files
        index: Content of index.json
        dest_path: Archive file to create

    Returns:
        Path of the written archive

    Raises:
        RegistryError: If the archive cannot be written
    """
    layout_dir = Path(layout_dir)
    try:
        layout = {"imageLayoutVersion": "1.0.0"}
        (layout_dir / OCI_LAYOUT).write_text(json.dumps(layout))
        (layout_dir / OCI_INDEX).write_text(json.dumps(index))
        with tarfile.open(dest_path, "w") as tar:
            tar.add(layout_dir / OCI_LAYOUT, arcname=OCI_LAYOUT)
            tar.add(layout_dir / OCI_INDEX, arcname=OCI_INDEX)
            blobs_dir = layout_dir / "blobs"
            if blobs_dir.exists():
                for blob in sorted(blobs_dir.rglob("*")):
                    if blob.is_file():
                        tar.add(blob, arcname=blob.relative_to(layout_dir).as_posix())
    except (OSError, tarfile.TarError) as e:
        raise RegistryError(f"Failed to write OCI archive {dest_path}: {e}") from e
    return Path(dest_path)
