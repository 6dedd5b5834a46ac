"""Collection of application manifest files (package.json, pom.xml, ...)."""

import base64
import logging
import posixpath
from typing import Any, Iterable, Mapping

from ..extractor.actions import glob_action, stream_to_bytes
from ..models import ExtractAction, ManifestFile

logger = logging.getLogger(__name__)

MANIFEST_FILES_ACTION = "manifest-files"

# Upper bound on the manifest files reported for one image
MAX_MANIFEST_FILES = 5


def manifest_files_action(
    globs: Iterable[str], exclude_globs: Iterable[str] = ()
) -> ExtractAction:
    """Extract action keeping the raw bytes of files matching ``globs``.

    Args:
        globs: Path globs, e.g. ["**/package.json", "/app/requirements.txt"]
        exclude_globs: Globs of paths to leave out, e.g. ["**/node_modules/**"]
    """
    return glob_action(
        MANIFEST_FILES_ACTION,
        globs,
        callback=stream_to_bytes,
        exclude_patterns=exclude_globs,
    )


def collect_manifest_files(
    extracted_layers: Mapping[str, Mapping[str, Any]],
    limit: int = MAX_MANIFEST_FILES,
) -> list[ManifestFile]:
    """Turn extracted manifest files into base64 encoded ManifestFile entries.

    Files are taken in path order and at most ``limit`` are kept; files that
    turn out to be empty are dropped after the limit is applied.

    Returns:
        ManifestFile entries whose ``path`` is the containing directory
    """
    paths = sorted(
        path
        for path, results in extracted_layers.items()
        if MANIFEST_FILES_ACTION in results
    )
    if len(paths) > limit:
        logger.info("Found %d manifest files, keeping the first %d", len(paths), limit)
        paths = paths[:limit]

    files = []
    for path in paths:
        content = extracted_layers[path][MANIFEST_FILES_ACTION]
        if isinstance(content, str):
            content = content.encode("utf-8")
        encoded = base64.b64encode(content or b"").decode("ascii")
        if not encoded:
            continue
        files.append(
            ManifestFile(
                name=posixpath.basename(path),
                path=posixpath.dirname(path),
                contents=encoded,
            )
        )
    return files
