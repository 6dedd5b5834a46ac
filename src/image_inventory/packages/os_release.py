"""Operating system detection from os-release files."""

import logging
import re
from typing import Any, Mapping

from ..extractor.actions import glob_action
from ..models import ExtractAction, OSRelease

logger = logging.getLogger(__name__)

OS_RELEASE_ACTION = "os-release"

# Checked in order; the first one present wins
OS_RELEASE_PATHS = ("/etc/os-release", "/usr/lib/os-release")

_LINE_RE = re.compile(
    r"""^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^#\s]*))"""
)


def os_release_action() -> ExtractAction:
    return glob_action(OS_RELEASE_ACTION, OS_RELEASE_PATHS)


def parse_os_release_fields(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines, dropping quotes and comments."""
    fields = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = _LINE_RE.match(line)
        if match is None:
            continue
        value = next((g for g in match.groups()[1:] if g is not None), "")
        fields[match.group(1)] = value
    return fields


def parse_os_release(text: str) -> OSRelease:
    """Build an OSRelease from the content of an os-release file.

    Examples:
        parse_os_release('ID=alpine\\nVERSION_ID=3.12.0\\n')
        # OSRelease(name="alpine", version="3.12.0")
    """
    fields = parse_os_release_fields(text)
    name = fields.get("ID")
    if not name:
        logger.warning("os-release has no ID field")
        return OSRelease()

    version = fields.get("VERSION_ID")
    if not version:
        # Debian testing and sid omit VERSION_ID
        version = "unstable" if name == "debian" else "0.0"
    return OSRelease(name=name, version=version, pretty_name=fields.get("PRETTY_NAME"))


def detect_os_release(extracted_layers: Mapping[str, Mapping[str, Any]]) -> OSRelease:
    """Pick the OS from extracted os-release files, or the unknown default."""
    for path in OS_RELEASE_PATHS:
        content = extracted_layers.get(path, {}).get(OS_RELEASE_ACTION)
        if content:
            return parse_os_release(content)
    return OSRelease()
