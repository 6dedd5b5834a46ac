"""Package manager collaborators: extract actions and database parsers."""

from ..models import ExtractAction
from .apk import apk_actions, parse_apk_installed
from .dpkg import dpkg_actions, parse_dpkg_status
from .manifests import (
    MAX_MANIFEST_FILES,
    collect_manifest_files,
    manifest_files_action,
)
from .os_release import detect_os_release, os_release_action, parse_os_release
from .rpm import parse_rpm_query_output


def default_actions() -> list[ExtractAction]:
    """Extract actions every static analysis registers."""
    return [*dpkg_actions(), *apk_actions(), os_release_action()]


__all__ = [
    "MAX_MANIFEST_FILES",
    "apk_actions",
    "collect_manifest_files",
    "default_actions",
    "detect_os_release",
    "dpkg_actions",
    "manifest_files_action",
    "os_release_action",
    "parse_apk_installed",
    "parse_dpkg_status",
    "parse_os_release",
    "parse_rpm_query_output",
]
