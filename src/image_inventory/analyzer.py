"""Static analysis of image archives.

Ties the pieces together: archive → layer plan → extracted package
databases → package records → dependency tree.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Mapping

from .core.types import StaticAnalysisOptions
from .extractor.actions import ActionRegistry
from .extractor.layers import LayerExtractor
from .graph.tree import build_tree
from .models import AnalysisType, LayerPlan, PackageRecord
from .packages import (
    collect_manifest_files,
    default_actions,
    detect_os_release,
    manifest_files_action,
    parse_apk_installed,
    parse_dpkg_status,
)
from .packages.apk import APK_DB_ACTION, APK_WORLD_ACTION
from .packages.dpkg import DPKG_ACTION, EXTENDED_STATES_ACTION
from .tar.manifest import detect_image_type, resolve_layer_plan
from .tar.reader import ArchiveReader

logger = logging.getLogger(__name__)

ExtractedLayers = Mapping[str, Mapping[str, Any]]

# Docker tag grammar
_TAG_RE = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")


def _action_results(extracted_layers: ExtractedLayers, action_name: str) -> list[str]:
    """Results of one action, in path order."""
    return [
        extracted_layers[path][action_name]
        for path in sorted(extracted_layers)
        if action_name in extracted_layers[path]
    ]


def _first_result(extracted_layers: ExtractedLayers, action_name: str) -> str | None:
    results = _action_results(extracted_layers, action_name)
    return results[0] if results else None


def apt_records(extracted_layers: ExtractedLayers) -> list[PackageRecord]:
    """Records from every dpkg status file (status and status.d/*)."""
    extended_states = _first_result(extracted_layers, EXTENDED_STATES_ACTION)
    records = []
    for text in _action_results(extracted_layers, DPKG_ACTION):
        records.extend(parse_dpkg_status(text, extended_states))
    return records


def apk_records(extracted_layers: ExtractedLayers) -> list[PackageRecord]:
    installed = _first_result(extracted_layers, APK_DB_ACTION)
    if installed is None:
        return []
    return parse_apk_installed(
        installed, _first_result(extracted_layers, APK_WORLD_ACTION)
    )


def parse_package_records(
    extracted_layers: ExtractedLayers,
) -> tuple[AnalysisType, list[PackageRecord]]:
    """Pick the first package manager that reports any package.

    Images without a known package manager (scratch, distroless static)
    yield ``AnalysisType.LINUX`` and no records.
    """
    for analysis_type, parse in (
        (AnalysisType.APT, apt_records),
        (AnalysisType.APK, apk_records),
    ):
        records = parse(extracted_layers)
        if records:
            return analysis_type, records
    return AnalysisType.LINUX, []


def default_image_name(plan: LayerPlan, image_path: Path) -> str:
    """Name an archive's image when the caller gave none.

    Docker archives carry full ``repo:tag`` names. OCI ref names are often a
    bare tag, which is paired with the archive file stem instead.

    Examples:
        # OCI archive "debian.tar" with ref name "10"
        default_image_name(plan, Path("debian.tar"))  # "debian:10"
    """
    for repo_tag in plan.repo_tags:
        if "/" in repo_tag or ":" in repo_tag:
            return repo_tag
    for ref_name in plan.repo_tags:
        if _TAG_RE.fullmatch(ref_name):
            return f"{image_path.stem}:{ref_name}"
    return image_path.stem


async def analyze_statically(options: StaticAnalysisOptions) -> dict[str, Any]:
    """Analyze an image archive without running it.

    Args:
        options: Archive location, optional type and name, manifest globs

    Returns:
        dict with ``package`` (dependency tree), ``packageManager``,
        ``imageId``, ``imageLayers`` and ``manifestFiles``

    Raises:
        TarReadError: If the archive cannot be opened
        FormatError: If the archive manifest cannot be resolved
        ExtractionError: If a layer cannot be read
        InvalidReferenceError: If the image name cannot be split

    Examples:
        options = StaticAnalysisOptions(image_path="debian.tar")
        analysis = await analyze_statically(options)
        print(analysis["packageManager"])  # "deb"
    """
    registry = ActionRegistry(default_actions())
    if options.manifest_globs:
        registry.register(
            manifest_files_action(
                options.manifest_globs, options.manifest_exclude_globs
            )
        )

    loop = asyncio.get_running_loop()
    async with ArchiveReader(options.image_path) as reader:
        image_type = options.image_type
        if image_type is None:
            image_type = await loop.run_in_executor(None, detect_image_type, reader)
        plan = await loop.run_in_executor(
            None, resolve_layer_plan, reader, image_type
        )
        result = await LayerExtractor(registry, options.extraction).extract(
            reader, plan
        )

    extracted_layers = result.extracted_layers
    manifest_files = collect_manifest_files(extracted_layers)
    analysis_type, records = parse_package_records(extracted_layers)

    image_name = options.image_name or default_image_name(plan, options.image_path)

    tree = build_tree(
        image_name, analysis_type, records, detect_os_release(extracted_layers)
    )
    logger.info(
        "Analyzed %s: %d %s packages", image_name, len(records), analysis_type.value
    )

    return {
        "package": tree.to_dict(),
        "packageManager": analysis_type.dep_type,
        "imageId": result.image_id,
        "imageLayers": list(result.manifest_layers),
        "manifestFiles": [f.to_dict() for f in manifest_files],
    }
