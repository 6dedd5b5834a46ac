"""Layer extraction engine.

Layers are read from the most recent one down to the base layer. A path is
settled by the first (highest) layer that writes or deletes it, so lower
copies never need to be read and the squashed filesystem is never built.
"""

import asyncio
import inspect
import io
import logging
import posixpath
from pathlib import Path
from typing import Any, Iterable, Optional

from ..core.types import ExtractionConfig
from ..models import (
    ActionFailure,
    ExtractAction,
    ExtractionResult,
    ImageType,
    LayerPlan,
    LayerRef,
)
from ..tar.manifest import DEFAULT_PLATFORM, detect_image_type, resolve_layer_plan
from ..tar.reader import ArchiveReader
from .actions import ActionRegistry

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."
OPAQUE_WHITEOUT = ".wh..wh..opq"

# (file content, actions to run on it) per path
LayerCandidates = dict[str, tuple[bytes, list[ExtractAction]]]


class WhiteoutIndex:
    """Paths that whiteout markers hide from lower layers."""

    def __init__(self) -> None:
        self.deleted: set[str] = set()
        self.opaque_dirs: set[str] = set()

    def add_marker(self, marker_path: str) -> None:
        """Record a ``.wh.`` marker found at ``marker_path``."""
        directory, name = posixpath.split(marker_path)
        if name == OPAQUE_WHITEOUT:
            self.opaque_dirs.add(directory)
        else:
            self.deleted.add(posixpath.join(directory, name[len(WHITEOUT_PREFIX) :]))

    def update(self, other: "WhiteoutIndex") -> None:
        self.deleted |= other.deleted
        self.opaque_dirs |= other.opaque_dirs

    def hides(self, path: str) -> bool:
        """Check whether ``path`` or one of its directories was whited out."""
        if path in self.deleted:
            return True
        current = path
        while current != "/":
            parent = posixpath.dirname(current)
            if parent in self.opaque_dirs or parent in self.deleted:
                return True
            current = parent
        return False

    def __bool__(self) -> bool:
        return bool(self.deleted or self.opaque_dirs)


class LayerExtractor:
    """Runs extract actions over the squashed content of an image."""

    def __init__(
        self,
        actions: Iterable[ExtractAction],
        config: Optional[ExtractionConfig] = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            actions: Extract actions (or an ActionRegistry) to dispatch
            config: Extraction settings
        """
        if isinstance(actions, ActionRegistry):
            self.registry = actions
        else:
            self.registry = ActionRegistry(actions)
        self.config = config or ExtractionConfig()

    async def extract(self, reader: ArchiveReader, plan: LayerPlan) -> ExtractionResult:
        """Extract the files the registered actions match.

        Action callbacks for different paths run concurrently, bounded by
        ``config.max_concurrent_actions``. A failing callback is recorded in
        ``ExtractionResult.failures`` and does not affect other callbacks.

        Args:
            reader: Opened archive reader
            plan: Resolved layer plan of the archive

        Returns:
            ExtractionResult

        Raises:
            ExtractionError: If a layer cannot be read
        """
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_actions)

        resolved: set[str] = set()
        whiteouts = WhiteoutIndex()
        tasks: list[asyncio.Task] = []
        failures: list[ActionFailure] = []

        try:
            for layer in reversed(plan.layers):
                candidates, layer_paths, layer_whiteouts = await loop.run_in_executor(
                    None,
                    self._scan_layer,
                    reader,
                    layer,
                    resolved,
                    whiteouts,
                    failures,
                )
                # Markers only hide content of the layers below this one
                resolved |= layer_paths
                whiteouts.update(layer_whiteouts)

                for path, (content, actions) in candidates.items():
                    for action in actions:
                        tasks.append(
                            asyncio.ensure_future(
                                self._run_action(path, content, action, semaphore)
                            )
                        )

            outcomes = await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        extracted_layers: dict[str, dict[str, Any]] = {}
        for path, action_name, result, failure in outcomes:
            if failure is not None:
                failures.append(failure)
                continue
            extracted_layers.setdefault(path, {})[action_name] = result

        logger.debug(
            "Extracted %d paths from %d layers of %s",
            len(extracted_layers),
            len(plan.layers),
            plan.image_id,
        )
        return ExtractionResult(
            image_id=plan.image_id,
            extracted_layers=extracted_layers,
            manifest_layers=list(plan.manifest_layers),
            failures=failures,
        )

    def _scan_layer(
        self,
        reader: ArchiveReader,
        layer: LayerRef,
        resolved: set[str],
        whiteouts: WhiteoutIndex,
        failures: list[ActionFailure],
    ) -> tuple[LayerCandidates, set[str], WhiteoutIndex]:
        """Read one layer, skipping paths settled by the layers above it.

        Actions whose ``matches`` raises are recorded in ``failures``.
        """
        candidates: LayerCandidates = {}
        layer_paths: set[str] = set()
        layer_whiteouts = WhiteoutIndex()

        for entry in reader.iter_layer_entries(layer.member):
            path = entry.path
            if path in resolved or whiteouts.hides(path):
                continue

            if entry.name.startswith(WHITEOUT_PREFIX):
                layer_whiteouts.add_marker(path)
                continue
            if entry.info.isdir():
                continue

            # A later entry for the same path in this layer replaces the earlier one
            layer_paths.add(path)
            candidates.pop(path, None)
            if not entry.info.isfile():
                continue

            actions = self._matching_actions(path, failures)
            if actions:
                candidates[path] = (entry.read(), actions)

        logger.debug(
            "Layer %s: %d matching files, %d whiteouts",
            layer.digest,
            len(candidates),
            len(layer_whiteouts.deleted) + len(layer_whiteouts.opaque_dirs),
        )
        return candidates, layer_paths, layer_whiteouts

    def _matching_actions(
        self, path: str, failures: list[ActionFailure]
    ) -> list[ExtractAction]:
        actions = []
        for action in self.registry:
            try:
                matched = action.matches(path)
            except Exception as e:
                logger.warning(
                    "Extract action %s failed to match %s: %s", action.name, path, e
                )
                failures.append(ActionFailure(path, action.name, e))
                continue
            if matched:
                actions.append(action)
        return actions

    async def _run_action(
        self,
        path: str,
        content: bytes,
        action: ExtractAction,
        semaphore: asyncio.Semaphore,
    ) -> tuple[str, str, Any, Optional[ActionFailure]]:
        async with semaphore:
            stream = io.BytesIO(content)
            try:
                if inspect.iscoroutinefunction(action.callback):
                    result = await action.callback(stream)
                else:
                    loop = asyncio.get_running_loop()
                    result = await loop.run_in_executor(None, action.callback, stream)
                    if inspect.isawaitable(result):
                        result = await result
            except Exception as e:
                logger.warning(
                    "Extract action %s failed on %s: %s", action.name, path, e
                )
                return path, action.name, None, ActionFailure(path, action.name, e)
            return path, action.name, result, None


async def extract_image_layers(
    archive_path: str | Path,
    actions: Iterable[ExtractAction],
    image_type: Optional[ImageType] = None,
    config: Optional[ExtractionConfig] = None,
    platform: str = DEFAULT_PLATFORM,
) -> ExtractionResult:
    """Extract files from an image archive through the given actions.

    Args:
        archive_path: Path to a Docker-save or OCI archive
        actions: Extract actions to run on matching files
        image_type: Archive dialect; detected from the archive when omitted
        config: Extraction settings
        platform: Preferred platform when the archive holds an image index

    Returns:
        ExtractionResult with image id, extracted files and manifest layers

    Raises:
        TarReadError: If the archive cannot be opened
        FormatError: If the archive manifest cannot be resolved
        ExtractionError: If a layer cannot be read

    Examples:
        action = glob_action("os-release", ["/etc/os-release"])
        result = await extract_image_layers("nginx.tar", [action])
        print(result.extracted_layers["/etc/os-release"]["os-release"])
    """
    loop = asyncio.get_running_loop()
    async with ArchiveReader(archive_path) as reader:
        if image_type is None:
            image_type = await loop.run_in_executor(None, detect_image_type, reader)
        plan = await loop.run_in_executor(
            None, resolve_layer_plan, reader, ImageType(image_type), platform
        )
        return await LayerExtractor(actions, config).extract(reader, plan)
