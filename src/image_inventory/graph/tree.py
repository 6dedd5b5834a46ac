"""Dependency tree construction from package records.

Packages pulled in by nearly everything (libc, base utilities) would be
repeated under almost every node; they are counted first and reported once,
flat, under a ``meta-common-packages`` node instead.
"""

import logging
from typing import Iterable, Iterator, Optional

from ..models import (
    AnalysisType,
    DependencyNode,
    DependencyTree,
    OSRelease,
    PackageRecord,
)
from ..utils.reference import split_image_reference

logger = logging.getLogger(__name__)

DEP_FREQ_THRESHOLD = 100
META_PACKAGE_NAME = "meta-common-packages"
META_PACKAGE_VERSION = "meta"
ROOT_NAME_PREFIX = "docker-image|"
PACKAGE_FORMAT_VERSION = "0.0.1"

_DONE = object()


class DependencyTreeBuilder:
    """Builds a cycle-free dependency tree from a flat list of records.

    A record is expanded the first time it is reached; every later reference
    becomes a childless stub, which keeps the tree size linear in the number
    of records.
    """

    def __init__(
        self,
        records: Iterable[PackageRecord],
        freq_threshold: int = DEP_FREQ_THRESHOLD,
    ) -> None:
        self.records = list(records)
        self.freq_threshold = freq_threshold
        self.by_name: dict[str, PackageRecord] = {}
        self.by_provides: dict[str, PackageRecord] = {}
        for record in self.records:
            self.by_name[record.name] = record
        for record in self.records:
            for virtual_name in record.provides:
                self.by_provides[virtual_name] = record
        self._visited: set[int] = set()

    def resolve(self, name: str) -> Optional[PackageRecord]:
        """Look a dependency up by package name, then by provided name."""
        record = self.by_name.get(name)
        if record is None:
            record = self.by_provides.get(name)
        return record

    def is_visited(self, record: PackageRecord) -> bool:
        return id(record) in self._visited

    def count_occurrences(self) -> dict[str, int]:
        """Count how often each package is reached walking from every record.

        Every path is counted, so a package reached through two different
        parents in one walk counts twice. Cycles are cut per walk.

        Returns:
            Mapping of real package name to occurrence count
        """
        counts: dict[str, int] = {}
        for record in self.records:
            self._count_walk(record.name, counts)
        return counts

    def too_frequent(self, counts: dict[str, int]) -> list[str]:
        return [name for name, count in counts.items() if count > self.freq_threshold]

    def expand(
        self,
        name: str,
        skip: frozenset[str] = frozenset(),
        ancestors: Iterable[str] = (),
    ) -> Optional[DependencyNode]:
        """Expand the subtree of the package ``name`` resolves to.

        Args:
            name: Package or virtual name
            skip: Real package names never to place in the tree
            ancestors: Fully-qualified names already on the path to this node

        Returns:
            The subtree, a stub if the package was expanded before, or None if
            the name is unresolved, would close a cycle, or is skipped
        """
        ancestor_names = set(ancestors)
        record = self.resolve(name)
        if record is None or record.full_name in ancestor_names or record.name in skip:
            return None

        root = DependencyNode(record.full_name, record.version)
        if self.is_visited(record):
            return root
        self._visited.add(id(record))
        ancestor_names.add(root.name)

        # The stack holds the path from ``root`` to the node being expanded
        stack: list[tuple[DependencyNode, Iterator[str]]] = [(root, iter(record.deps))]
        while stack:
            node, dep_names = stack[-1]
            dep_name = next(dep_names, _DONE)
            if dep_name is _DONE:
                stack.pop()
                ancestor_names.discard(node.name)
                continue

            dep = self.resolve(dep_name)
            if dep is None:
                continue
            full_name = dep.full_name
            if full_name in ancestor_names or dep.name in skip:
                continue

            child = DependencyNode(full_name, dep.version)
            # First resolution wins; a duplicate is still expanded, then dropped
            node.add_child(child)
            if self.is_visited(dep):
                continue
            self._visited.add(id(dep))
            ancestor_names.add(full_name)
            stack.append((child, iter(dep.deps)))

        return root

    def build(
        self,
        target_image: str,
        package_format_version: str,
        target_os: Optional[OSRelease] = None,
    ) -> DependencyTree:
        """Build the tree rooted at the image.

        Raises:
            InvalidReferenceError: If ``target_image`` cannot be split
        """
        self._visited = set()
        image_name, image_tag = split_image_reference(target_image)
        # Never use the bare image name, so the image is not reported as a package
        root = DependencyNode(ROOT_NAME_PREFIX + image_name, image_tag)

        too_frequent = self.too_frequent(self.count_occurrences())
        skip = frozenset(too_frequent)

        # Explicitly installed packages first
        for record in self.records:
            if not record.auto_installed:
                self._attach(root, record.name, skip)

        # Then auto-installed packages nothing depends on
        not_visited = [
            record
            for record in self.records
            if not self.is_visited(self.by_name[record.name])
        ]
        for record in not_visited:
            self._attach(root, record.name, skip)

        if too_frequent:
            meta = DependencyNode(META_PACKAGE_NAME, META_PACKAGE_VERSION)
            for name in too_frequent:
                record = self.by_name[name]
                meta.add_child(DependencyNode(record.full_name, record.version))
            root.add_child(meta)
            logger.debug(
                "Grouped %d common packages under %s",
                len(too_frequent),
                META_PACKAGE_NAME,
            )

        return DependencyTree(
            root=root,
            target_os=target_os or OSRelease(),
            package_format_version=package_format_version,
        )

    def _attach(self, root: DependencyNode, name: str, skip: frozenset[str]) -> None:
        subtree = self.expand(name, skip)
        if subtree is not None:
            root.add_child(subtree)

    def _count_walk(self, name: str, counts: dict[str, int]) -> None:
        record = self.resolve(name)
        if record is None:
            return

        counts[record.name] = counts.get(record.name, 0) + 1
        ancestors = {record.name}
        stack: list[tuple[PackageRecord, Iterator[str]]] = [(record, iter(record.deps))]
        while stack:
            current, dep_names = stack[-1]
            dep_name = next(dep_names, _DONE)
            if dep_name is _DONE:
                stack.pop()
                ancestors.discard(current.name)
                continue

            dep = self.resolve(dep_name)
            if dep is None or dep.name in ancestors:
                continue
            counts[dep.name] = counts.get(dep.name, 0) + 1
            ancestors.add(dep.name)
            stack.append((dep, iter(dep.deps)))


def build_tree(
    target_image: str,
    analysis_type: AnalysisType,
    records: Iterable[PackageRecord],
    target_os: Optional[OSRelease] = None,
) -> DependencyTree:
    """Build the dependency tree of an image.

    Args:
        target_image: Image reference the tree is rooted at (e.g. "nginx:1.18")
        analysis_type: Package manager the records come from
        records: Package records of the image, in database order
        target_os: Operating system of the image

    Returns:
        DependencyTree whose ``to_dict()`` is the reported package tree

    Raises:
        InvalidReferenceError: If ``target_image`` cannot be split

    Examples:
        tree = build_tree("debian:10", AnalysisType.APT, records)
        print(tree.to_dict()["packageFormatVersion"])  # "deb:0.0.1"
    """
    dep_type = AnalysisType(analysis_type).dep_type
    builder = DependencyTreeBuilder(records)
    return builder.build(
        target_image,
        package_format_version=f"{dep_type}:{PACKAGE_FORMAT_VERSION}",
        target_os=target_os,
    )
