"""Debian package database parsing (dpkg status and apt extended states)."""

import logging
import re
from typing import Iterator

from ..extractor.actions import glob_action
from ..models import ExtractAction, PackageRecord

logger = logging.getLogger(__name__)

DPKG_ACTION = "dpkg"
EXTENDED_STATES_ACTION = "ext"

DPKG_STATUS_PATHS = ("/var/lib/dpkg/status", "/var/lib/dpkg/status.d/*")
EXTENDED_STATES_PATH = "/var/lib/apt/extended_states"

_DEP_RE = re.compile(r"^\s*([^\s(\[]+)\s*(?:\(([^)]*)\))?")


def dpkg_actions() -> list[ExtractAction]:
    """Extract actions for the dpkg status database and apt's auto flags."""
    return [
        glob_action(DPKG_ACTION, DPKG_STATUS_PATHS),
        glob_action(EXTENDED_STATES_ACTION, [EXTENDED_STATES_PATH]),
    ]


def iter_stanzas(text: str) -> Iterator[dict[str, str]]:
    """Split a Debian control file into stanzas of ``{field: value}``.

    Continuation lines (starting with a space or tab) are appended to the
    previous field.
    """
    stanza: dict[str, str] = {}
    last_field = None
    for line in text.splitlines():
        if not line.strip():
            if stanza:
                yield stanza
            stanza = {}
            last_field = None
            continue
        if line[0] in " \t":
            if last_field is not None:
                stanza[last_field] += "\n" + line.strip()
            continue
        field_name, sep, value = line.partition(":")
        if not sep:
            logger.warning("Skipping malformed control line: %r", line)
            continue
        last_field = field_name.strip()
        stanza[last_field] = value.strip()
    if stanza:
        yield stanza


def parse_dependency_field(value: str) -> dict[str, str]:
    """Parse a ``Depends`` style field into ``{name: constraint}``.

    Only the first of a set of alternatives is kept and architecture
    qualifiers (``:any``) are dropped.

    Examples:
        parse_dependency_field("libc6 (>= 2.14), debconf | debconf-2.0")
        # {"libc6": ">= 2.14", "debconf": ""}
    """
    deps: dict[str, str] = {}
    for clause in value.split(","):
        alternative = clause.split("|")[0]
        match = _DEP_RE.match(alternative)
        if not match:
            continue
        name = match.group(1).split(":")[0]
        if name and name not in deps:
            deps[name] = (match.group(2) or "").strip()
    return deps


def parse_extended_states(text: str) -> set[str]:
    """Return the names apt marked as automatically installed."""
    auto_installed = set()
    for stanza in iter_stanzas(text):
        name = stanza.get("Package")
        if name and stanza.get("Auto-Installed") == "1":
            auto_installed.add(name)
    return auto_installed


def parse_dpkg_status(
    text: str, extended_states: str | None = None
) -> list[PackageRecord]:
    """Parse a dpkg status database into package records.

    Args:
        text: Content of /var/lib/dpkg/status (or a status.d entry)
        extended_states: Content of /var/lib/apt/extended_states, if present

    Returns:
        Records of installed packages, in database order
    """
    auto_installed = parse_extended_states(extended_states or "")

    records = []
    for stanza in iter_stanzas(text):
        name = stanza.get("Package")
        version = stanza.get("Version")
        if not name or not version:
            logger.warning("Skipping dpkg stanza without Package or Version")
            continue
        # status.d entries of distroless images carry no Status field
        status = stanza.get("Status")
        if status is not None and not status.endswith(" installed"):
            continue

        source = stanza.get("Source")
        if source:
            # "Source: glibc (2.28-10)" names a source version differing from Version
            source = source.split()[0]

        deps = parse_dependency_field(stanza.get("Pre-Depends", ""))
        for dep_name, constraint in parse_dependency_field(
            stanza.get("Depends", "")
        ).items():
            deps.setdefault(dep_name, constraint)

        records.append(
            PackageRecord(
                name=name,
                version=version,
                source=source or None,
                provides=list(parse_dependency_field(stanza.get("Provides", ""))),
                deps=deps,
                auto_installed=name in auto_installed,
            )
        )
    return records
