"""Alpine package database parsing."""

import logging

from ..extractor.actions import glob_action
from ..models import ExtractAction, PackageRecord

logger = logging.getLogger(__name__)

APK_DB_ACTION = "apk-db"
APK_WORLD_ACTION = "apk-world"

APK_DB_PATH = "/lib/apk/db/installed"
APK_WORLD_PATH = "/etc/apk/world"


def apk_actions() -> list[ExtractAction]:
    """Extract actions for the apk installed database and world file."""
    return [
        glob_action(APK_DB_ACTION, [APK_DB_PATH]),
        glob_action(APK_WORLD_ACTION, [APK_WORLD_PATH]),
    ]


def _strip_constraint(token: str) -> str:
    """Reduce "so:libc.musl-x86_64.so.1=1" or "busybox>1.30" to the name."""
    for operator in ("<", ">", "=", "~"):
        token = token.split(operator, 1)[0]
    return token


def parse_world(text: str) -> set[str]:
    """Return the package names explicitly requested in /etc/apk/world."""
    return {_strip_constraint(token) for token in text.split() if token}


def parse_apk_installed(text: str, world: str | None = None) -> list[PackageRecord]:
    """Parse /lib/apk/db/installed into package records.

    Args:
        text: Content of the installed database
        world: Content of /etc/apk/world; when given, packages it does not
            list are marked auto-installed

    Returns:
        Records in database order
    """
    requested = parse_world(world) if world is not None else None

    records = []
    fields: dict[str, list[str]] = {}
    for line in text.splitlines() + [""]:
        if line.strip():
            key, sep, value = line.partition(":")
            if sep and len(key) == 1:
                fields.setdefault(key, []).append(value.strip())
            continue
        if not fields:
            continue

        name = (fields.get("P") or [""])[0]
        version = (fields.get("V") or [""])[0]
        if not name or not version:
            logger.warning("Skipping apk entry without P or V")
            fields = {}
            continue

        deps: dict[str, str] = {}
        for dep_line in fields.get("D", []):
            for token in dep_line.split():
                if token.startswith("!"):
                    continue
                dep_name = _strip_constraint(token)
                if dep_name:
                    deps.setdefault(dep_name, token[len(dep_name) :])

        provides = []
        for provides_line in fields.get("p", []):
            provides.extend(_strip_constraint(token) for token in provides_line.split())

        records.append(
            PackageRecord(
                name=name,
                version=version,
                source=(fields.get("o") or [None])[0] or None,
                provides=[p for p in provides if p],
                deps=deps,
                auto_installed=requested is not None and name not in requested,
            )
        )
        fields = {}
    return records
