"""Extract action registry and helpers to build path-matching actions."""

import re
from typing import Any, BinaryIO, Callable, Iterable, Iterator

from ..models import ExtractAction


def stream_to_bytes(stream: BinaryIO) -> bytes:
    return stream.read()


def stream_to_string(stream: BinaryIO, encoding: str = "utf-8") -> str:
    """Decode a file stream, replacing undecodable bytes."""
    return stream.read().decode(encoding, errors="replace")


def compile_glob(pattern: str) -> re.Pattern:
    """Compile a path glob into a regex.

    ``*`` and ``?`` never cross a '/', ``**`` spans directories. ``[...]``
    and ``[!...]`` classes match one character other than '/'. Dot files
    are matched like any other name.
    """
    parts = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            end = _class_end(pattern, i)
            if end is None:
                parts.append(re.escape("["))
                i += 1
                continue
            body = pattern[i + 1 : end].replace("\\", "\\\\").replace("[", "\\[")
            if body.startswith("!"):
                body = "^" + body[1:]
            elif body.startswith("^"):
                body = "\\" + body
            parts.append(f"(?!/)[{body}]")
            i = end + 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def _class_end(pattern: str, start: int) -> int | None:
    """Index of the ']' closing the class opened at ``start``, if any."""
    i = start + 1
    if i < len(pattern) and pattern[i] == "!":
        i += 1
    # A ']' first in the class is a literal member
    if i < len(pattern) and pattern[i] == "]":
        i += 1
    end = pattern.find("]", i)
    return end if end != -1 else None


def glob_matcher(
    patterns: Iterable[str], exclude_patterns: Iterable[str] = ()
) -> Callable[[str], bool]:
    """Build a predicate matching paths against include and exclude globs."""
    include = [compile_glob(p) for p in patterns]
    exclude = [compile_glob(p) for p in exclude_patterns]

    def matches(path: str) -> bool:
        if not any(regex.match(path) for regex in include):
            return False
        return not any(regex.match(path) for regex in exclude)

    return matches


def glob_action(
    name: str,
    patterns: Iterable[str],
    callback: Callable[[BinaryIO], Any] = stream_to_string,
    exclude_patterns: Iterable[str] = (),
) -> ExtractAction:
    """Create an action running ``callback`` on files matching ``patterns``.

    Args:
        name: Action name, the key results are stored under
        patterns: Absolute path globs, e.g. "/var/lib/dpkg/status.d/*"
        callback: Function (or coroutine function) receiving the file stream
        exclude_patterns: Globs of paths to skip even when included

    Returns:
        ExtractAction
    """
    return ExtractAction(
        name=name,
        matches=glob_matcher(patterns, exclude_patterns),
        callback=callback,
    )


class ActionRegistry:
    """Ordered collection of extract actions with unique names."""

    def __init__(self, actions: Iterable[ExtractAction] = ()) -> None:
        self._actions: list[ExtractAction] = []
        for action in actions:
            self.register(action)

    def register(self, action: ExtractAction) -> None:
        """Add an action.

        Raises:
            ValueError: If an action with the same name is registered
        """
        if any(existing.name == action.name for existing in self._actions):
            raise ValueError(f"Duplicate extract action: {action.name}")
        self._actions.append(action)

    def matching(self, path: str) -> list[ExtractAction]:
        """Return the actions interested in ``path``, in registration order."""
        return [action for action in self._actions if action.matches(path)]

    def __iter__(self) -> Iterator[ExtractAction]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)
