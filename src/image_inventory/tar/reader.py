"""Image archive reader implementation."""

import asyncio
import json
import logging
import posixpath
import tarfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

from ..exceptions import ExtractionError, TarReadError

logger = logging.getLogger(__name__)


def normalize_path(name: str) -> str:
    """Turn a tar member name into an absolute POSIX path.

    Examples:
        normalize_path("./etc/os-release")  # "/etc/os-release"
    """
    return posixpath.normpath("/" + name.lstrip("/"))


@dataclass
class LayerEntry:
    """A member of a layer tar, valid until the next member is read."""

    path: str
    info: tarfile.TarInfo
    _layer: tarfile.TarFile

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    def read(self) -> bytes:
        """Read the member's content from the layer stream.

        Raises:
            ExtractionError: If the layer stream is truncated or corrupt
        """
        try:
            file_obj = self._layer.extractfile(self.info)
            if file_obj is None:
                return b""
            with file_obj:
                return file_obj.read()
        except (tarfile.TarError, zlib.error, EOFError, OSError) as e:
            raise ExtractionError(f"Failed to read {self.path}: {e}") from e


class ArchiveReader:
    """Reader for image archives (docker save, skopeo and OCI layout tars).

    Layer tars nested in the archive are streamed, never extracted to disk.
    Can be used as a sync or an async context manager.
    """

    def __init__(self, archive_path: str | Path) -> None:
        """Initialize archive reader.

        Args:
            archive_path: Path to the archive

        Raises:
            TarReadError: If the archive does not exist
        """
        self.archive_path = Path(archive_path)
        if not self.archive_path.exists():
            raise TarReadError(f"Archive not found: {archive_path}")
        self._tar_file: Optional[tarfile.TarFile] = None

    def __enter__(self) -> "ArchiveReader":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close_sync()

    async def __aenter__(self) -> "ArchiveReader":
        """Enter async context manager."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.open)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    def open(self) -> None:
        """Open the archive.

        Raises:
            TarReadError: If the file is not a readable tar archive
        """
        if self._tar_file is not None:
            return
        try:
            self._tar_file = tarfile.open(str(self.archive_path), "r")
        except (tarfile.TarError, OSError) as e:
            raise TarReadError(f"Cannot read archive {self.archive_path}: {e}") from e

    async def close(self) -> None:
        """Close the archive."""
        if self._tar_file:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.close_sync)

    def close_sync(self) -> None:
        if self._tar_file:
            self._tar_file.close()
            self._tar_file = None

    @property
    def tar_file(self) -> tarfile.TarFile:
        if self._tar_file is None:
            raise TarReadError("Archive not opened")
        return self._tar_file

    def member_names(self) -> list[str]:
        """List the names of all archive members, without leading './'."""
        return [_clean_member_name(name) for name in self.tar_file.getnames()]

    def has_member(self, name: str) -> bool:
        return self._get_member(name) is not None

    def read_member(self, name: str) -> bytes:
        """Read a member of the archive.

        Args:
            name: Member name, e.g. "manifest.json"

        Returns:
            Member content as bytes

        Raises:
            TarReadError: If the member is missing or cannot be read
        """
        member = self._get_member(name)
        if member is None:
            raise TarReadError(f"File {name} not found in archive")

        try:
            file_obj = self.tar_file.extractfile(member)
            if file_obj is None:
                raise TarReadError(f"Could not extract {name}")
            with file_obj:
                return file_obj.read()
        except (tarfile.TarError, OSError) as e:
            raise TarReadError(f"Failed to extract {name}: {e}") from e

    def read_json(self, name: str) -> Any:
        """Read and decode a JSON member.

        Raises:
            TarReadError: If the member is missing or is not valid JSON
        """
        content = self.read_member(name)
        try:
            return json.loads(content.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TarReadError(f"Invalid JSON in {name}: {e}") from e

    def iter_layer_entries(self, member_name: str) -> Iterator[LayerEntry]:
        """Stream the entries of a layer tar stored in the archive.

        Compression (gzip, bzip2, xz) is detected automatically.

        Args:
            member_name: Archive member holding the layer tar

        Yields:
            LayerEntry for each member of the layer, in archive order

        Raises:
            ExtractionError: If the layer is missing or cannot be decoded
        """
        member = self._get_member(member_name)
        if member is None:
            raise ExtractionError(f"Layer {member_name} not found in archive")

        layer_file = self.tar_file.extractfile(member)
        if layer_file is None:
            raise ExtractionError(f"Could not extract layer {member_name}")

        logger.debug("Reading layer %s", member_name)
        try:
            with layer_file, tarfile.open(fileobj=layer_file, mode="r|*") as layer:
                for info in layer:
                    yield LayerEntry(
                        path=normalize_path(info.name), info=info, _layer=layer
                    )
        except (tarfile.TarError, zlib.error, EOFError, OSError) as e:
            raise ExtractionError(f"Failed to read layer {member_name}: {e}") from e

    def _get_member(self, name: str) -> Optional[tarfile.TarInfo]:
        name = _clean_member_name(name)
        for candidate in (name, f"./{name}"):
            try:
                return self.tar_file.getmember(candidate)
            except KeyError:
                continue
        return None


def _clean_member_name(name: str) -> str:
    while name.startswith("./"):
        name = name[2:]
    return name.lstrip("/")
