"""Builders for synthetic image archives."""

import gzip
import hashlib
import io
import json
import tarfile
from pathlib import Path
from typing import NamedTuple, Union


class Symlink(NamedTuple):
    target: str


class Directory:
    """Marker for a directory entry."""


DIR = Directory()

EntryContent = Union[str, bytes, Symlink, Directory]


def sha256(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))


def make_layer(entries: list[tuple[str, EntryContent]]) -> bytes:
    """Build an uncompressed layer tar from (path, content) pairs.

    Paths are written as given, so "./etc/x" and "etc/x" styles can both be
    exercised.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in entries:
            if isinstance(content, Directory):
                info = tarfile.TarInfo(name)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            elif isinstance(content, Symlink):
                info = tarfile.TarInfo(name)
                info.type = tarfile.SYMTYPE
                info.linkname = content.target
                tar.addfile(info)
            else:
                data = content.encode() if isinstance(content, str) else content
                _add_bytes(tar, name, data)
    return buffer.getvalue()


def make_config(layers: list[bytes]) -> bytes:
    return json.dumps(
        {
            "architecture": "amd64",
            "os": "linux",
            "rootfs": {
                "type": "layers",
                "diff_ids": [sha256(layer) for layer in layers],
            },
        }
    ).encode()


def write_docker_archive(
    path: Path, layers: list[bytes], repo_tags: list[str] | None = None
) -> Path:
    """Write a ``docker save`` style archive."""
    config = make_config(layers)
    config_name = sha256(config).split(":", 1)[1] + ".json"
    layer_names = [f"{sha256(layer).split(':', 1)[1]}/layer.tar" for layer in layers]
    manifest = [
        {
            "Config": config_name,
            "RepoTags": repo_tags if repo_tags is not None else ["test/app:1.0"],
            "Layers": layer_names,
        }
    ]
    with tarfile.open(path, "w") as tar:
        _add_bytes(tar, config_name, config)
        for name, layer in zip(layer_names, layers):
            _add_bytes(tar, name, layer)
        _add_bytes(tar, "manifest.json", json.dumps(manifest).encode())
    return path


def write_legacy_docker_archive(
    path: Path, layers: list[bytes], repository: str = "test/app", tag: str = "1.0"
) -> Path:
    """Write a pre-1.10 ``docker save`` archive without manifest.json."""
    ids = [
        hashlib.sha256(b"id-%d" % i + layer).hexdigest()
        for i, layer in enumerate(layers)
    ]
    with tarfile.open(path, "w") as tar:
        for i, (layer_id, layer) in enumerate(zip(ids, layers)):
            layer_json = {"id": layer_id}
            if i > 0:
                layer_json["parent"] = ids[i - 1]
            _add_bytes(tar, f"{layer_id}/json", json.dumps(layer_json).encode())
            _add_bytes(tar, f"{layer_id}/layer.tar", layer)
        repositories = {repository: {tag: ids[-1]}}
        _add_bytes(tar, "repositories", json.dumps(repositories).encode())
    return path


def _oci_blob(tar: tarfile.TarFile, data: bytes) -> str:
    digest = sha256(data)
    _add_bytes(tar, "blobs/sha256/" + digest.split(":", 1)[1], data)
    return digest


def write_oci_archive(
    path: Path,
    layers: list[bytes],
    ref_name: str | None = "1.0",
    compress: bool = False,
    nested_index: bool = False,
) -> Path:
    """Write an OCI image layout archive.

    Args:
        path: Archive to create
        layers: Uncompressed layer tars, base first
        ref_name: Value of the ref.name annotation, or None for none
        compress: Store layers gzip compressed
        nested_index: Put the manifest behind a multi-platform image index
    """
    with tarfile.open(path, "w") as tar:
        _add_bytes(tar, "oci-layout", b'{"imageLayoutVersion": "1.0.0"}')

        config = make_config(layers)
        layer_descriptors = []
        for layer in layers:
            blob = gzip.compress(layer) if compress else layer
            media_type = "application/vnd.oci.image.layer.v1.tar"
            if compress:
                media_type += "+gzip"
            layer_descriptors.append(
                {
                    "mediaType": media_type,
                    "digest": _oci_blob(tar, blob),
                    "size": len(blob),
                }
            )

        manifest = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": "application/vnd.oci.image.manifest.v1+json",
                "config": {
                    "mediaType": "application/vnd.oci.image.config.v1+json",
                    "digest": _oci_blob(tar, config),
                    "size": len(config),
                },
                "layers": layer_descriptors,
            }
        ).encode()
        descriptor = {
            "mediaType": "application/vnd.oci.image.manifest.v1+json",
            "digest": _oci_blob(tar, manifest),
            "size": len(manifest),
            "platform": {"os": "linux", "architecture": "amd64"},
        }

        if nested_index:
            arm_manifest = json.dumps(
                {"schemaVersion": 2, "config": {}, "layers": []}
            ).encode()
            arm_descriptor = {
                "mediaType": "application/vnd.oci.image.manifest.v1+json",
                "digest": _oci_blob(tar, arm_manifest),
                "size": len(arm_manifest),
                "platform": {"os": "linux", "architecture": "arm64"},
            }
            nested = json.dumps(
                {"schemaVersion": 2, "manifests": [arm_descriptor, descriptor]}
            ).encode()
            descriptor = {
                "mediaType": "application/vnd.oci.image.index.v1+json",
                "digest": _oci_blob(tar, nested),
                "size": len(nested),
            }

        if ref_name:
            descriptor["annotations"] = {"org.opencontainers.image.ref.name": ref_name}
        index = {"schemaVersion": 2, "manifests": [descriptor]}
        _add_bytes(tar, "index.json", json.dumps(index).encode())
    return path


def write_archive(path: Path, members: dict[str, bytes]) -> Path:
    """Write an arbitrary archive, for malformed-manifest cases."""
    with tarfile.open(path, "w") as tar:
        for name, data in members.items():
            _add_bytes(tar, name, data)
    return path


DPKG_STATUS = """\
Package: libc6
Status: install ok installed
Version: 2.28-10
Source: glibc
Depends: libgcc1

Package: libgcc1
Status: install ok installed
Version: 1:8.3.0-6
Source: gcc-8 (8.3.0-6)
Depends: libc6 (>= 2.14)

Package: curl
Status: install ok installed
Version: 7.64.0-4
Depends: libc6 (>= 2.17), libcurl4 (= 7.64.0-4)

Package: libcurl4
Status: install ok installed
Version: 7.64.0-4
Source: curl
Depends: libc6 (>= 2.17)

Package: removed-pkg
Status: deinstall ok config-files
Version: 1.0
"""

EXTENDED_STATES = """\
Package: libcurl4
Architecture: amd64
Auto-Installed: 1

Package: libgcc1
Architecture: amd64
Auto-Installed: 1
"""


APK_INSTALLED = """\
C:Q1Z4bXbfbq/7NhYDaHGK4YpcR5oVE=
P:musl
V:1.1.24-r9
A:x86_64
o:musl
p:so:libc.musl-x86_64.so.1=1

P:busybox
V:1.31.1-r19
o:busybox
D:so:libc.musl-x86_64.so.1
p:/bin/sh cmd:busybox=1.31.1-r19

P:alpine-baselayout
V:3.2.0-r7
D:/bin/sh so:libc.musl-x86_64.so.1 !alpine-baselayout-data
"""
