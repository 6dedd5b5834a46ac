"""End-to-end tests for static analysis of image archives."""

import base64
from pathlib import Path

import pytest

from image_inventory.analyzer import (
    analyze_statically,
    default_image_name,
    parse_package_records,
)
from image_inventory.core.types import StaticAnalysisOptions
from image_inventory.exceptions import FormatError, TarReadError
from image_inventory.models import AnalysisType, ImageType, LayerPlan
from tests.helpers import (
    APK_INSTALLED,
    make_layer,
    write_archive,
    write_docker_archive,
    write_oci_archive,
)


@pytest.mark.asyncio
async def test_analyze_debian_docker_archive(tmp_path, debian_layers):
    """Test a dpkg based image produces a deb tree rooted at its repo tag."""
    archive = write_docker_archive(
        tmp_path / "debian.tar", debian_layers, ["debian:10"]
    )

    analysis = await analyze_statically(StaticAnalysisOptions(image_path=archive))

    assert analysis["packageManager"] == "deb"
    assert analysis["imageId"].startswith("sha256:")
    assert len(analysis["imageLayers"]) == 2
    assert analysis["manifestFiles"] == []

    tree = analysis["package"]
    assert tree["name"] == "docker-image|debian"
    assert tree["version"] == "10"
    assert tree["packageFormatVersion"] == "deb:0.0.1"
    assert tree["targetOS"] == {
        "name": "debian",
        "version": "10",
        "prettyName": "Debian GNU/Linux 10 (buster)",
    }
    # libcurl4 and libgcc1 are auto-installed and reached from a manual root
    assert list(tree["dependencies"]) == ["glibc/libc6", "curl"]
    assert tree["dependencies"]["glibc/libc6"]["dependencies"] == {
        "gcc-8/libgcc1": {"name": "gcc-8/libgcc1", "version": "1:8.3.0-6"}
    }
    assert list(tree["dependencies"]["curl"]["dependencies"]) == [
        "glibc/libc6",
        "curl/libcurl4",
    ]


@pytest.mark.asyncio
async def test_analysis_is_the_same_for_both_dialects(tmp_path, debian_layers):
    docker = write_docker_archive(tmp_path / "docker.tar", debian_layers)
    oci = write_oci_archive(tmp_path / "oci.tar", debian_layers, compress=True)

    docker_analysis = await analyze_statically(
        StaticAnalysisOptions(image_path=docker, image_name="debian:10")
    )
    oci_analysis = await analyze_statically(
        StaticAnalysisOptions(
            image_path=oci, image_type=ImageType.OCI_ARCHIVE, image_name="debian:10"
        )
    )

    assert docker_analysis["package"] == oci_analysis["package"]
    assert docker_analysis["imageLayers"] == oci_analysis["imageLayers"]


@pytest.mark.asyncio
async def test_analyze_alpine_oci_archive(tmp_path):
    layer = make_layer(
        [
            ("etc/os-release", "ID=alpine\nVERSION_ID=3.12.0\n"),
            ("lib/apk/db/installed", APK_INSTALLED),
            ("etc/apk/world", "alpine-baselayout\n"),
        ]
    )
    archive = write_oci_archive(tmp_path / "alpine.tar", [layer], ref_name=None)

    analysis = await analyze_statically(StaticAnalysisOptions(image_path=archive))

    assert analysis["packageManager"] == "apk"
    tree = analysis["package"]
    # No ref name annotation, so the archive name is used
    assert (tree["name"], tree["version"]) == ("docker-image|alpine", "latest")
    assert tree["targetOS"] == {"name": "alpine", "version": "3.12.0"}
    assert list(tree["dependencies"]) == ["alpine-baselayout"]
    baselayout = tree["dependencies"]["alpine-baselayout"]
    assert list(baselayout["dependencies"]) == ["busybox/busybox", "musl/musl"]


@pytest.mark.asyncio
async def test_analyze_scratch_image(tmp_path):
    """Test an image without a package manager yields an empty linux tree."""
    layer = make_layer([("hello", b"\x7fELF")])
    archive = write_docker_archive(tmp_path / "scratch.tar", [layer], repo_tags=[])

    analysis = await analyze_statically(StaticAnalysisOptions(image_path=archive))

    assert analysis["packageManager"] == "linux"
    assert analysis["package"]["name"] == "docker-image|scratch"
    assert analysis["package"]["dependencies"] == {}
    assert analysis["package"]["targetOS"] == {"name": "unknown", "version": "0.0"}


@pytest.mark.asyncio
async def test_analyze_collects_manifest_files(tmp_path):
    layer = make_layer(
        [
            ("app/package.json", '{"name": "app"}'),
            ("app/node_modules/dep/package.json", '{"name": "dep"}'),
        ]
    )
    archive = write_docker_archive(tmp_path / "node.tar", [layer])

    analysis = await analyze_statically(
        StaticAnalysisOptions(
            image_path=archive,
            manifest_globs=["**/package.json"],
            manifest_exclude_globs=["**/node_modules/**"],
        )
    )

    assert len(analysis["manifestFiles"]) == 1
    manifest_file = analysis["manifestFiles"][0]
    assert (manifest_file["name"], manifest_file["path"]) == ("package.json", "/app")
    assert base64.b64decode(manifest_file["contents"]) == b'{"name": "app"}'


@pytest.mark.asyncio
async def test_analyze_errors(tmp_path):
    with pytest.raises(TarReadError):
        await analyze_statically(StaticAnalysisOptions(image_path=tmp_path / "no.tar"))

    archive = write_archive(tmp_path / "random.tar", {"readme.txt": b"hi"})
    with pytest.raises(FormatError):
        await analyze_statically(StaticAnalysisOptions(image_path=archive))


def test_apt_takes_precedence_over_apk():
    extracted = {
        "/var/lib/dpkg/status": {
            "dpkg": "Package: bash\nStatus: install ok installed\nVersion: 5.0\n"
        },
        "/lib/apk/db/installed": {"apk-db": "P:bash\nV:5.0.17-r0\n"},
    }

    analysis_type, records = parse_package_records(extracted)

    assert analysis_type == AnalysisType.APT
    assert [r.version for r in records] == ["5.0"]


def test_status_d_files_are_combined():
    extracted = {
        "/var/lib/dpkg/status.d/tzdata": {"dpkg": "Package: tzdata\nVersion: 2021a\n"},
        "/var/lib/dpkg/status.d/base": {"dpkg": "Package: base-files\nVersion: 10\n"},
    }

    analysis_type, records = parse_package_records(extracted)

    assert analysis_type == AnalysisType.APT
    assert [r.name for r in records] == ["base-files", "tzdata"]


@pytest.mark.asyncio
async def test_oci_tag_only_ref_name_uses_archive_name(tmp_path, debian_layers):
    """Test a bare tag ref name roots the tree like the saved docker image."""
    docker = write_docker_archive(tmp_path / "saved.tar", debian_layers, ["debian:10"])
    oci = write_oci_archive(tmp_path / "debian.tar", debian_layers, ref_name="10")

    docker_analysis = await analyze_statically(StaticAnalysisOptions(image_path=docker))
    oci_analysis = await analyze_statically(StaticAnalysisOptions(image_path=oci))

    tree = oci_analysis["package"]
    assert (tree["name"], tree["version"]) == ("docker-image|debian", "10")
    assert tree == docker_analysis["package"]


def test_default_image_name():
    def plan(*repo_tags):
        return LayerPlan(
            image_type=ImageType.OCI_ARCHIVE,
            image_id="sha256:" + "0" * 64,
            layers=[],
            manifest_layers=[],
            repo_tags=list(repo_tags),
        )

    archive = Path("/images/app.tar")
    assert default_image_name(plan("1.0", "ghcr.io/org/app:2.0"), archive) == (
        "ghcr.io/org/app:2.0"
    )
    assert default_image_name(plan("library/app"), archive) == "library/app"
    assert default_image_name(plan("1.0"), archive) == "app:1.0"
    assert default_image_name(plan("not a tag"), archive) == "app"
    assert default_image_name(plan(), archive) == "app"
