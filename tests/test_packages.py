"""Tests for package database parsers and manifest file collection."""

import base64

from image_inventory.models import OSRelease, PackageRecord
from image_inventory.packages import (
    MAX_MANIFEST_FILES,
    collect_manifest_files,
    default_actions,
    detect_os_release,
    parse_apk_installed,
    parse_dpkg_status,
    parse_os_release,
    parse_rpm_query_output,
)
from image_inventory.packages.dpkg import parse_dependency_field
from image_inventory.packages.manifests import MANIFEST_FILES_ACTION
from tests.helpers import APK_INSTALLED, DPKG_STATUS, EXTENDED_STATES


def test_parse_dpkg_status():
    """Test installed stanzas become records with deps and sources."""
    records = parse_dpkg_status(DPKG_STATUS, EXTENDED_STATES)

    assert [r.name for r in records] == ["libc6", "libgcc1", "curl", "libcurl4"]
    libgcc = records[1]
    assert libgcc.version == "1:8.3.0-6"
    # The source version is dropped
    assert libgcc.source == "gcc-8"
    assert libgcc.full_name == "gcc-8/libgcc1"
    assert libgcc.deps == {"libc6": ">= 2.14"}
    assert libgcc.auto_installed

    curl = records[2]
    assert curl.source is None
    assert list(curl.deps) == ["libc6", "libcurl4"]
    assert not curl.auto_installed


def test_parse_dpkg_status_without_status_field():
    """Test status.d entries of distroless images are taken as installed."""
    text = "Package: base-files\nVersion: 10.3+deb10u4\nArchitecture: amd64\n"

    records = parse_dpkg_status(text)

    assert records == [PackageRecord(name="base-files", version="10.3+deb10u4")]


def test_parse_dpkg_fields():
    text = """\
Package: mailutils
Status: install ok installed
Version: 1:3.5-3
Pre-Depends: dpkg (>= 1.17.14)
Depends: libc6 (>= 2.28),
 default-mta | mail-transport-agent,
 python3:any
Provides: mail-reader, mailx
Description: GNU mailutils
 Long description line.
"""
    (record,) = parse_dpkg_status(text)

    assert record.deps == {
        "dpkg": ">= 1.17.14",
        "libc6": ">= 2.28",
        "default-mta": "",
        "python3": "",
    }
    assert record.provides == ["mail-reader", "mailx"]


def test_parse_dependency_field():
    assert parse_dependency_field("") == {}
    assert parse_dependency_field("a (<< 2), b [amd64], c:native | d") == {
        "a": "<< 2",
        "b": "",
        "c": "",
    }


def test_parse_apk_installed():
    """Test apk database entries, provides and dependencies."""
    records = parse_apk_installed(APK_INSTALLED)

    assert [(r.name, r.version) for r in records] == [
        ("musl", "1.1.24-r9"),
        ("busybox", "1.31.1-r19"),
        ("alpine-baselayout", "3.2.0-r7"),
    ]
    musl, busybox, baselayout = records
    assert musl.source == "musl"
    assert musl.provides == ["so:libc.musl-x86_64.so.1"]
    assert busybox.provides == ["/bin/sh", "cmd:busybox"]
    assert busybox.deps == {"so:libc.musl-x86_64.so.1": ""}
    # Conflicts (!name) are not dependencies
    assert list(baselayout.deps) == ["/bin/sh", "so:libc.musl-x86_64.so.1"]
    assert not any(r.auto_installed for r in records)


def test_parse_apk_world_marks_auto_installed():
    records = parse_apk_installed(APK_INSTALLED, "alpine-baselayout\nbusybox>1.30\n")

    assert {r.name: r.auto_installed for r in records} == {
        "musl": True,
        "busybox": False,
        "alpine-baselayout": False,
    }


def test_parse_rpm_query_output():
    """Test rpm query lines of NAME, VERSION and SIZE."""
    output = "\n".join(
        [
            "basesystem\t10.0-4.el6\t0",
            "tzdata\t2018d-1.el6\t1960357",
            "",
            "glibc\t2.12-1.209.el6_9.2\t13121423",
        ]
    )

    records = parse_rpm_query_output(output)

    assert records == [
        PackageRecord(name="basesystem", version="10.0-4.el6"),
        PackageRecord(name="tzdata", version="2018d-1.el6"),
        PackageRecord(name="glibc", version="2.12-1.209.el6_9.2"),
    ]
    assert parse_rpm_query_output("") == []


def test_parse_os_release():
    text = """\
NAME="Alpine Linux"
ID=alpine
VERSION_ID=3.12.0
PRETTY_NAME="Alpine Linux v3.12"
# comment
"""
    assert parse_os_release(text) == OSRelease(
        name="alpine", version="3.12.0", pretty_name="Alpine Linux v3.12"
    )
    assert parse_os_release("ID=debian\n").version == "unstable"
    assert parse_os_release("NAME=unknown\n") == OSRelease()


def test_detect_os_release_prefers_etc():
    extracted = {
        "/usr/lib/os-release": {"os-release": "ID=rhel\nVERSION_ID=8\n"},
        "/etc/os-release": {"os-release": "ID=centos\nVERSION_ID='8'\n"},
    }

    assert detect_os_release(extracted) == OSRelease(name="centos", version="8")
    assert detect_os_release({}) == OSRelease()


def test_default_action_names():
    names = [action.name for action in default_actions()]
    assert names == ["dpkg", "ext", "apk-db", "apk-world", "os-release"]


def test_collect_manifest_files():
    """Test manifest files are sorted, capped and base64 encoded."""
    extracted = {
        f"/app/svc{i}/package.json": {MANIFEST_FILES_ACTION: b'{"name": "svc"}'}
        for i in range(7, -1, -1)
    }
    extracted["/app/svc0/package.json"] = {MANIFEST_FILES_ACTION: b""}
    extracted["/etc/os-release"] = {"os-release": "ID=alpine\n"}

    files = collect_manifest_files(extracted)

    # svc0 counts towards the limit but is dropped for being empty
    expected = [f"/app/svc{i}" for i in range(1, MAX_MANIFEST_FILES)]
    assert [f.path for f in files] == expected
    assert files[0].name == "package.json"
    assert base64.b64decode(files[0].contents) == b'{"name": "svc"}'
