"""Test configuration and fixtures."""

import os

import pytest

from tests.helpers import DIR, DPKG_STATUS, EXTENDED_STATES, make_layer


@pytest.fixture(scope="session")
def registry_url():
    """Get registry URL for integration tests."""
    port = int(os.getenv("REGISTRY_PORT", "15000"))
    return f"http://localhost:{port}"


@pytest.fixture
def debian_layers():
    """Two layers: a base with dpkg data, and one upgrading and deleting files."""
    base = make_layer(
        [
            ("etc", DIR),
            (
                "etc/os-release",
                'PRETTY_NAME="Debian GNU/Linux 10 (buster)"\n'
                'ID=debian\nVERSION_ID="10"\n',
            ),
            ("etc/motd", "base motd\n"),
            ("etc/hostname", "base-host\n"),
            ("var/lib/dpkg/status", DPKG_STATUS),
            ("var/lib/apt/extended_states", EXTENDED_STATES),
            ("tmp/cache/a.bin", b"\x00\x01"),
        ]
    )
    top = make_layer(
        [
            ("etc/motd", "top motd\n"),
            ("etc/.wh.hostname", b""),
            ("tmp/cache/.wh..wh..opq", b""),
            ("tmp/cache/b.bin", b"\x02"),
        ]
    )
    return [base, top]


def pytest_configure(config):
    """Configure pytest markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring registry"
    )
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Skip integration tests if no registry
    skip_integration = pytest.mark.skip(reason="Registry not available")

    for item in items:
        if (
            "integration" in item.keywords
            and os.getenv("REGISTRY_AVAILABLE", "false").lower() != "true"
        ):
            item.add_marker(skip_integration)
