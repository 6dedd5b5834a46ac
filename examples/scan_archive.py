"""Example: print the package dependency tree of an image archive.

Usage:
    python examples/scan_archive.py debian.tar
    python examples/scan_archive.py alpine:3.12 http://localhost:15000
"""

import asyncio
import json
import logging
import sys
import tempfile
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, "src")

from image_inventory import (
    InventoryError,
    RegistryClient,
    RegistryConfig,
    StaticAnalysisOptions,
    analyze_statically,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def scan(image_path: Path, image_name: str | None = None) -> None:
    """Analyze a saved archive and print the result as JSON."""
    options = StaticAnalysisOptions(image_path=image_path, image_name=image_name)
    analysis = await analyze_statically(options)

    tree = analysis["package"]
    logger.info(f"Image: {tree['name']}:{tree['version']}")
    logger.info(f"Package manager: {analysis['packageManager']}")
    logger.info(f"Top level packages: {len(tree['dependencies'])}")
    print(json.dumps(analysis, indent=2))


async def pull_and_scan(reference: str, registry_url: str) -> None:
    """Pull ``reference`` from a registry into a temporary archive and scan it."""
    async with RegistryClient(RegistryConfig(url=registry_url)) as client:
        with tempfile.TemporaryDirectory() as tmp_dir:
            archive = await client.pull_oci_archive(
                reference, Path(tmp_dir) / "image.tar"
            )
            await scan(archive, image_name=reference)


async def main() -> int:
    if len(sys.argv) < 2:
        print(__doc__)
        return 1

    try:
        if len(sys.argv) > 2:
            await pull_and_scan(sys.argv[1], sys.argv[2])
        else:
            await scan(Path(sys.argv[1]))
    except InventoryError as e:
        logger.error(f"Scan failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
