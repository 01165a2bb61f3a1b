"""
Example: Install a local package archive programmatically.

Usage:
    python examples/install_local_archive.py ./com.example.plugin.tar.gz
"""

import asyncio
import sys
from pathlib import Path

from package_installer import PackageInstallation
from package_installer.config import InstallerConfig
from package_installer.core.installer import AwaitingInput
from package_installer.storage import get_store


async def main(source: str):
    config = InstallerConfig(db_path=Path("./data/packages.db"), install_dir=Path("./install"))
    installation = PackageInstallation(get_store(str(config.db_path)), config=config)

    state = await installation.start_install(source)
    result = await installation.run(state, on_progress=lambda p, label: print(f"{p:3d}% {label}"))

    # Accept every notice shown along the way
    while isinstance(result, AwaitingInput):
        print(result.document.document)
        result = await installation.run(state, user_input={"accepted": True})

    print(f"\n✅ {result.label}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1]))
