"""
Installer configuration.

Values come from CLI options first, then ``PACKAGE_INSTALLER_*`` environment
variables, then the defaults below.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from package_installer.models.package import BASE_PACKAGE


def _env_float(name: str, default: float | None) -> float | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass
class InstallerConfig:
    db_path: Path = Path("./data/packages.db")
    install_dir: Path = Path("./install")
    work_dir: Path = Path("./data/tmp")
    language: str | None = None
    base_package: str = BASE_PACKAGE
    download_timeout: float | None = 300.0
    allow_applications: bool = False
    user_id: int = field(default=0)

    @property
    def checkpoint_file(self) -> Path:
        return self.db_path.parent / ".installation_checkpoint.json"

    @classmethod
    def from_env(cls, **overrides) -> "InstallerConfig":
        """Build a config from the environment; non-None ``overrides`` win."""
        config = cls(
            db_path=Path(os.environ.get("PACKAGE_INSTALLER_DB", cls.db_path)),
            install_dir=Path(os.environ.get("PACKAGE_INSTALLER_DIR", cls.install_dir)),
            work_dir=Path(os.environ.get("PACKAGE_INSTALLER_WORK_DIR", cls.work_dir)),
            language=os.environ.get("PACKAGE_INSTALLER_LANGUAGE") or None,
            base_package=os.environ.get("PACKAGE_INSTALLER_BASE_PACKAGE", BASE_PACKAGE),
            download_timeout=_env_float("PACKAGE_INSTALLER_TIMEOUT", cls.download_timeout),
        )
        for name, value in overrides.items():
            if value is None:
                continue
            if name in ("db_path", "install_dir", "work_dir"):
                value = Path(value)
            setattr(config, name, value)
        return config
